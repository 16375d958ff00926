"""
Environment Composer — Layer resolved template entries onto an inherited
environment.

The result starts as a full copy of the inherited environment; template
entries are applied in file order, so a later key overrides an earlier one
and any template key overrides the inherited value. Nothing else is added.
"""
from collections.abc import Iterable, Mapping
from typing import Union

from .template import ResolvedEnvironment

Entries = Union[ResolvedEnvironment, Iterable[tuple[str, str]]]


def compose(inherited: Mapping[str, str], resolved: Entries) -> dict[str, str]:
    """Build the exact environment handed to the child process.

    Args:
        inherited: Parent environment (usually ``os.environ``).
        resolved: A ``ResolvedEnvironment`` or ordered ``(key, value)`` pairs.

    Returns:
        A new dict; ``inherited`` is not modified.
    """
    env = dict(inherited)
    entries = resolved.entries if isinstance(resolved, ResolvedEnvironment) else resolved
    for key, value in entries:
        env[key] = value
    return env
