"""Enject — Keep secrets out of .env files, and out of AI context.

A template (``.env``) holds only ``en://`` references; ``enject run`` resolves
them from an encrypted store and injects the values into a child process.
"""
from .version import __version__
from .environment import compose
from .template import ResolvedEnvironment, TemplateLine, parse, resolve
from .vault import KdfParams, MigrationEngine, SecretBuffer, SecretStore, StoreConfig

__all__ = [
    "__version__",
    "compose",
    "parse",
    "resolve",
    "ResolvedEnvironment",
    "TemplateLine",
    "KdfParams",
    "MigrationEngine",
    "SecretBuffer",
    "SecretStore",
    "StoreConfig",
]
