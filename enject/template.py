"""
Template Resolver — Parse ``.env`` templates and resolve ``en://`` references.

Line forms::

    (blank) / # comment          ignored
    KEY=value                    passed through unchanged
    KEY=en://name                resolved from the local store
    KEY=en://global/name         resolved from the global store
    anything else                malformed

``ev://`` is accepted as the legacy spelling of ``en://``.

Resolution is all-or-nothing: ``resolve`` either returns a complete
``ResolvedEnvironment`` or raises, it never yields entries one by one.
"""
import enum
import shutil
import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from .exceptions import MalformedTemplateLine, UnresolvedReference
from .vault.fileio import atomic_write

logger = logging.getLogger("enject.template")

SCHEME = "en://"
LEGACY_SCHEME = "ev://"
GLOBAL_SCOPE = "global/"

Lookup = Callable[[str], Optional[str]]


class LineKind(enum.Enum):
    BLANK = "blank"
    PLAIN = "plain"
    LOCAL_REF = "local"
    GLOBAL_REF = "global"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class TemplateLine:
    """One classified template line.

    ``value`` holds the plain value for PLAIN lines and the secret name for
    references. ``raw`` and ``value`` are kept out of ``repr`` because an
    imported file may still hold plaintext.
    """
    lineno: int
    kind: LineKind
    raw: str = field(repr=False, default="")
    key: Optional[str] = None
    value: Optional[str] = field(repr=False, default=None)
    legacy: bool = False
    reason: Optional[str] = None

    @property
    def is_reference(self) -> bool:
        return self.kind in (LineKind.LOCAL_REF, LineKind.GLOBAL_REF)


class ResolvedEnvironment(Mapping[str, str]):
    """Resolved template entries, in template order.

    Iterating or indexing gives the last-write-wins view; ``entries`` keeps
    every entry in file order for layering onto another environment.
    """

    def __init__(self, entries: Iterable[tuple[str, str]] = ()):
        self._entries = tuple(entries)
        self._map = dict(self._entries)

    @property
    def entries(self) -> tuple[tuple[str, str], ...]:
        return self._entries

    def __getitem__(self, key: str) -> str:
        return self._map[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._map)

    def __len__(self) -> int:
        return len(self._map)

    def __repr__(self) -> str:
        return f"<ResolvedEnvironment keys={list(self._map)}>"


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _malformed(lineno: int, raw: str, reason: str, key: str = None) -> TemplateLine:
    return TemplateLine(lineno, LineKind.MALFORMED, raw=raw, key=key, reason=reason)


def parse_line(raw: str, lineno: int = 1) -> TemplateLine:
    """Classify a single template line."""
    line = raw.rstrip()
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return TemplateLine(lineno, LineKind.BLANK, raw=raw)

    key, sep, value = line.partition("=")
    if not sep:
        return _malformed(lineno, raw, "no '=' found")
    key = key.strip()
    if not key:
        return _malformed(lineno, raw, "empty key")
    if any(c.isspace() for c in key):
        return _malformed(lineno, raw, "key contains whitespace")

    for scheme, legacy in ((SCHEME, False), (LEGACY_SCHEME, True)):
        if not value.startswith(scheme):
            continue
        name = value[len(scheme):]
        kind = LineKind.LOCAL_REF
        if name.startswith(GLOBAL_SCOPE):
            name = name[len(GLOBAL_SCOPE):]
            kind = LineKind.GLOBAL_REF
        if not name:
            return _malformed(
                lineno, raw, f"empty secret name in {scheme} reference", key=key,
            )
        return TemplateLine(
            lineno, kind, raw=raw, key=key, value=name, legacy=legacy,
        )

    return TemplateLine(lineno, LineKind.PLAIN, raw=raw, key=key, value=value)


def parse(text: str) -> list[TemplateLine]:
    """Classify every line of a template. Never raises; see ``resolve``."""
    return [parse_line(raw, n) for n, raw in enumerate(text.splitlines(), start=1)]


def check_wellformed(lines: Iterable[TemplateLine]) -> None:
    """Raise on the first malformed line."""
    for line in lines:
        if line.kind is LineKind.MALFORMED:
            raise MalformedTemplateLine(line.lineno, line.reason, key=line.key)


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def resolve(
    lines: Iterable[TemplateLine],
    local_lookup: Lookup,
    global_lookup: Optional[Lookup] = None,
) -> ResolvedEnvironment:
    """Resolve every entry of a parsed template.

    Args:
        lines: Output of ``parse``.
        local_lookup: name → value (or None) against the project store.
        global_lookup: name → value (or None) against the global store.
            Only called if the template holds a global reference.

    Returns:
        All plain and resolved entries, in template order.

    Raises:
        MalformedTemplateLine: On the first malformed line.
        UnresolvedReference: On the first reference its store does not hold.
    """
    entries: list[tuple[str, str]] = []
    for line in lines:
        if line.kind is LineKind.BLANK:
            continue
        if line.kind is LineKind.MALFORMED:
            raise MalformedTemplateLine(line.lineno, line.reason, key=line.key)
        if line.kind is LineKind.PLAIN:
            entries.append((line.key, line.value))
            continue
        if line.kind is LineKind.LOCAL_REF:
            scope, lookup = "local", local_lookup
        else:
            scope, lookup = "global", global_lookup
        value = lookup(line.value) if lookup is not None else None
        if value is None:
            raise UnresolvedReference(line.key, line.value, scope)
        entries.append((line.key, value))
    resolved = ResolvedEnvironment(entries)
    logger.debug("Resolved %d template variable(s)", len(resolved))
    return resolved


def uses_global(lines: Iterable[TemplateLine]) -> bool:
    return any(line.kind is LineKind.GLOBAL_REF for line in lines)


# ---------------------------------------------------------------------------
# Import and legacy rewrite
# ---------------------------------------------------------------------------

def import_name(key: str) -> str:
    """Secret name an imported ``KEY=value`` line is stored under."""
    return key.lower()


def templatize(lines: Iterable[TemplateLine]) -> list[str]:
    """Rewrite plain ``KEY=value`` lines as ``KEY=en://key``.

    Blank lines and comments are kept verbatim; references are normalized to
    the current scheme.
    """
    out = []
    for line in lines:
        if line.kind is LineKind.PLAIN:
            out.append(f"{line.key}={SCHEME}{import_name(line.key)}")
        elif line.kind is LineKind.LOCAL_REF:
            out.append(f"{line.key}={SCHEME}{line.value}")
        elif line.kind is LineKind.GLOBAL_REF:
            out.append(f"{line.key}={SCHEME}{GLOBAL_SCOPE}{line.value}")
        else:
            out.append(line.raw)
    return out


def write_template(path: Path, lines: Iterable[str]) -> None:
    """Atomically replace ``path`` with ``lines``, keeping its permissions."""
    path = Path(path)
    mode = path.stat().st_mode & 0o777 if path.exists() else 0o600
    text = "\n".join(lines) + "\n"
    atomic_write(path, text.encode("utf-8"), mode=mode)


def migrate_template_file(path: Path, confirm: Callable[[str], bool]) -> list[TemplateLine]:
    """Offer to rewrite legacy ``ev://`` references in ``path`` as ``en://``.

    A ``<file>.bak`` copy is written before the file is replaced.

    Returns:
        The parsed template (rewritten or not).
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    lines = parse(text)
    legacy = [line for line in lines if line.legacy]
    if not legacy:
        return lines

    logger.warning(
        "%s contains %d legacy ev:// reference(s)", path, len(legacy),
    )
    question = (
        f"{path.name} contains {len(legacy)} legacy ev:// reference(s). "
        f"Update them to en://? A backup will be saved to {path.name}.bak"
    )
    if not confirm(question):
        return lines

    backup = path.with_name(path.name + ".bak")
    shutil.copy2(path, backup)
    rewritten = []
    for line in lines:
        if line.legacy:
            head, _, tail = line.raw.partition("=")
            rewritten.append(f"{head}={tail.replace(LEGACY_SCHEME, SCHEME, 1)}")
        else:
            rewritten.append(line.raw)
    write_template(path, rewritten)
    logger.info("Migrated %s (backup at %s)", path, backup)
    return parse("\n".join(rewritten))


def load_template(path: Path, confirm: Optional[Callable[[str], bool]] = None) -> list[TemplateLine]:
    """Read and parse a template file, offering the legacy rewrite if asked."""
    if confirm is not None:
        return migrate_template_file(path, confirm)
    return parse(Path(path).read_text(encoding="utf-8"))
