"""
Crash-safe file replacement.

``atomic_write`` writes to a temporary file in the target's directory,
fsyncs it, then renames it over the target. Until the rename the old file is
untouched; after it the new file is complete. Rename is atomic within one
filesystem, which is why the temporary file lives next to the target.
"""
import os
import logging
import tempfile
from pathlib import Path

from ..exceptions import StorePersistenceFailed

logger = logging.getLogger("enject.vault")


def fsync_dir(path: Path) -> None:
    """Flush a directory entry so a rename inside it survives power loss."""
    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError:
        return  # not supported on this platform
    try:
        os.fsync(fd)
    except OSError as err:
        logger.debug("Directory fsync not supported for %s: %s", path, err)
    finally:
        os.close(fd)


def atomic_write(target: Path, data, mode: int = 0o600) -> None:
    """Durably replace ``target`` with ``data``.

    Args:
        target: File to replace (its directory must exist).
        data: bytes-like payload.
        mode: Permission bits of the new file.

    Raises:
        StorePersistenceFailed: If writing, flushing or renaming fails. The
            temporary file is removed and ``target`` keeps its old contents.
    """
    parent = target.parent
    try:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.tmp.", dir=parent)
    except OSError as err:
        raise StorePersistenceFailed(
            f"Could not create a temporary file in {parent}: {err.strerror}"
        ) from err
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as fp:
            fp.write(data)
            fp.flush()
            os.fsync(fp.fileno())
        os.chmod(tmp, mode)
        os.replace(tmp, target)
    except OSError as err:
        tmp.unlink(missing_ok=True)
        raise StorePersistenceFailed(
            f"Could not write {target}: {err.strerror or err}. "
            "The previous contents are intact."
        ) from err
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    fsync_dir(parent)
    logger.debug("Persisted %s", target)
