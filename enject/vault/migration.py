"""
Vault Migration — Upgrade a legacy ``.enveil/`` store into ``.enject/``.

States::

    NO_LEGACY_STORE                         (terminal, nothing to do)
    LEGACY_DETECTED -> AWAITING_CONFIRMATION -> VERIFYING -> MIGRATED
                                  |                  |
                                  +----> ABORTED <---+   (legacy untouched)

The legacy blob format is the one the current store uses, so verification
opens the legacy store with its own config. On success the new directory is
staged next to the project root, the legacy directory is copied to a backup
path, and the staged directory is renamed into place. The rename is the
commit point: before it the legacy store is intact and authoritative, after
it the current store is complete. Only then is the legacy directory removed;
its contents survive at the backup path.

Security Note:
    Migration never proceeds on an unverified password.
    Never log the password or any decrypted value.
"""
import os
import enum
import shutil
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from ..conf import LEGACY_BACKUP_DIR, LEGACY_STORE_DIR, STORE_DIR
from ..exceptions import (
    AuthenticationFailed,
    ConfigInvalid,
    MigrationVerificationFailed,
    StoreNotInitialized,
    StorePersistenceFailed,
)
from .config import write_config
from .crypto import CipherBackend, SecretBuffer
from .fileio import fsync_dir
from .store import SecretStore

logger = logging.getLogger("enject.vault")

ConfirmFn = Callable[[str], bool]
PasswordFn = Callable[[str], SecretBuffer]


class MigrationState(enum.Enum):
    NO_LEGACY_STORE = "no-legacy-store"
    LEGACY_DETECTED = "legacy-detected"
    AWAITING_CONFIRMATION = "awaiting-confirmation"
    VERIFYING = "verifying"
    MIGRATED = "migrated"
    ABORTED = "aborted"


@dataclass
class MigrationResult:
    """Outcome of one migration attempt.

    ``store`` is the migrated store, already unlocked at its new root, so the
    calling command does not have to ask for the password twice. The caller
    owns it and must close it.
    """
    state: MigrationState
    declined: bool = False
    backup_dir: Optional[Path] = None
    store: Optional[SecretStore] = None


def current_dir(project_root: Path) -> Path:
    return Path(project_root) / STORE_DIR


def legacy_dir(project_root: Path) -> Path:
    return Path(project_root) / LEGACY_STORE_DIR


def _free_backup_path(project_root: Path) -> Path:
    candidate = Path(project_root) / LEGACY_BACKUP_DIR
    n = 1
    while candidate.exists():
        candidate = Path(project_root) / f"{LEGACY_BACKUP_DIR}.{n}"
        n += 1
    return candidate


class MigrationEngine:
    """Drives one legacy → current migration for a project root.

    Args:
        project_root: Directory holding ``.enject/`` and/or ``.enveil/``.
        confirm: Yes/no question collaborator.
        ask_password: Password prompt collaborator returning a SecretBuffer.
        backend: Override the backend named by the legacy config.
    """

    def __init__(
        self,
        project_root: Path,
        confirm: ConfirmFn,
        ask_password: PasswordFn,
        backend: Optional[CipherBackend] = None,
    ):
        self.project_root = Path(project_root)
        self.current = current_dir(self.project_root)
        self.legacy = legacy_dir(self.project_root)
        self._confirm = confirm
        self._ask_password = ask_password
        self._backend = backend
        self.state = MigrationState.NO_LEGACY_STORE

    def detect(self) -> MigrationState:
        """Check the entry condition without changing anything on disk."""
        if self.current.exists() or not self.legacy.is_dir():
            self.state = MigrationState.NO_LEGACY_STORE
        else:
            self.state = MigrationState.LEGACY_DETECTED
        return self.state

    def run(self) -> MigrationResult:
        """Run the state machine to a terminal state.

        Returns:
            The terminal result. A declined confirmation is reported as
            ``ABORTED`` with ``declined=True``.

        Raises:
            MigrationVerificationFailed: The legacy store could not be opened.
            StorePersistenceFailed: Writing the new layout failed; the legacy
                store is intact.
        """
        if self.detect() is MigrationState.NO_LEGACY_STORE:
            return MigrationResult(self.state)

        logger.warning("Found legacy store at %s", self.legacy)
        self.state = MigrationState.AWAITING_CONFIRMATION
        backup = _free_backup_path(self.project_root)
        question = (
            f"Found legacy {LEGACY_STORE_DIR}/ store. Migrate it to {STORE_DIR}/? "
            f"A backup will be kept at {backup.name}/"
        )
        if not self._confirm(question):
            self.state = MigrationState.ABORTED
            logger.info("Migration of %s declined", self.legacy)
            return MigrationResult(self.state, declined=True)

        self.state = MigrationState.VERIFYING
        password = self._ask_password("Legacy store password: ")
        try:
            legacy = SecretStore.open(self.legacy, password, backend=self._backend)
        except (AuthenticationFailed, ConfigInvalid, StoreNotInitialized) as err:
            self.state = MigrationState.ABORTED
            logger.error("Legacy store verification failed: %s", type(err).__name__)
            raise MigrationVerificationFailed(self.legacy) from err

        try:
            self._commit(legacy, backup)
        except BaseException:
            legacy.close()
            self.state = MigrationState.ABORTED
            raise

        self.state = MigrationState.MIGRATED
        logger.info(
            "Migrated %s to %s (backup at %s)", self.legacy, self.current, backup,
        )
        return MigrationResult(
            self.state, backup_dir=backup, store=legacy.moved_to(self.current),
        )

    def _commit(self, legacy: SecretStore, backup: Path) -> None:
        staging = Path(tempfile.mkdtemp(prefix=f"{STORE_DIR}.tmp.", dir=self.project_root))
        backup_tmp = None
        backup_made = False

        def rollback():
            shutil.rmtree(staging, ignore_errors=True)
            if backup_tmp is not None:
                shutil.rmtree(backup_tmp, ignore_errors=True)
            if backup_made:
                shutil.rmtree(backup, ignore_errors=True)

        try:
            os.chmod(staging, 0o700)
            legacy.persist(staging)
            write_config(staging, legacy.config)
            fsync_dir(staging)

            backup_tmp = Path(tempfile.mkdtemp(prefix=f"{backup.name}.tmp.", dir=self.project_root))
            shutil.copytree(self.legacy, backup_tmp, dirs_exist_ok=True)
            os.rename(backup_tmp, backup)
            backup_tmp = None
            backup_made = True

            if self.current.exists():
                raise FileExistsError(f"{self.current} appeared during migration")
            os.rename(staging, self.current)
            fsync_dir(self.project_root)
        except OSError as err:
            rollback()
            raise StorePersistenceFailed(
                f"Could not migrate {self.legacy}: {err}. The legacy store is intact."
            ) from err
        except BaseException:
            rollback()
            raise

        shutil.rmtree(self.legacy, ignore_errors=True)
        if self.legacy.exists():
            logger.warning(
                "Could not remove %s; it is no longer used and can be deleted",
                self.legacy,
            )
