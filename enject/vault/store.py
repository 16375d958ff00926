"""
SecretStore — Encrypted name → value mapping persisted in one sealed blob.

Provides the public API of a store directory:
- ``create(root, password)`` — initialize config and an empty sealed store
- ``open(root, password)`` — derive the key, verify and decrypt the blob
- ``get(name)`` / ``set(name, value)`` / ``delete(name)`` / ``list()``
- ``rotate(new_password)`` — re-seal the same secrets under a new password

Every mutation re-seals the whole map with a fresh nonce and persists it with
the temp-file + fsync + rename protocol in ``fileio``.

Security Note:
    Never log secret values. Only log names, paths and counts. ``list()``
    returns names only; the only way to read a value is ``get(name)``.
"""
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Optional

import orjson

from ..conf import STORE_FILE
from ..exceptions import AuthenticationFailed, StoreAlreadyInitialized, StoreNotInitialized
from .config import StoreConfig, config_exists, read_config, write_config
from .crypto import CipherBackend, KdfParams, SecretBuffer, get_backend
from .fileio import atomic_write

logger = logging.getLogger("enject.vault")


def validate_name(name: str) -> None:
    """Validate a secret name.

    Raises:
        ValueError: If the name could not be written as an ``en://`` reference.
    """
    if not name or not name.strip():
        raise ValueError("Secret name cannot be empty")
    if name != name.strip():
        raise ValueError("Secret name cannot start or end with whitespace")
    if "\n" in name or "\r" in name:
        raise ValueError("Secret name cannot contain line breaks")
    if name.startswith("global/"):
        raise ValueError("Secret name cannot start with 'global/'")


class SecretStore:
    """An unlocked secret store.

    The store owns the password buffer it was opened with and keeps it only
    to re-derive the key for writes; the derived key itself is wiped after
    every open or write. ``close()`` (or leaving a ``with`` block) wipes the
    password and drops the decrypted map.
    """

    def __init__(
        self,
        root: Path,
        config: StoreConfig,
        password: SecretBuffer,
        secrets: dict[str, str],
        backend: Optional[CipherBackend] = None,
    ):
        self._root = Path(root)
        self._config = config
        self._password = password
        self._secrets: Optional[dict[str, str]] = secrets
        self._backend = backend or get_backend(config.backend)

    def __repr__(self) -> str:
        state = "closed" if self._secrets is None else f"{len(self._secrets)} secret(s)"
        return f"<SecretStore {self._root} [{state}]>"

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    @property
    def root(self) -> Path:
        return self._root

    @property
    def config(self) -> StoreConfig:
        return self._config

    @staticmethod
    def blob_path(root: Path) -> Path:
        return Path(root) / STORE_FILE

    @classmethod
    def exists(cls, root: Path) -> bool:
        root = Path(root)
        return config_exists(root) and cls.blob_path(root).is_file()

    # ------------------------------------------------------------------
    # Sealing helpers
    # ------------------------------------------------------------------

    def _require_open(self) -> dict[str, str]:
        if self._secrets is None:
            raise RuntimeError("Secret store is closed")
        return self._secrets

    def _seal(self, password: SecretBuffer, config: StoreConfig) -> bytes:
        """Serialize the map and seal it under a freshly derived key."""
        secrets = self._require_open()
        with SecretBuffer(orjson.dumps(secrets)) as plaintext:
            with self._backend.derive_key(
                password, config.salt_bytes, config.kdf_params
            ) as key:
                return self._backend.seal(key, plaintext.expose())

    def persist(self, root: Optional[Path] = None) -> None:
        """Re-seal the map and atomically replace the blob.

        Args:
            root: Directory to write into; defaults to this store's root.
                The migration engine uses it to stage a new directory.

        Raises:
            StorePersistenceFailed: If the write protocol fails.
        """
        target = self.blob_path(root or self._root)
        blob = self._seal(self._password, self._config)
        atomic_write(target, blob)
        logger.debug("Sealed %d secret(s) into %s", len(self._secrets), target)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, name: str) -> Optional[str]:
        """Return the value of ``name``, or None if absent."""
        return self._require_open().get(name)

    def set(self, name: str, value: str) -> None:
        """Store ``value`` under ``name`` and persist.

        Raises:
            ValueError: If name is invalid.
            StorePersistenceFailed: If the write fails; the in-memory map is
                rolled back to match the file on disk.
        """
        validate_name(name)
        secrets = self._require_open()
        missing = object()
        previous = secrets.get(name, missing)
        secrets[name] = value
        try:
            self.persist()
        except BaseException:
            if previous is missing:
                del secrets[name]
            else:
                secrets[name] = previous
            raise
        logger.debug("Store set: root=%s name=%s", self._root, name)

    def update(self, values: Mapping[str, str]) -> None:
        """Store several values with a single write."""
        for name in values:
            validate_name(name)
        secrets = self._require_open()
        snapshot = dict(secrets)
        secrets.update(values)
        try:
            self.persist()
        except BaseException:
            secrets.clear()
            secrets.update(snapshot)
            raise
        logger.debug("Store update: root=%s count=%d", self._root, len(values))

    def delete(self, name: str) -> bool:
        """Remove ``name``. Returns False (and writes nothing) if it was absent."""
        secrets = self._require_open()
        if name not in secrets:
            return False
        previous = secrets.pop(name)
        try:
            self.persist()
        except BaseException:
            secrets[name] = previous
            raise
        logger.debug("Store delete: root=%s name=%s", self._root, name)
        return True

    def list(self) -> list[str]:
        """Return the stored names, sorted. Values are never included."""
        return sorted(self._require_open())

    def __contains__(self, name: object) -> bool:
        return name in self._require_open()

    def __len__(self) -> int:
        return len(self._require_open())

    def rotate(self, new_password: SecretBuffer) -> None:
        """Re-seal the secrets under ``new_password``.

        The store takes ownership of ``new_password``; the old password is
        wiped once the new blob is on disk.
        """
        blob = self._seal(new_password, self._config)
        atomic_write(self.blob_path(self._root), blob)
        old, self._password = self._password, new_password
        old.wipe()
        logger.info("Rotated master password for %s", self._root)

    def moved_to(self, root: Path) -> "SecretStore":
        """Hand the unlocked secrets and password over to a store at ``root``.

        This handle is closed afterwards.
        """
        store = type(self)(
            root, self._config, self._password, self._require_open(),
            backend=self._backend,
        )
        self._secrets = None
        self._password = SecretBuffer()
        return store

    def close(self) -> None:
        if self._secrets is not None:
            self._secrets.clear()
            self._secrets = None
        self._password.wipe()

    def __enter__(self) -> "SecretStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @classmethod
    def create(
        cls,
        root: Path,
        password: SecretBuffer,
        kdf_params: Optional[KdfParams] = None,
        backend: Optional[CipherBackend] = None,
    ) -> "SecretStore":
        """Initialize a new store at ``root`` holding an empty map.

        The store takes ownership of ``password``.

        Raises:
            StoreAlreadyInitialized: If a config already exists at ``root``.
        """
        root = Path(root)
        if config_exists(root):
            raise StoreAlreadyInitialized(root)
        config = StoreConfig.new(kdf_params)
        store = cls(root, config, password, {}, backend=backend)
        try:
            # config last: its presence marks the store as initialized
            root.mkdir(mode=0o700, parents=True, exist_ok=True)
            store.persist()
            write_config(root, config)
        except BaseException:
            store.close()
            raise
        logger.info("Initialized store at %s", root)
        return store

    @classmethod
    def open(
        cls,
        root: Path,
        password: SecretBuffer,
        backend: Optional[CipherBackend] = None,
        config: Optional[StoreConfig] = None,
    ) -> "SecretStore":
        """Unlock the store rooted at ``root``.

        The store takes ownership of ``password``; it is wiped if opening
        fails.

        Args:
            root: Store directory.
            password: Master password buffer.
            backend: Override the backend named by the config.
            config: Already-loaded config; read from ``root`` when omitted.

        Raises:
            StoreNotInitialized: If config or blob is missing.
            ConfigInvalid: If the config is unreadable or unsupported.
            AuthenticationFailed: Wrong password, or a tampered blob.
        """
        root = Path(root)
        try:
            config = config or read_config(root)
            backend = backend or get_backend(config.backend)
            path = cls.blob_path(root)
            if not path.is_file():
                raise StoreNotInitialized(root)
            blob = path.read_bytes()
            with backend.derive_key(password, config.salt_bytes, config.kdf_params) as key:
                with backend.open(key, blob) as plaintext:
                    secrets = cls._load_map(plaintext)
        except BaseException:
            password.wipe()
            raise
        logger.debug("Unlocked store %s: %d secret(s)", root, len(secrets))
        return cls(root, config, password, secrets, backend=backend)

    @staticmethod
    def _load_map(plaintext: SecretBuffer) -> dict[str, str]:
        try:
            secrets = orjson.loads(plaintext.expose())
        except orjson.JSONDecodeError:
            raise AuthenticationFailed() from None
        if not isinstance(secrets, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in secrets.items()
        ):
            raise AuthenticationFailed()
        return secrets
