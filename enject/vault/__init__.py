"""Vault — Encrypted secret storage for a project (or the global) store.

Security Note (Threat Model):
    Secrets are decrypted in process memory for the lifetime of one command.
    A process that can read this process's memory, or the child's
    environment, can read them. This is an accepted limitation; buffers this
    package owns are wiped on every exit path, immutable copies made by the
    interpreter or by OpenSSL are not.
"""

from .crypto import KdfParams, PasswordBackend, SecretBuffer, get_backend
from .config import StoreConfig, read_config, write_config
from .store import SecretStore
from .migration import MigrationEngine, MigrationResult, MigrationState

__all__ = [
    "KdfParams",
    "PasswordBackend",
    "SecretBuffer",
    "get_backend",
    "StoreConfig",
    "read_config",
    "write_config",
    "SecretStore",
    "MigrationEngine",
    "MigrationResult",
    "MigrationState",
]
