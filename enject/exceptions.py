"""Enject exceptions.

Messages never carry passwords, key material or decrypted values.
"""


class EnjectError(Exception):
    """Base class for every error the core can raise."""


class AuthenticationFailed(EnjectError):
    """Wrong password, or a tampered/corrupted store blob.

    Both causes share one message on purpose.
    """

    def __init__(self, message: str = "Wrong store password, or store is corrupted."):
        super().__init__(message)


class ConfigInvalid(EnjectError):
    """Unsupported version/backend or malformed KDF parameters."""


class StoreNotInitialized(EnjectError):
    def __init__(self, path=None):
        where = f" at {path}" if path else ""
        super().__init__(
            f"Store not initialized{where}. Run `enject init` first."
        )
        self.path = path


class StoreAlreadyInitialized(EnjectError):
    def __init__(self, path):
        super().__init__(
            f"A store already exists at {path}. "
            "To reinitialize, delete it first."
        )
        self.path = path


class StorePersistenceFailed(EnjectError):
    """Writing, flushing or renaming the new store blob failed.

    The previous store is intact, so the operation may be retried.
    """


class MalformedTemplateLine(EnjectError):
    def __init__(self, lineno: int, reason: str, key: str = None):
        self.lineno = lineno
        self.key = key
        self.reason = reason
        where = f"line {lineno}"
        if key:
            where += f" ({key})"
        super().__init__(f"Malformed template {where}: {reason}")


class UnresolvedReference(EnjectError):
    def __init__(self, key: str, secret_name: str, scope: str):
        self.key = key
        self.secret_name = secret_name
        self.scope = scope
        prefix = "global/" if scope == "global" else ""
        hint = " --global" if scope == "global" else ""
        super().__init__(
            f"Secret '{prefix}{secret_name}' referenced by {key} was not found "
            f"in the {scope} store. Add it with: enject set{hint} {secret_name}"
        )


class MigrationDeclined(EnjectError):
    def __init__(self, legacy_dir=None):
        super().__init__(
            "Migration of the legacy .enveil/ store was declined. "
            "Rename .enveil/ to .enject/ to silence this warning."
        )
        self.legacy_dir = legacy_dir


class MigrationVerificationFailed(EnjectError):
    """The legacy store could not be opened; it was left untouched."""

    def __init__(self, legacy_dir=None):
        super().__init__(
            "Could not unlock the legacy .enveil/ store (wrong password or "
            "corrupted store). Nothing was migrated."
        )
        self.legacy_dir = legacy_dir
