"""
Vault Crypto Core — Key derivation, sealing/opening, and scoped zeroization.

Implements the password backend for the Secret Store:
- Key derivation: Argon2id(password, salt, m_cost, t_cost, p_cost) → 32-byte key
- Sealing: AES-256-GCM, blob format [nonce 12B][ciphertext + GCM tag 16B]

Security Note:
    Never log plaintext, ciphertext or key material.
    Nonces are random 96-bit; a fresh one is drawn for every seal.
    Python cannot scrub immutable ``bytes``/``str`` copies made by the
    interpreter or by OpenSSL; ``SecretBuffer`` narrows the window for the
    buffers this package owns.
"""
import os
import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.argon2 import Argon2id

from ..exceptions import AuthenticationFailed, ConfigInvalid

logger = logging.getLogger("enject.vault")

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16  # GCM tag appended by AESGCM
KEY_LENGTH = 32  # AES-256
SALT_SIZE = 32

BytesLike = Union[bytes, bytearray, memoryview]


# ---------------------------------------------------------------------------
# Scoped secret buffers
# ---------------------------------------------------------------------------

class SecretBuffer:
    """Mutable byte buffer for passwords, keys and plaintext.

    The buffer is overwritten with zeros by ``wipe()``, when a ``with`` block
    exits (on any path, including exceptions and ``KeyboardInterrupt``), and
    as a last resort when the object is garbage collected.
    """

    __slots__ = ("_buf",)

    def __init__(self, data: BytesLike = b""):
        self._buf: Optional[bytearray] = bytearray(data)

    @classmethod
    def from_str(cls, value: str) -> "SecretBuffer":
        """Encode a str (e.g. a prompted password) as UTF-8 into a new buffer."""
        return cls(value.encode("utf-8"))

    def expose(self) -> bytearray:
        """Borrow the underlying buffer. Do not keep a reference to it.

        Raises:
            ValueError: If the buffer was already wiped.
        """
        if self._buf is None:
            raise ValueError("SecretBuffer has been wiped")
        return self._buf

    def wipe(self) -> None:
        if self._buf is not None:
            self._buf[:] = bytes(len(self._buf))
            self._buf = None

    @property
    def wiped(self) -> bool:
        return self._buf is None

    def __len__(self) -> int:
        return 0 if self._buf is None else len(self._buf)

    def __enter__(self) -> "SecretBuffer":
        return self

    def __exit__(self, *exc) -> None:
        self.wipe()

    def __del__(self):
        self.wipe()

    def __repr__(self) -> str:
        state = "wiped" if self._buf is None else "redacted"
        return f"<SecretBuffer [{state}]>"


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class KdfParams:
    """Argon2id cost parameters.

    Defaults take tens of milliseconds and 64 MiB per attempt.
    """
    m_cost: int = 65536  # KiB
    t_cost: int = 3
    p_cost: int = 4


def generate_salt() -> bytes:
    """Return a fresh random salt for a new store."""
    return os.urandom(SALT_SIZE)


def derive_key(password: SecretBuffer, salt: bytes, params: KdfParams) -> SecretBuffer:
    """Derive a 32-byte encryption key using Argon2id.

    Blocks the calling thread for the whole derivation.

    Args:
        password: Master password buffer (not wiped here; the caller owns it).
        salt: Store salt.
        params: Argon2id memory/time/parallelism costs.

    Returns:
        Key buffer. The caller must wipe it (use it as a context manager).

    Raises:
        ConfigInvalid: If Argon2id rejects the parameters.
    """
    try:
        kdf = Argon2id(
            salt=salt,
            length=KEY_LENGTH,
            iterations=params.t_cost,
            lanes=params.p_cost,
            memory_cost=params.m_cost,
        )
        derived = kdf.derive(password.expose())
    except ValueError as err:
        raise ConfigInvalid(f"Invalid Argon2id parameters: {err}") from err
    try:
        return SecretBuffer(derived)
    finally:
        del derived


# ---------------------------------------------------------------------------
# Authenticated encryption
# ---------------------------------------------------------------------------

def seal(key: SecretBuffer, plaintext: BytesLike) -> bytes:
    """Encrypt plaintext under key with a fresh random nonce.

    Format: [nonce 12B][encrypted_payload + GCM_tag 16B]

    Args:
        key: 32-byte key buffer.
        plaintext: Data to encrypt.

    Returns:
        Store blob bytes.
    """
    cipher = AESGCM(key.expose())
    nonce = os.urandom(NONCE_SIZE)
    return nonce + cipher.encrypt(nonce, plaintext, None)


def open_blob(key: SecretBuffer, blob: BytesLike) -> SecretBuffer:
    """Verify and decrypt a store blob.

    Every failure (short blob, wrong key, any modified byte) raises the same
    error, so callers cannot tell which part of the blob was rejected.

    Args:
        key: 32-byte key buffer.
        blob: Blob in format [nonce 12B][payload+tag].

    Returns:
        Plaintext buffer. The caller must wipe it.

    Raises:
        AuthenticationFailed: On any verification failure.
    """
    if len(blob) < NONCE_SIZE + TAG_SIZE:
        raise AuthenticationFailed()
    view = memoryview(blob)
    cipher = AESGCM(key.expose())
    try:
        plaintext = cipher.decrypt(view[:NONCE_SIZE], view[NONCE_SIZE:], None)
    except InvalidTag:
        raise AuthenticationFailed() from None
    try:
        return SecretBuffer(plaintext)
    finally:
        del plaintext


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

class CipherBackend(Protocol):
    """Capability set the Secret Store depends on."""

    name: str

    def derive_key(
        self, password: SecretBuffer, salt: bytes, params: KdfParams
    ) -> SecretBuffer: ...

    def seal(self, key: SecretBuffer, plaintext: BytesLike) -> bytes: ...

    def open(self, key: SecretBuffer, blob: BytesLike) -> SecretBuffer: ...


class PasswordBackend:
    """Argon2id + AES-256-GCM, keyed by a master password."""

    name = "password"

    def derive_key(self, password, salt, params):
        return derive_key(password, salt, params)

    def seal(self, key, plaintext):
        return seal(key, plaintext)

    def open(self, key, blob):
        return open_blob(key, blob)


_BACKENDS: dict[str, type] = {
    PasswordBackend.name: PasswordBackend,
}


def get_backend(name: str) -> CipherBackend:
    """Return a backend instance for the identifier stored in a config.

    Raises:
        ConfigInvalid: If the identifier is unknown.
    """
    try:
        return _BACKENDS[name]()
    except KeyError:
        raise ConfigInvalid(f"Unsupported store backend: {name!r}") from None
