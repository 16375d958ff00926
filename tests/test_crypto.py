"""
Tests for the crypto backend.

Tests cover:
- SecretBuffer zeroization on wipe, scope exit and errors
- Argon2id key derivation (determinism, salt separation, parameter errors)
- AES-256-GCM sealing: blob layout, fresh nonces, round trip
- Undifferentiated authentication failures (wrong key, any flipped bit)
"""
import pytest

from enject.exceptions import AuthenticationFailed, ConfigInvalid
from enject.vault.crypto import (
    KEY_LENGTH,
    NONCE_SIZE,
    TAG_SIZE,
    KdfParams,
    PasswordBackend,
    SecretBuffer,
    derive_key,
    generate_salt,
    get_backend,
    open_blob,
    seal,
)

from conftest import FAST_KDF

SALT = bytes(range(32))


@pytest.fixture
def key():
    with derive_key(SecretBuffer(b"pw"), SALT, FAST_KDF) as k:
        yield k


# --- SecretBuffer ---

class TestSecretBuffer:
    """Tests for the scoped zeroization wrapper."""

    def test_wipe_zeroes_in_place(self):
        """Test that wipe overwrites the borrowed buffer with zeros."""
        buf = SecretBuffer(b"hunter2")
        borrowed = buf.expose()
        buf.wipe()
        assert borrowed == bytearray(7)
        assert buf.wiped is True

    def test_context_manager_wipes_on_exit(self):
        """Test that leaving a with block wipes the buffer."""
        with SecretBuffer(b"secret") as buf:
            borrowed = buf.expose()
        assert borrowed == bytearray(6)

    def test_context_manager_wipes_on_error(self):
        """Test that an exception inside the with block still wipes."""
        buf = SecretBuffer(b"secret")
        borrowed = buf.expose()
        with pytest.raises(RuntimeError):
            with buf:
                raise RuntimeError("boom")
        assert borrowed == bytearray(6)

    def test_expose_after_wipe_raises(self):
        """Test that a wiped buffer cannot be read again."""
        buf = SecretBuffer(b"x")
        buf.wipe()
        with pytest.raises(ValueError):
            buf.expose()

    def test_repr_is_redacted(self):
        """Test that repr never shows the contents."""
        buf = SecretBuffer.from_str("hunter2")
        assert "hunter2" not in repr(buf)
        assert "redacted" in repr(buf)

    def test_from_str_encodes_utf8(self):
        """Test that passwords are UTF-8 encoded."""
        assert SecretBuffer.from_str("pässword").expose() == bytearray("pässword".encode())


# --- Key derivation ---

class TestKeyDerivation:
    """Tests for Argon2id key derivation."""

    def test_key_length(self, key):
        """Test that derived keys are 256 bits."""
        assert len(key) == KEY_LENGTH

    def test_deterministic(self):
        """Test that fixed inputs give the same key."""
        with derive_key(SecretBuffer(b"pw"), SALT, FAST_KDF) as a, \
                derive_key(SecretBuffer(b"pw"), SALT, FAST_KDF) as b:
            assert a.expose() == b.expose()

    def test_salt_changes_key(self):
        """Test that a different salt gives a different key."""
        with derive_key(SecretBuffer(b"pw"), SALT, FAST_KDF) as a, \
                derive_key(SecretBuffer(b"pw"), generate_salt(), FAST_KDF) as b:
            assert a.expose() != b.expose()

    def test_password_not_wiped_by_derive(self):
        """Test that the caller keeps ownership of the password buffer."""
        password = SecretBuffer(b"pw")
        derive_key(password, SALT, FAST_KDF).wipe()
        assert password.expose() == bytearray(b"pw")

    def test_invalid_parameters(self):
        """Test that Argon2id parameter errors become ConfigInvalid."""
        with pytest.raises(ConfigInvalid):
            derive_key(SecretBuffer(b"pw"), SALT, KdfParams(m_cost=8, t_cost=1, p_cost=4))

    def test_default_parameters(self):
        """Test the default cost parameters."""
        params = KdfParams()
        assert (params.m_cost, params.t_cost, params.p_cost) == (65536, 3, 4)

    def test_generate_salt(self):
        """Test that salts are 32 random bytes."""
        a, b = generate_salt(), generate_salt()
        assert len(a) == 32
        assert a != b


# --- Sealing ---

class TestSealing:
    """Tests for AES-256-GCM seal/open."""

    def test_round_trip(self, key):
        """Test that open returns what seal was given."""
        blob = seal(key, b'{"a": "1"}')
        with open_blob(key, blob) as plaintext:
            assert bytes(plaintext.expose()) == b'{"a": "1"}'

    def test_blob_layout(self, key):
        """Test nonce || ciphertext || tag sizing."""
        blob = seal(key, b"x" * 10)
        assert len(blob) == NONCE_SIZE + 10 + TAG_SIZE

    def test_fresh_nonce_per_seal(self, key):
        """Test that every seal draws a new nonce."""
        nonces = {seal(key, b"same")[:NONCE_SIZE] for _ in range(20)}
        assert len(nonces) == 20

    def test_plaintext_not_in_blob(self, key):
        """Test that the plaintext does not appear in the blob."""
        blob = seal(key, b"very-secret-value")
        assert b"very-secret-value" not in blob

    def test_wrong_key(self, key):
        """Test that a different key is rejected."""
        blob = seal(key, b"data")
        with derive_key(SecretBuffer(b"other"), SALT, FAST_KDF) as wrong:
            with pytest.raises(AuthenticationFailed):
                open_blob(wrong, blob)

    @pytest.mark.parametrize("region", ["nonce", "ciphertext", "tag"])
    def test_bit_flip_detected(self, key, region):
        """Test that flipping one bit anywhere fails authentication."""
        blob = bytearray(seal(key, b"some plaintext"))
        index = {
            "nonce": 3,
            "ciphertext": NONCE_SIZE + 2,
            "tag": len(blob) - 1,
        }[region]
        blob[index] ^= 0x01
        with pytest.raises(AuthenticationFailed):
            open_blob(key, bytes(blob))

    def test_every_bit_flip_same_error(self, key):
        """Test that every single-bit change gives the same error message."""
        blob = seal(key, b"abc")
        messages = set()
        for i in range(len(blob)):
            tampered = bytearray(blob)
            tampered[i] ^= 0x80
            with pytest.raises(AuthenticationFailed) as exc:
                open_blob(key, bytes(tampered))
            messages.add(str(exc.value))
        assert len(messages) == 1

    def test_short_blob(self, key):
        """Test that truncated blobs fail like any other tampering."""
        with pytest.raises(AuthenticationFailed):
            open_blob(key, b"\x00" * (NONCE_SIZE + TAG_SIZE - 1))


# --- Backends ---

class TestBackends:
    """Tests for backend lookup."""

    def test_password_backend(self):
        backend = get_backend("password")
        assert isinstance(backend, PasswordBackend)
        with backend.derive_key(SecretBuffer(b"pw"), SALT, FAST_KDF) as k:
            with backend.open(k, backend.seal(k, b"x")) as plaintext:
                assert plaintext.expose() == bytearray(b"x")

    def test_unknown_backend(self):
        with pytest.raises(ConfigInvalid):
            get_backend("age")
