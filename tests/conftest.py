"""Shared fixtures: cheap KDF parameters, temporary stores, scripted prompts."""
import pytest

from enject.vault.config import StoreConfig
from enject.vault.crypto import KdfParams, SecretBuffer
from enject.vault.store import SecretStore

# Argon2id minimum: fast enough for a test suite, same code path as production.
FAST_KDF = KdfParams(m_cost=8, t_cost=1, p_cost=1)
PASSWORD = "test-password-do-not-use"


def pw(value: str = PASSWORD) -> SecretBuffer:
    return SecretBuffer.from_str(value)


def write_legacy_config(root, config: StoreConfig) -> None:
    """Write ``config`` the way the legacy tool did (config.toml, no marker)."""
    (root / "config.toml").write_text(
        f'backend = "{config.backend}"\n'
        f"version = {config.version}\n"
        f'kdf = "{config.kdf}"\n'
        f"m_cost = {config.m_cost}\n"
        f"t_cost = {config.t_cost}\n"
        f"p_cost = {config.p_cost}\n"
        f'salt = "{config.salt}"\n'
    )


class FakePrompter:
    """Scripted stand-in for ``enject.prompt.Prompter``."""

    def __init__(self, passwords=(), values=(), answers=()):
        self.passwords = list(passwords)
        self.values = list(values)
        self.answers = list(answers)
        self.asked = []

    def password(self, prompt):
        self.asked.append(prompt)
        return SecretBuffer.from_str(self.passwords.pop(0))

    def new_password(self, label="store"):
        return self.password(f"New {label} password: ")

    def value(self, name):
        self.asked.append(f"value:{name}")
        return self.values.pop(0)

    def confirm(self, question):
        self.asked.append(question)
        return self.answers.pop(0)


@pytest.fixture
def store_root(tmp_path):
    return tmp_path / ".enject"


@pytest.fixture
def store(store_root):
    """A freshly created, unlocked store with cheap KDF parameters."""
    s = SecretStore.create(store_root, pw(), kdf_params=FAST_KDF)
    yield s
    s.close()


@pytest.fixture
def legacy_project(tmp_path):
    """A project root holding only a legacy ``.enveil/`` store with one secret."""
    root = tmp_path / ".enveil"
    with SecretStore.create(root, pw(), kdf_params=FAST_KDF) as legacy:
        legacy.set("my_secret", "value_before_migration")
        config = legacy.config
    (root / "config.json").unlink()
    write_legacy_config(root, config)
    return tmp_path
