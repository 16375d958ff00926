"""
Vault Configuration — Per-store metadata and validated loading.

A store directory holds its metadata next to the sealed blob:
    <root>/config.json  (current layout, written by ``write_config``)
    <root>/config.toml  (legacy layout, read-only)

Security Note:
    The salt and KDF costs are not secret, but they are validated on every
    load: a store with an unknown version, backend or KDF is refused.
"""
import logging
import tomllib
from pathlib import Path
from typing import Any

import orjson
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from ..conf import CONFIG_FILE, FORMAT_MARKER, LEGACY_CONFIG_FILE
from ..exceptions import ConfigInvalid, StoreNotInitialized
from .crypto import SALT_SIZE, KdfParams, generate_salt
from .fileio import atomic_write

logger = logging.getLogger("enject.vault")

SUPPORTED_VERSIONS = frozenset({1})
SUPPORTED_BACKENDS = frozenset({"password"})
SUPPORTED_KDFS = frozenset({"argon2id"})


class StoreConfig(BaseModel):
    """Validated store configuration."""

    version: int = 1
    backend: str = "password"
    kdf: str = "argon2id"
    m_cost: int = Field(default=KdfParams.m_cost, ge=8, le=4 * 1024 * 1024)
    t_cost: int = Field(default=KdfParams.t_cost, ge=1, le=100)
    p_cost: int = Field(default=KdfParams.p_cost, ge=1, le=64)
    salt: str
    format: str = FORMAT_MARKER

    model_config = {"extra": "ignore", "frozen": True}

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: int) -> int:
        if v not in SUPPORTED_VERSIONS:
            raise ValueError(f"Unsupported store version: {v}")
        return v

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        if v not in SUPPORTED_BACKENDS:
            raise ValueError(f"Unsupported store backend: {v}")
        return v

    @field_validator("kdf")
    @classmethod
    def validate_kdf(cls, v: str) -> str:
        if v not in SUPPORTED_KDFS:
            raise ValueError(f"Unsupported key derivation function: {v}")
        return v

    @field_validator("salt")
    @classmethod
    def validate_salt(cls, v: str) -> str:
        try:
            raw = bytes.fromhex(v)
        except ValueError:
            raise ValueError("salt must be hex encoded") from None
        if len(raw) != SALT_SIZE:
            raise ValueError(
                f"salt must decode to exactly {SALT_SIZE} bytes, got {len(raw)}"
            )
        return v.lower()

    @model_validator(mode="after")
    def validate_memory_cost(self) -> "StoreConfig":
        """Argon2 needs at least 8 KiB of memory per lane."""
        if self.m_cost < 8 * self.p_cost:
            raise ValueError(
                f"m_cost ({self.m_cost}) must be at least 8 * p_cost ({self.p_cost})"
            )
        return self

    @classmethod
    def new(cls, kdf_params: KdfParams = None) -> "StoreConfig":
        """Create the config for a brand-new store with a fresh random salt."""
        params = kdf_params or KdfParams()
        return cls(
            m_cost=params.m_cost,
            t_cost=params.t_cost,
            p_cost=params.p_cost,
            salt=generate_salt().hex(),
        )

    @property
    def kdf_params(self) -> KdfParams:
        return KdfParams(m_cost=self.m_cost, t_cost=self.t_cost, p_cost=self.p_cost)

    @property
    def salt_bytes(self) -> bytes:
        return bytes.fromhex(self.salt)


def _parse(raw: dict[str, Any], path: Path) -> StoreConfig:
    try:
        return StoreConfig.model_validate(raw)
    except ValidationError as err:
        problems = "; ".join(e["msg"] for e in err.errors())
        raise ConfigInvalid(f"Invalid store config {path}: {problems}") from err


def config_exists(root: Path) -> bool:
    return (root / CONFIG_FILE).is_file() or (root / LEGACY_CONFIG_FILE).is_file()


def read_config(root: Path) -> StoreConfig:
    """Load and validate the config of the store rooted at ``root``.

    ``config.json`` wins over ``config.toml`` when both are present.

    Raises:
        StoreNotInitialized: If neither file exists.
        ConfigInvalid: If the file cannot be parsed or fails validation.
    """
    json_path = root / CONFIG_FILE
    toml_path = root / LEGACY_CONFIG_FILE
    if json_path.is_file():
        try:
            raw = orjson.loads(json_path.read_bytes())
        except orjson.JSONDecodeError as err:
            raise ConfigInvalid(f"Unreadable store config {json_path}: {err}") from err
        path = json_path
    elif toml_path.is_file():
        try:
            with open(toml_path, "rb") as fp:
                raw = tomllib.load(fp)
        except tomllib.TOMLDecodeError as err:
            raise ConfigInvalid(f"Unreadable store config {toml_path}: {err}") from err
        path = toml_path
    else:
        raise StoreNotInitialized(root)
    if not isinstance(raw, dict):
        raise ConfigInvalid(f"Store config {path} is not a table")
    config = _parse(raw, path)
    logger.debug(
        "Loaded store config %s (version=%d, backend=%s)",
        path, config.version, config.backend,
    )
    return config


def write_config(root: Path, config: StoreConfig) -> Path:
    """Write ``config`` as ``<root>/config.json``, creating ``root`` if needed.

    Returns:
        Path of the written file.
    """
    root.mkdir(mode=0o700, parents=True, exist_ok=True)
    path = root / CONFIG_FILE
    atomic_write(
        path,
        orjson.dumps(config.model_dump(), option=orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS),
    )
    return path
