"""
Enject settings — well-known names and environment-driven options.

Environment variables:
    ENJECT_GLOBAL_DIR = <path>   root of the shared (global) store
    ENJECT_ENV_FILE   = <name>   template file consumed by ``enject run``
    ENJECT_LOG_LEVEL  = <level>  logging level for the command line
"""
import os
from pathlib import Path

STORE_DIR = ".enject"
LEGACY_STORE_DIR = ".enveil"
LEGACY_BACKUP_DIR = ".enveil.bak"

CONFIG_FILE = "config.json"
LEGACY_CONFIG_FILE = "config.toml"
STORE_FILE = "store"

FORMAT_MARKER = "enject"

DEFAULT_ENV_FILE = ".env"
DEFAULT_LOG_LEVEL = "WARNING"


def global_store_dir() -> Path:
    """Return the root directory of the global store.

    Defaults to ``~/.config/enject/global``; ``ENJECT_GLOBAL_DIR`` overrides it.
    """
    raw = os.environ.get("ENJECT_GLOBAL_DIR")
    if raw:
        return Path(raw).expanduser()
    return Path.home() / ".config" / "enject" / "global"


def env_file_name() -> str:
    return os.environ.get("ENJECT_ENV_FILE") or DEFAULT_ENV_FILE


def log_level() -> str:
    return (os.environ.get("ENJECT_LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper()
