"""
enject — keep secrets out of .env files, and out of AI context.

Usage:
  enject init [--global]             Initialize a store
  enject set KEY [--global]          Add / update a secret (value prompted)
  enject list [--global]             List stored secret names (never values)
  enject delete KEY [--global]       Delete a secret
  enject rotate [--global]           Re-encrypt the store with a new password
  enject import FILE                 Encrypt a plaintext .env, rewrite it as a template
  enject run -- CMD [ARGS]           Resolve .env and run CMD with the secrets injected
"""
import os
import sys
import logging
import argparse
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from . import conf
from .environment import compose
from .exceptions import (
    EnjectError,
    MigrationDeclined,
    StoreAlreadyInitialized,
    StoreNotInitialized,
)
from .prompt import Prompter
from .runner import spawn
from .template import (
    LineKind,
    check_wellformed,
    import_name,
    load_template,
    resolve,
    templatize,
    write_template,
)
from .vault.config import config_exists
from .vault.migration import MigrationEngine, current_dir, legacy_dir
from .vault.store import SecretStore, validate_name
from .version import __version__

logger = logging.getLogger("enject.cli")


@dataclass
class Context:
    cwd: Path
    prompter: Prompter
    environ: dict = field(default_factory=dict)


# ── Store access ──────────────────────────────────────────────────────────────

def open_local(ctx: Context) -> SecretStore:
    """Unlock the project store, migrating a legacy ``.enveil/`` first if found."""
    result = MigrationEngine(ctx.cwd, ctx.prompter.confirm, ctx.prompter.password).run()
    if result.store is not None:
        print(f"Migrated {conf.LEGACY_STORE_DIR}/ to {conf.STORE_DIR}/ "
              f"(backup at {result.backup_dir.name}/).")
        return result.store
    root = current_dir(ctx.cwd)
    if not config_exists(root):
        if result.declined:
            raise MigrationDeclined(legacy_dir(ctx.cwd))
        raise StoreNotInitialized(root)
    return SecretStore.open(root, ctx.prompter.password("Enject store password: "))


def open_global(ctx: Context) -> SecretStore:
    root = conf.global_store_dir()
    if not config_exists(root):
        raise StoreNotInitialized(root)
    return SecretStore.open(root, ctx.prompter.password("Global store password: "))


def open_store(ctx: Context, use_global: bool) -> SecretStore:
    return open_global(ctx) if use_global else open_local(ctx)


class LazyLookup:
    """Lookup capability that unlocks its store on first use."""

    def __init__(self, opener: Callable[[], SecretStore]):
        self._opener = opener
        self._store: Optional[SecretStore] = None

    def __call__(self, name: str) -> Optional[str]:
        if self._store is None:
            self._store = self._opener()
        return self._store.get(name)

    def close(self) -> None:
        if self._store is not None:
            self._store.close()
            self._store = None


# ── Commands ──────────────────────────────────────────────────────────────────

def cmd_init(args: argparse.Namespace, ctx: Context) -> int:
    if args.use_global:
        root = conf.global_store_dir()
    else:
        root = current_dir(ctx.cwd)
        legacy = legacy_dir(ctx.cwd)
        if not root.exists() and legacy.is_dir():
            raise StoreAlreadyInitialized(legacy)
    if config_exists(root):
        raise StoreAlreadyInitialized(root)

    print("Initializing enject store...")
    password = ctx.prompter.new_password()
    SecretStore.create(root, password).close()

    print("Initialized.")
    if args.use_global:
        print("\n  Reference global secrets in .env as:  API_KEY=en://global/some_api_key")
        return 0
    print()
    print("  1. Add a secret:       enject set some_api_key")
    print("  2. Reference in .env:  API_KEY=en://some_api_key")
    print("  3. Run your app:       enject run -- npm start")
    print()
    print("The en:// name must match the key you used in 'enject set'.")
    print("The left side (API_KEY) is what your app sees.")
    return 0


def cmd_set(args: argparse.Namespace, ctx: Context) -> int:
    validate_name(args.key)
    with open_store(ctx, args.use_global) as store:
        value = ctx.prompter.value(args.key)
        if not value:
            raise ValueError("Secret value must not be empty.")
        store.set(args.key, value)
    print(f"Secret '{args.key}' saved.")
    return 0


def cmd_list(args: argparse.Namespace, ctx: Context) -> int:
    with open_store(ctx, args.use_global) as store:
        names = store.list()
    if not names:
        print("No secrets stored. Add one with: enject set <key>")
    for name in names:
        print(name)
    return 0


def cmd_delete(args: argparse.Namespace, ctx: Context) -> int:
    with open_store(ctx, args.use_global) as store:
        deleted = store.delete(args.key)
    if deleted:
        print(f"Secret '{args.key}' deleted.")
    else:
        print(f"Secret '{args.key}' not found.")
    return 0


def cmd_rotate(args: argparse.Namespace, ctx: Context) -> int:
    with open_store(ctx, args.use_global) as store:
        print("Enter a new store password.")
        store.rotate(ctx.prompter.new_password())
    print("Store password rotated successfully.")
    return 0


def cmd_import(args: argparse.Namespace, ctx: Context) -> int:
    path = Path(args.file)
    if not path.is_absolute():
        path = ctx.cwd / path
    if not path.is_file():
        raise EnjectError(f"File not found: {args.file}")

    lines = load_template(path)
    check_wellformed(lines)
    values = {
        import_name(line.key): line.value
        for line in lines if line.kind is LineKind.PLAIN
    }
    with open_local(ctx) as store:
        store.update(values)
    write_template(path, templatize(lines))
    print(f"Imported {len(values)} secret(s). {args.file} rewritten as en:// template.")
    return 0


def cmd_run(args: argparse.Namespace, ctx: Context) -> int:
    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        raise EnjectError("No command specified. Example: enject run -- npm start")

    env_path = ctx.cwd / conf.env_file_name()
    if not env_path.is_file():
        raise EnjectError(
            f"{env_path.name} file not found in current directory. "
            "Create one with en:// references and try again."
        )
    lines = load_template(env_path, confirm=ctx.prompter.confirm)
    check_wellformed(lines)

    local = LazyLookup(lambda: open_local(ctx))
    shared = LazyLookup(lambda: open_global(ctx))
    try:
        resolved = resolve(lines, local, shared)
    finally:
        local.close()
        shared.close()

    env = compose(ctx.environ, resolved)
    logger.info("Injecting %d variable(s) into %s", len(resolved), command[0])
    try:
        return spawn(command, env)
    except OSError as err:
        print(f"error: could not start {command[0]}: {err.strerror or err}", file=sys.stderr)
        return 127


# ── Entry point ───────────────────────────────────────────────────────────────

COMMANDS = {
    "init": cmd_init,
    "set": cmd_set,
    "list": cmd_list,
    "delete": cmd_delete,
    "rotate": cmd_rotate,
    "import": cmd_import,
    "run": cmd_run,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="enject",
        description="Keep secrets out of .env files, and out of AI context.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="cmd", required=True, metavar="COMMAND")

    def scoped(name: str, help: str) -> argparse.ArgumentParser:
        p = sub.add_parser(name, help=help)
        p.add_argument(
            "--global", dest="use_global", action="store_true",
            help="Operate on the global store shared by all projects",
        )
        return p

    scoped("init", "Initialize a new store in the current directory")
    scoped("set", "Add or update a secret (value is prompted)").add_argument(
        "key", help="Secret name, e.g. database_url",
    )
    scoped("list", "List stored secret names (never values)")
    scoped("delete", "Delete a secret").add_argument("key", help="Secret name")
    scoped("rotate", "Re-encrypt the store with a new password")

    p_import = sub.add_parser(
        "import", help="Encrypt a plaintext .env file and rewrite it as a template",
    )
    p_import.add_argument("file", help="Path to the plaintext .env file")

    p_run = sub.add_parser(
        "run", help="Resolve .env and run a command with the secrets injected",
    )
    p_run.add_argument(
        "command",
        nargs=argparse.REMAINDER,
        help="Command to run. Separate with --:  enject run -- npm start",
    )
    return parser


def describe(err: Exception) -> str:
    """One-line message for an error; OS errors name the file, not a traceback."""
    if isinstance(err, OSError) and err.strerror:
        if err.filename is not None:
            return f"{err.filename}: {err.strerror}."
        return f"{err.strerror}."
    return str(err)


def main(argv=None, prompter=None, environ=None, cwd=None) -> int:
    logging.basicConfig(
        level=conf.log_level(),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    args = build_parser().parse_args(argv)
    ctx = Context(
        cwd=Path(cwd) if cwd is not None else Path.cwd(),
        prompter=prompter or Prompter(),
        environ=dict(os.environ if environ is None else environ),
    )
    try:
        return COMMANDS[args.cmd](args, ctx)
    except (EnjectError, ValueError, OSError) as err:
        message = f"error: {describe(err)}"
        if args.cmd == "run":
            message += " The subprocess was not started."
        print(message, file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
