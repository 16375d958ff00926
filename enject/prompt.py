"""
Interactive prompts — passwords without echo and yes/no confirmations.
"""
import sys
import getpass
import logging

from .vault.crypto import SecretBuffer

logger = logging.getLogger("enject.cli")


class Prompter:
    """Terminal implementation of the prompt collaborators.

    Any object with the same four methods can stand in for it (the test
    suite uses a scripted one).
    """

    def __init__(self, stdin=None, stderr=None):
        self._stdin = stdin or sys.stdin
        self._stderr = stderr or sys.stderr

    def password(self, prompt: str) -> SecretBuffer:
        return SecretBuffer.from_str(getpass.getpass(prompt))

    def new_password(self, label: str = "store") -> SecretBuffer:
        """Ask for a new password twice.

        Raises:
            ValueError: If the entries differ or are empty.
        """
        first = self.password(f"New {label} password: ")
        with self.password(f"Confirm {label} password: ") as second:
            if first.expose() != second.expose():
                first.wipe()
                raise ValueError("Passwords do not match.")
        if not len(first):
            first.wipe()
            raise ValueError("The store password must not be empty.")
        return first

    def value(self, name: str) -> str:
        return getpass.getpass(f"Value for '{name}': ")

    def confirm(self, question: str) -> bool:
        """Ask a yes/no question; answers "no" when stdin is not a terminal."""
        if not self._stdin.isatty():
            print(f"Warning: {question} (skipped: not a terminal)", file=self._stderr)
            return False
        print(f"{question} [y/N]: ", end="", file=self._stderr, flush=True)
        answer = self._stdin.readline()
        return answer.strip().lower() in ("y", "yes")
