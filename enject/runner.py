"""
Runner — spawn the child process with an explicit environment.

While the child runs, the parent ignores SIGINT: Ctrl-C reaches the child
through the terminal's process group, and the child decides how to shut
down. The parent only reports the status the child exits with.
"""
import signal
import logging
import threading
import subprocess
from collections.abc import Mapping, Sequence
from contextlib import contextmanager

logger = logging.getLogger("enject.runner")


def exit_code(returncode: int) -> int:
    """Map a ``subprocess`` return code to a shell-style exit status.

    A child killed by signal N reports ``-N``; shells report ``128 + N``.
    """
    if returncode < 0:
        return 128 + (-returncode)
    return returncode


@contextmanager
def sigint_ignored():
    """Ignore SIGINT in this process for the duration of the block.

    Signal handlers can only be changed from the main thread; elsewhere
    this is a no-op.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return
    previous = signal.signal(signal.SIGINT, signal.SIG_IGN)
    try:
        yield
    finally:
        signal.signal(
            signal.SIGINT,
            previous if previous is not None else signal.default_int_handler,
        )


def spawn(command: Sequence[str], env: Mapping[str, str]) -> int:
    """Run ``command`` with exactly ``env`` and wait for it to exit.

    The child is never killed by the parent; an interrupted run returns
    whatever status the child chooses to exit with.

    Returns:
        The child's exit status.

    Raises:
        ValueError: If ``command`` is empty.
        OSError: If the program cannot be started (e.g. not found).
    """
    if not command:
        raise ValueError("No command provided.")
    logger.debug("Spawning %s with %d environment variable(s)", command[0], len(env))
    proc = subprocess.Popen(list(command), env=dict(env))
    with sigint_ignored():
        returncode = proc.wait()
    logger.debug("%s exited with %d", command[0], returncode)
    return exit_code(returncode)
