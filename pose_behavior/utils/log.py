"""Logging setup."""

import logging
import os

from contextlib import contextmanager

LOG_LEVEL_ENV = "POSE_BEHAVIOR_LOG_LEVEL"

logging.basicConfig(
    level=os.environ.get(LOG_LEVEL_ENV, "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


def get_logger(name):
    """Return a module logger; level comes from POSE_BEHAVIOR_LOG_LEVEL (default INFO)."""
    return logging.getLogger(name)


@contextmanager
def suppress_fds():
    """Silence FD 1 and 2 while native model code prints during load.

    ONNX runtime and some CUDA builds write straight to the file descriptors,
    bypassing sys.stdout/sys.stderr.
    """
    devnull = os.open(os.devnull, os.O_RDWR)
    saved = (os.dup(1), os.dup(2))
    try:
        os.dup2(devnull, 1)
        os.dup2(devnull, 2)
        yield
    finally:
        os.dup2(saved[0], 1)
        os.dup2(saved[1], 2)
        os.close(devnull)
        for fd in saved:
            os.close(fd)
