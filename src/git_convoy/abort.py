"""Escape-to-abort for long-running interactive phases."""

from __future__ import annotations

import atexit
import logging
import os
import select
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TextIO

from .parallel import CancelToken

if sys.platform != "win32":
    import termios
    import tty

logger = logging.getLogger(__name__)

_ESCAPE = b"\x1b"


def _is_interactive(stream: TextIO) -> bool:
    if sys.platform == "win32":
        return False
    try:
        return stream.isatty()
    except ValueError:
        return False


def _watch(fd: int, token: CancelToken, stop: threading.Event) -> None:
    while not stop.is_set():
        ready, _, _ = select.select([fd], [], [], 0.1)
        if not ready:
            continue
        data = os.read(fd, 8)
        # A lone Escape; longer reads are arrow keys and other sequences.
        if data == _ESCAPE:
            logger.debug("escape pressed, cancelling")
            token.cancel()
            return
        if not data:
            return


@contextmanager
def listen_for_abort(token: CancelToken, stream: TextIO | None = None) -> Iterator[CancelToken]:
    """Cancel ``token`` when Escape is pressed while the block runs.

    The terminal is put in cbreak mode so single keys are seen without
    Enter; Ctrl-C still raises KeyboardInterrupt. Terminal attributes are
    restored once, on block exit or interpreter exit, whichever comes first.
    Off a TTY this does nothing.
    """
    stream = stream or sys.stdin
    if not _is_interactive(stream):
        yield token
        return

    fd = stream.fileno()
    saved = termios.tcgetattr(fd)
    stop = threading.Event()
    lock = threading.Lock()
    restored = False

    def restore() -> None:
        nonlocal restored
        with lock:
            if restored:
                return
            restored = True
        stop.set()
        termios.tcsetattr(fd, termios.TCSADRAIN, saved)
        atexit.unregister(restore)

    tty.setcbreak(fd)
    atexit.register(restore)
    watcher = threading.Thread(target=_watch, args=(fd, token, stop), name="convoy-abort", daemon=True)
    watcher.start()
    try:
        yield token
    finally:
        restore()
        watcher.join(0.5)
