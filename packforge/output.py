"""Logger sink for user-facing build output.

``BuildLogger`` writes to two append-only streams: normal output and
errors.  Verbose messages and phase container output only reach the
streams when verbose mode is on.  Diagnostics for developers go through
the stdlib ``logging`` module instead.
"""

from __future__ import annotations

import codecs
import logging
import sys
import threading
from typing import TextIO

logger = logging.getLogger(__name__)


class PrefixWriter:
    """Line-buffered writer that prefixes each line with ``[name] ``.

    Phase output arrives in arbitrary chunks from a background thread, so
    partial lines are held until their newline arrives or ``flush()``.
    """

    def __init__(self, stream: TextIO, prefix: str, *, enabled: bool = True) -> None:
        self._stream = stream
        self._prefix = prefix
        self._enabled = enabled
        self._pending = ""
        self._lock = threading.Lock()
        # Chunks may split a multi-byte character.
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def write(self, text: str | bytes) -> int:
        size = len(text)
        if not self._enabled:
            return size
        with self._lock:
            if isinstance(text, bytes):
                text = self._decoder.decode(text)
            self._pending += text
            *lines, self._pending = self._pending.split("\n")
            for line in lines:
                self._stream.write(f"{self._prefix}{line}\n")
        return size

    def flush(self) -> None:
        with self._lock:
            self._pending += self._decoder.decode(b"", final=True)
            if self._pending and self._enabled:
                self._stream.write(f"{self._prefix}{self._pending}\n")
            self._pending = ""
            self._stream.flush()


class BuildLogger:
    """Two-stream output sink shared by every stage of a build.

    Parameters
    ----------
    out:
        Normal output stream.  Defaults to ``sys.stdout``.
    err:
        Error stream.  Defaults to ``sys.stderr``.
    verbose:
        When False, ``verbose()`` messages and phase output are dropped.
    """

    def __init__(
        self,
        out: TextIO | None = None,
        err: TextIO | None = None,
        *,
        verbose: bool = False,
    ) -> None:
        self.out = out if out is not None else sys.stdout
        self.err = err if err is not None else sys.stderr
        self.is_verbose = verbose

    @staticmethod
    def _format(message: str, args: tuple) -> str:
        return message % args if args else message

    def info(self, message: str, *args: object) -> None:
        self.out.write(self._format(message, args) + "\n")

    def verbose(self, message: str, *args: object) -> None:
        text = self._format(message, args)
        logger.debug(text)
        if self.is_verbose:
            self.out.write(text + "\n")

    def error(self, message: str, *args: object) -> None:
        self.err.write("ERROR: " + self._format(message, args) + "\n")

    def step(self, label: str) -> None:
        self.verbose("===> %s", label)

    def verbose_writer(self, name: str = "") -> PrefixWriter:
        """Writer for container stdout, prefixed with ``[name]``."""
        return PrefixWriter(self.out, f"[{name}] " if name else "", enabled=self.is_verbose)

    def verbose_error_writer(self, name: str = "") -> PrefixWriter:
        """Writer for container stderr, prefixed with ``[name]``."""
        return PrefixWriter(self.err, f"[{name}] " if name else "", enabled=self.is_verbose)
