"""Pipes: a bounded byte channel between a read end and a write end."""

from __future__ import annotations

import errno
import threading

from .file import File, FileKind, FileTable

PIPESIZE = 512


class Pipe:
    """A buffer of PIPESIZE bytes shared by a reader and a writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._data = bytearray()
        self.nread = 0
        self.nwrite = 0
        self.readopen = True
        self.writeopen = True

    def write(self, data: bytes) -> int:
        """Write all of ``data``, waiting while the buffer is full."""
        data = bytes(data)
        with self._cond:
            pos = 0
            while pos < len(data):
                while len(self._data) == PIPESIZE:
                    if not self.readopen:
                        raise BrokenPipeError(errno.EPIPE, "read end of pipe closed")
                    self._cond.notify_all()
                    self._cond.wait()
                chunk = data[pos:pos + PIPESIZE - len(self._data)]
                self._data += chunk
                self.nwrite += len(chunk)
                pos += len(chunk)
            self._cond.notify_all()
            return len(data)

    def read(self, n: int) -> bytes:
        """Read up to ``n`` bytes, waiting while empty and the writer is open."""
        with self._cond:
            while not self._data and self.writeopen:
                self._cond.wait()
            count = max(n, 0)
            out = bytes(self._data[:count])
            del self._data[:count]
            self.nread += len(out)
            self._cond.notify_all()
            return out

    def close(self, writable: bool) -> None:
        """Close the write end if ``writable``, otherwise the read end."""
        with self._cond:
            if writable:
                self.writeopen = False
            else:
                self.readopen = False
            self._cond.notify_all()


def pipe_alloc(table: FileTable) -> tuple[File, File]:
    """Allocate a pipe and its read and write files from ``table``."""
    f0 = table.alloc()
    try:
        f1 = table.alloc()
    except OSError:
        table.close(f0)
        raise
    p = Pipe()
    f0.kind = FileKind.PIPE
    f0.readable = True
    f0.writable = False
    f0.pipe = p
    f1.kind = FileKind.PIPE
    f1.readable = False
    f1.writable = True
    f1.pipe = p
    return f0, f1