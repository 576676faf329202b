"""Open files: a shared table of reference-counted file structures."""

from __future__ import annotations

import errno
import threading
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING

from .fs import FileSystem, Inode, Stat
from .layout import BSIZE, MAXOPBLOCKS, NFILE, KernelPanic

if TYPE_CHECKING:
    from .pipe import Pipe

# Bytes written per transaction: enough room in the log for the inode,
# an indirect block, allocation blocks and two blocks of slop for
# unaligned writes.
MAX_WRITE = ((MAXOPBLOCKS - 1 - 1 - 2) // 2) * BSIZE


class FileKind(Enum):
    """What an open file refers to."""

    NONE = auto()
    PIPE = auto()
    INODE = auto()


@dataclass(eq=False)
class File:
    """One open file."""

    kind: FileKind = FileKind.NONE
    ref: int = 0
    readable: bool = False
    writable: bool = False
    pipe: Pipe | None = None
    ip: Inode | None = None
    off: int = 0


class FileTable:
    """The system-wide table of open files."""

    def __init__(self, fs: FileSystem | None, nfile: int = NFILE) -> None:
        self.fs = fs
        self._lock = threading.Lock()
        self._files = [File() for _ in range(nfile)]

    def alloc(self) -> File:
        """Return an unused file with one reference."""
        with self._lock:
            for f in self._files:
                if f.ref == 0:
                    f.kind = FileKind.NONE
                    f.readable = False
                    f.writable = False
                    f.pipe = None
                    f.ip = None
                    f.off = 0
                    f.ref = 1
                    return f
        raise OSError(errno.ENFILE, "file table overflow")

    def dup(self, f: File) -> File:
        """Add a reference to ``f`` and return it."""
        with self._lock:
            if f.ref < 1:
                raise KernelPanic("filedup")
            f.ref += 1
        return f

    def close(self, f: File) -> None:
        """Drop a reference; release what the file refers to on the last one."""
        with self._lock:
            if f.ref < 1:
                raise KernelPanic("fileclose")
            f.ref -= 1
            if f.ref > 0:
                return
            kind, pipe, ip, writable = f.kind, f.pipe, f.ip, f.writable
            f.kind = FileKind.NONE
            f.pipe = None
            f.ip = None

        if kind is FileKind.PIPE and pipe is not None:
            pipe.close(writable)
        elif kind is FileKind.INODE and ip is not None:
            with self.fs.log.transaction():
                self.fs.iput(ip)

    def stat(self, f: File) -> Stat:
        """Metadata of the inode behind ``f``."""
        if f.kind is not FileKind.INODE:
            raise OSError(errno.EINVAL, "file does not refer to an inode")
        self.fs.ilock(f.ip)
        try:
            return self.fs.stati(f.ip)
        finally:
            self.fs.iunlock(f.ip)

    def read(self, f: File, n: int) -> bytes:
        """Read up to ``n`` bytes from ``f`` at its offset."""
        if not f.readable:
            raise OSError(errno.EBADF, "file not open for reading")
        if f.kind is FileKind.PIPE:
            return f.pipe.read(n)
        if f.kind is FileKind.INODE:
            self.fs.ilock(f.ip)
            try:
                data = self.fs.readi(f.ip, f.off, n)
                f.off += len(data)
            finally:
                self.fs.iunlock(f.ip)
            return data
        raise KernelPanic("fileread")

    def write(self, f: File, data: bytes) -> int:
        """Write ``data`` to ``f`` at its offset; return the bytes written."""
        if not f.writable:
            raise OSError(errno.EBADF, "file not open for writing")
        if f.kind is FileKind.PIPE:
            return f.pipe.write(data)
        if f.kind is FileKind.INODE:
            view = memoryview(bytes(data))
            written = 0
            while written < len(view):
                chunk = bytes(view[written:written + MAX_WRITE])
                with self.fs.log.transaction():
                    self.fs.ilock(f.ip)
                    try:
                        r = self.fs.writei(f.ip, chunk, f.off)
                        if r > 0:
                            f.off += r
                    finally:
                        self.fs.iunlock(f.ip)
                if r != len(chunk):
                    raise KernelPanic("short filewrite")
                written += r
            return written
        raise KernelPanic("filewrite")