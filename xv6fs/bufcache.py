"""Buffer cache: in-memory copies of disk blocks, recycled least-recently-used first."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Protocol

from .layout import BSIZE, NBUF, KernelPanic


class BlockDevice(Protocol):
    def read_block(self, dev: int, blockno: int) -> bytes: ...

    def write_block(self, dev: int, blockno: int, data: bytes) -> None: ...


class _SleepLock:
    """A lock held by one thread at a time that knows its holder."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._owner: int | None = None

    def acquire(self) -> None:
        with self._cond:
            while self._owner is not None:
                self._cond.wait()
            self._owner = threading.get_ident()

    def release(self) -> None:
        with self._cond:
            self._owner = None
            self._cond.notify_all()

    def held(self) -> bool:
        with self._cond:
            return self._owner == threading.get_ident()


@dataclass(eq=False)
class Buffer:
    """A cached copy of one disk block."""

    dev: int = 0
    blockno: int = 0
    data: bytearray = field(default_factory=lambda: bytearray(BSIZE))
    valid: bool = False
    dirty: bool = False
    refcnt: int = 0
    _lock: _SleepLock = field(default_factory=_SleepLock, init=False, repr=False)

    @property
    def held(self) -> bool:
        """Whether the calling thread holds this buffer."""
        return self._lock.held()


class BufferCache:
    """A fixed pool of buffers over a block device."""

    def __init__(self, disk: BlockDevice, nbuf: int = NBUF) -> None:
        self.disk = disk
        self._lock = threading.Lock()
        # Index 0 is the most recently used buffer.
        self._lru: list[Buffer] = [Buffer() for _ in range(nbuf)]

    def _bget(self, dev: int, blockno: int) -> Buffer:
        with self._lock:
            found = next(
                (b for b in self._lru if b.dev == dev and b.blockno == blockno),
                None,
            )
            if found is not None:
                found.refcnt += 1
            else:
                # A dirty buffer with no references is still pinned by the log.
                found = next(
                    (b for b in reversed(self._lru) if b.refcnt == 0 and not b.dirty),
                    None,
                )
                if found is None:
                    raise KernelPanic("bget: no buffers")
                found.dev = dev
                found.blockno = blockno
                found.valid = False
                found.dirty = False
                found.refcnt = 1
        found._lock.acquire()
        return found

    def _sync(self, buf: Buffer) -> None:
        if not buf.held:
            raise KernelPanic("iderw: buf not locked")
        if buf.valid and not buf.dirty:
            raise KernelPanic("iderw: nothing to do")
        if buf.dirty:
            self.disk.write_block(buf.dev, buf.blockno, bytes(buf.data))
            buf.dirty = False
        else:
            buf.data[:] = self.disk.read_block(buf.dev, buf.blockno)
        buf.valid = True

    def bread(self, dev: int, blockno: int) -> Buffer:
        """Return a held buffer with the contents of the given block."""
        buf = self._bget(dev, blockno)
        if not buf.valid:
            self._sync(buf)
        return buf

    def bwrite(self, buf: Buffer) -> None:
        """Write a held buffer's contents to disk."""
        if not buf.held:
            raise KernelPanic("bwrite")
        buf.dirty = True
        self._sync(buf)

    def brelse(self, buf: Buffer) -> None:
        """Release a held buffer; unreferenced buffers become most recently used."""
        if not buf.held:
            raise KernelPanic("brelse")
        buf._lock.release()
        with self._lock:
            buf.refcnt -= 1
            if buf.refcnt == 0:
                self._lru.remove(buf)
                self._lru.insert(0, buf)