"""Write-ahead redo log that makes multi-block file system updates atomic.

A transaction gathers the blocks modified by one or more concurrent
operations.  The log only commits when no operation is in progress, so a
commit never writes half of an operation's updates.

On-disk format: a header block holding a count and the home block numbers,
followed by one log block per logged block.
"""

from __future__ import annotations

import struct
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from .bufcache import Buffer, BufferCache
from .layout import BSIZE, LOGSIZE, MAXOPBLOCKS, KernelPanic, Superblock

_COUNT = struct.Struct("<i")
_HEADER_SIZE = _COUNT.size * (1 + LOGSIZE)


class Log:
    """The log of one device, recovered from disk when it is opened."""

    def __init__(self, cache: BufferCache, dev: int, superblock: Superblock) -> None:
        if _HEADER_SIZE >= BSIZE:
            raise KernelPanic("initlog: too big logheader")
        self.cache = cache
        self.dev = dev
        self.start = superblock.logstart
        self.size = superblock.nlog
        self.outstanding = 0
        self.committing = False
        self._blocks: list[int] = []
        self._cond = threading.Condition()
        self.recover()

    @property
    def pending(self) -> tuple[int, ...]:
        """Home block numbers logged by the current transaction."""
        with self._cond:
            return tuple(self._blocks)

    def recover(self) -> None:
        """Install any committed transaction found on disk, then clear the log."""
        self._read_head()
        self._install()
        self._blocks = []
        self._write_head()

    def _read_head(self) -> None:
        buf = self.cache.bread(self.dev, self.start)
        try:
            (n,) = _COUNT.unpack_from(buf.data)
            if not 0 <= n <= LOGSIZE:
                raise KernelPanic("log header: bad block count")
            self._blocks = list(struct.unpack_from(f"<{n}i", buf.data, _COUNT.size))
        finally:
            self.cache.brelse(buf)

    def _write_head(self) -> None:
        """Write the in-memory header; this is the point a transaction commits."""
        buf = self.cache.bread(self.dev, self.start)
        try:
            n = len(self._blocks)
            _COUNT.pack_into(buf.data, 0, n)
            struct.pack_into(f"<{n}i", buf.data, _COUNT.size, *self._blocks)
            self.cache.bwrite(buf)
        finally:
            self.cache.brelse(buf)

    def _install(self) -> None:
        """Copy committed blocks from the log to their home locations."""
        for tail, home in enumerate(self._blocks):
            lbuf = self.cache.bread(self.dev, self.start + tail + 1)
            dbuf = self.cache.bread(self.dev, home)
            dbuf.data[:] = lbuf.data
            self.cache.bwrite(dbuf)
            self.cache.brelse(lbuf)
            self.cache.brelse(dbuf)

    def _write_log(self) -> None:
        """Copy modified blocks from the cache into the log area."""
        for tail, home in enumerate(self._blocks):
            to = self.cache.bread(self.dev, self.start + tail + 1)
            src = self.cache.bread(self.dev, home)
            to.data[:] = src.data
            self.cache.bwrite(to)
            self.cache.brelse(src)
            self.cache.brelse(to)

    def _commit(self) -> None:
        if self._blocks:
            self._write_log()
            self._write_head()
            self._install()
            self._blocks = []
            self._write_head()

    def begin_op(self) -> None:
        """Start an operation, waiting while a commit runs or the log might overflow."""
        with self._cond:
            while True:
                if self.committing:
                    self._cond.wait()
                elif len(self._blocks) + (self.outstanding + 1) * MAXOPBLOCKS > LOGSIZE:
                    self._cond.wait()
                else:
                    self.outstanding += 1
                    return

    def end_op(self) -> None:
        """Finish an operation; the last one out commits the transaction."""
        with self._cond:
            self.outstanding -= 1
            if self.committing:
                raise KernelPanic("log.committing")
            do_commit = self.outstanding == 0
            if do_commit:
                self.committing = True
            else:
                # Less space is reserved now; a waiting begin_op may proceed.
                self._cond.notify_all()

        if do_commit:
            try:
                self._commit()
            finally:
                with self._cond:
                    self.committing = False
                    self._cond.notify_all()

    @contextmanager
    def transaction(self) -> Iterator[Log]:
        """Run the enclosed block as one file system operation."""
        self.begin_op()
        try:
            yield self
        finally:
            self.end_op()

    def log_write(self, buf: Buffer) -> None:
        """Record a modified buffer in the transaction and pin it in the cache."""
        with self._cond:
            n = len(self._blocks)
            if n >= LOGSIZE or n >= self.size - 1:
                raise KernelPanic("too big a transaction")
            if self.outstanding < 1:
                raise KernelPanic("log_write outside of trans")
            if buf.blockno not in self._blocks:
                self._blocks.append(buf.blockno)
            buf.dirty = True