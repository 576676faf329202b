import pytest

from xv6fs.bufcache import Buffer, BufferCache
from xv6fs.disk import MemDisk
from xv6fs.layout import BSIZE, ROOTDEV, KernelPanic


class CountingDisk:
    def __init__(self, nblocks):
        self.inner = MemDisk(b"".join(bytes([i]) * BSIZE for i in range(nblocks)))
        self.reads = []
        self.writes = []

    def read_block(self, dev, blockno):
        self.reads.append(blockno)
        return self.inner.read_block(dev, blockno)

    def write_block(self, dev, blockno, data):
        self.writes.append(blockno)
        self.inner.write_block(dev, blockno, data)


def test_bread_returns_block_contents():
    cache = BufferCache(CountingDisk(4), nbuf=3)
    buf = cache.bread(ROOTDEV, 2)
    assert bytes(buf.data) == bytes([2]) * BSIZE
    assert buf.valid and buf.held
    assert (buf.dev, buf.blockno, buf.refcnt) == (ROOTDEV, 2, 1)
    cache.brelse(buf)
    assert not buf.held
    assert buf.refcnt == 0


def test_cached_block_is_not_reread():
    disk = CountingDisk(4)
    cache = BufferCache(disk, nbuf=3)
    first = cache.bread(ROOTDEV, 1)
    cache.brelse(first)
    second = cache.bread(ROOTDEV, 1)
    assert second is first
    assert disk.reads == [1]
    cache.brelse(second)


def test_bwrite_reaches_disk():
    disk = CountingDisk(4)
    cache = BufferCache(disk, nbuf=3)
    buf = cache.bread(ROOTDEV, 3)
    buf.data[:] = b"\x55" * BSIZE
    cache.bwrite(buf)
    assert not buf.dirty and buf.valid
    cache.brelse(buf)
    assert disk.writes == [3]
    assert disk.inner.read_block(ROOTDEV, 3) == b"\x55" * BSIZE


def test_exhausted_cache_panics():
    cache = BufferCache(CountingDisk(4), nbuf=2)
    cache.bread(ROOTDEV, 0)
    cache.bread(ROOTDEV, 1)
    with pytest.raises(KernelPanic, match="no buffers"):
        cache.bread(ROOTDEV, 2)


def test_least_recently_used_is_recycled():
    disk = CountingDisk(4)
    cache = BufferCache(disk, nbuf=2)
    for blockno in (0, 1, 2):
        cache.brelse(cache.bread(ROOTDEV, blockno))
    # Block 0 was evicted; block 1 is still cached.
    cache.brelse(cache.bread(ROOTDEV, 1))
    cache.brelse(cache.bread(ROOTDEV, 0))
    assert disk.reads == [0, 1, 2, 0]


def test_dirty_buffer_is_not_recycled():
    cache = BufferCache(CountingDisk(4), nbuf=2)
    pinned = cache.bread(ROOTDEV, 0)
    pinned.dirty = True
    cache.brelse(pinned)
    cache.bread(ROOTDEV, 1)
    with pytest.raises(KernelPanic):
        cache.bread(ROOTDEV, 2)


def test_release_without_holding_panics():
    cache = BufferCache(CountingDisk(2), nbuf=2)
    with pytest.raises(KernelPanic, match="brelse"):
        cache.brelse(Buffer())


def test_bwrite_without_holding_panics():
    cache = BufferCache(CountingDisk(2), nbuf=2)
    with pytest.raises(KernelPanic, match="bwrite"):
        cache.bwrite(Buffer())


def test_disk_errors_propagate():
    cache = BufferCache(MemDisk(bytes(BSIZE)), nbuf=2)
    with pytest.raises(KernelPanic, match="out of range"):
        cache.bread(ROOTDEV, 5)