"""Inodes, file contents, directories and path names.

The file system sits on the buffer cache and the log.  Every change to a
block goes through the log, so callers that modify the file system (and
callers of ``iput``, which may free an inode) must run inside a log
transaction.

An inode in memory goes through these states:

* referenced: ``iget`` finds or recycles a cache entry and counts the
  reference; ``iput`` drops it;
* valid: ``ilock`` reads the on-disk inode into the entry;
* locked: only the holder of the inode's lock may examine or change the
  fields copied from disk, or the inode's content.
"""

from __future__ import annotations

import errno
import struct
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Protocol

from .bufcache import Buffer, BufferCache, _SleepLock
from .layout import (
    BPB,
    BSIZE,
    DINODE_SIZE,
    DIRENT_SIZE,
    DIRSIZ,
    IPB,
    MAXFILE,
    NDEV,
    NDIRECT,
    NINDIRECT,
    NINODE,
    ROOTDEV,
    ROOTINO,
    DirEntry,
    DiskInode,
    FileType,
    KernelPanic,
    Superblock,
    bitmap_block,
    inode_block,
)
from .log import Log

_ADDR = struct.Struct("<I")
_INDIRECT = struct.Struct(f"<{NINDIRECT}I")
_ENCODING = "utf-8"
_ERRORS = "surrogateescape"


class Device(Protocol):
    """Handlers for an inode of type DEV; either may be left out."""

    def read(self, ip: Inode, n: int) -> bytes: ...

    def write(self, ip: Inode, data: bytes) -> int: ...


@dataclass(eq=False)
class Inode:
    """The in-memory copy of an inode."""

    dev: int = 0
    inum: int = 0
    ref: int = 0
    valid: bool = False
    type: int = 0
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: list[int] = field(default_factory=lambda: [0] * (NDIRECT + 1))
    _lock: _SleepLock = field(default_factory=_SleepLock, init=False, repr=False)

    @property
    def held(self) -> bool:
        """Whether the calling thread holds this inode's lock."""
        return self._lock.held()


@dataclass(frozen=True)
class Stat:
    """Metadata about an inode."""

    dev: int
    ino: int
    type: int
    nlink: int
    size: int


def _name_bytes(name: str) -> bytes:
    return name.encode(_ENCODING, _ERRORS)[:DIRSIZ].split(b"\0", 1)[0]


def namecmp(s: str, t: str) -> int:
    """Compare two names over their first DIRSIZ bytes: negative, zero or positive."""
    a, b = _name_bytes(s), _name_bytes(t)
    if a == b:
        return 0
    return -1 if a < b else 1


def skipelem(path: str) -> tuple[str, str] | None:
    """Split off the first element of ``path``.

    Returns the element, cut to DIRSIZ bytes, and the rest of the path
    without leading slashes; ``None`` if there is no element.
    """
    rest = path.lstrip("/")
    if not rest:
        return None
    name, _, rest = rest.partition("/")
    name = name.encode(_ENCODING, _ERRORS)[:DIRSIZ].decode(_ENCODING, _ERRORS)
    return name, rest.lstrip("/")


def _slot(inum: int) -> slice:
    start = (inum % IPB) * DINODE_SIZE
    return slice(start, start + DINODE_SIZE)


class FileSystem:
    """The file system on one device, with its inode cache."""

    def __init__(self, cache: BufferCache, log: Log, dev: int = ROOTDEV) -> None:
        self.cache = cache
        self.log = log
        self.dev = dev
        with self._block(dev, 1) as buf:
            self.sb = Superblock.unpack(bytes(buf.data))
        self._icache_lock = threading.Lock()
        self._inodes = [Inode() for _ in range(NINODE)]
        self.devsw: dict[int, Device] = {}

    @contextmanager
    def _block(self, dev: int, blockno: int) -> Iterator[Buffer]:
        buf = self.cache.bread(dev, blockno)
        try:
            yield buf
        finally:
            self.cache.brelse(buf)

    # Blocks.

    def _bzero(self, dev: int, bno: int) -> None:
        with self._block(dev, bno) as bp:
            bp.data[:] = bytes(BSIZE)
            self.log.log_write(bp)

    def _balloc(self, dev: int) -> int:
        size = self.sb.size
        for b in range(0, size, BPB):
            allocated = None
            with self._block(dev, bitmap_block(b, self.sb)) as bp:
                for bi in range(min(BPB, size - b)):
                    mask = 1 << (bi % 8)
                    if not bp.data[bi // 8] & mask:
                        bp.data[bi // 8] |= mask
                        self.log.log_write(bp)
                        allocated = b + bi
                        break
            if allocated is not None:
                self._bzero(dev, allocated)
                return allocated
        raise KernelPanic("balloc: out of blocks")

    def _bfree(self, dev: int, b: int) -> None:
        with self._block(dev, bitmap_block(b, self.sb)) as bp:
            bi = b % BPB
            mask = 1 << (bi % 8)
            if not bp.data[bi // 8] & mask:
                raise KernelPanic("freeing free block")
            bp.data[bi // 8] &= ~mask & 0xFF
            self.log.log_write(bp)

    # Inodes.

    def ialloc(self, dev: int, type: int) -> Inode:
        """Allocate an inode of the given type; return it referenced but unlocked."""
        for inum in range(1, self.sb.ninodes):
            free = False
            with self._block(dev, inode_block(inum, self.sb)) as bp:
                slot = _slot(inum)
                if DiskInode.unpack(bytes(bp.data[slot])).type == 0:
                    bp.data[slot] = DiskInode(type=int(type)).pack()
                    self.log.log_write(bp)
                    free = True
            if free:
                return self._iget(dev, inum)
        raise KernelPanic("ialloc: no inodes")

    def iupdate(self, ip: Inode) -> None:
        """Copy a locked inode's fields to disk."""
        with self._block(ip.dev, inode_block(ip.inum, self.sb)) as bp:
            bp.data[_slot(ip.inum)] = DiskInode(
                type=ip.type,
                major=ip.major,
                minor=ip.minor,
                nlink=ip.nlink,
                size=ip.size,
                addrs=list(ip.addrs),
            ).pack()
            self.log.log_write(bp)

    def _iget(self, dev: int, inum: int) -> Inode:
        with self._icache_lock:
            empty = None
            for ip in self._inodes:
                if ip.ref > 0 and ip.dev == dev and ip.inum == inum:
                    ip.ref += 1
                    return ip
                if empty is None and ip.ref == 0:
                    empty = ip
            if empty is None:
                raise KernelPanic("iget: no inodes")
            empty.dev = dev
            empty.inum = inum
            empty.ref = 1
            empty.valid = False
            return empty

    def idup(self, ip: Inode) -> Inode:
        """Add a reference to ``ip`` and return it."""
        with self._icache_lock:
            ip.ref += 1
        return ip

    def ilock(self, ip: Inode | None) -> None:
        """Lock an inode, reading it from disk if needed."""
        if ip is None or ip.ref < 1:
            raise KernelPanic("ilock")
        ip._lock.acquire()
        if not ip.valid:
            with self._block(ip.dev, inode_block(ip.inum, self.sb)) as bp:
                dip = DiskInode.unpack(bytes(bp.data[_slot(ip.inum)]))
            ip.type = dip.type
            ip.major = dip.major
            ip.minor = dip.minor
            ip.nlink = dip.nlink
            ip.size = dip.size
            ip.addrs = list(dip.addrs)
            ip.valid = True
            if ip.type == 0:
                raise KernelPanic("ilock: no type")

    def iunlock(self, ip: Inode | None) -> None:
        """Unlock an inode held by the caller."""
        if ip is None or not ip.held or ip.ref < 1:
            raise KernelPanic("iunlock")
        ip._lock.release()

    def iput(self, ip: Inode) -> None:
        """Drop a reference; free the inode on disk if it was the last and unlinked."""
        ip._lock.acquire()
        try:
            if ip.valid and ip.nlink == 0:
                with self._icache_lock:
                    r = ip.ref
                if r == 1:
                    self._itrunc(ip)
                    ip.type = 0
                    self.iupdate(ip)
                    ip.valid = False
        finally:
            ip._lock.release()
        with self._icache_lock:
            ip.ref -= 1

    def iunlockput(self, ip: Inode) -> None:
        """Unlock, then drop a reference."""
        self.iunlock(ip)
        self.iput(ip)

    # Inode content.

    def _bmap(self, ip: Inode, bn: int) -> int:
        if bn < NDIRECT:
            if ip.addrs[bn] == 0:
                ip.addrs[bn] = self._balloc(ip.dev)
            return ip.addrs[bn]
        bn -= NDIRECT
        if bn < NINDIRECT:
            if ip.addrs[NDIRECT] == 0:
                ip.addrs[NDIRECT] = self._balloc(ip.dev)
            with self._block(ip.dev, ip.addrs[NDIRECT]) as bp:
                (addr,) = _ADDR.unpack_from(bp.data, bn * _ADDR.size)
                if addr == 0:
                    addr = self._balloc(ip.dev)
                    _ADDR.pack_into(bp.data, bn * _ADDR.size, addr)
                    self.log.log_write(bp)
            return addr
        raise KernelPanic("bmap: out of range")

    def _itrunc(self, ip: Inode) -> None:
        for i in range(NDIRECT):
            if ip.addrs[i]:
                self._bfree(ip.dev, ip.addrs[i])
                ip.addrs[i] = 0
        if ip.addrs[NDIRECT]:
            with self._block(ip.dev, ip.addrs[NDIRECT]) as bp:
                for addr in _INDIRECT.unpack(bytes(bp.data)):
                    if addr:
                        self._bfree(ip.dev, addr)
            self._bfree(ip.dev, ip.addrs[NDIRECT])
            ip.addrs[NDIRECT] = 0
        ip.size = 0
        self.iupdate(ip)

    def stati(self, ip: Inode) -> Stat:
        """Metadata of a locked inode."""
        return Stat(dev=ip.dev, ino=ip.inum, type=ip.type, nlink=ip.nlink, size=ip.size)

    def _device(self, ip: Inode, op: str):
        device = self.devsw.get(ip.major) if 0 <= ip.major < NDEV else None
        handler = getattr(device, op, None)
        if handler is None:
            raise OSError(errno.ENODEV, f"no {op} handler for device {ip.major}")
        return handler

    def readi(self, ip: Inode, off: int, n: int) -> bytes:
        """Read up to ``n`` bytes at ``off`` from a locked inode."""
        if ip.type == FileType.DEV:
            return self._device(ip, "read")(ip, n)
        if off < 0 or n < 0 or off > ip.size:
            raise ValueError(f"read of {n} bytes at {off} outside a file of {ip.size}")
        end = off + min(n, ip.size - off)
        chunks = []
        pos = off
        while pos < end:
            blockno = self._bmap(ip, pos // BSIZE)
            with self._block(ip.dev, blockno) as bp:
                start = pos % BSIZE
                m = min(end - pos, BSIZE - start)
                chunks.append(bytes(bp.data[start:start + m]))
            pos += m
        return b"".join(chunks)

    def writei(self, ip: Inode, data: bytes, off: int) -> int:
        """Write ``data`` at ``off`` into a locked inode; return the bytes written."""
        if ip.type == FileType.DEV:
            return self._device(ip, "write")(ip, bytes(data))
        n = len(data)
        if off < 0 or off > ip.size:
            raise ValueError(f"write at {off} beyond the end of a file of {ip.size}")
        if off + n > MAXFILE * BSIZE:
            raise ValueError(f"write would exceed the largest file of {MAXFILE * BSIZE}")
        pos = off
        written = 0
        while written < n:
            blockno = self._bmap(ip, pos // BSIZE)
            with self._block(ip.dev, blockno) as bp:
                start = pos % BSIZE
                m = min(n - written, BSIZE - start)
                bp.data[start:start + m] = data[written:written + m]
                self.log.log_write(bp)
            written += m
            pos += m
        if n > 0 and pos > ip.size:
            ip.size = pos
            self.iupdate(ip)
        return n

    # Directories.

    def dirlookup(self, dp: Inode, name: str) -> tuple[Inode, int] | None:
        """Find ``name`` in a locked directory; return its inode and entry offset."""
        if dp.type != FileType.DIR:
            raise KernelPanic("dirlookup not DIR")
        for off in range(0, dp.size, DIRENT_SIZE):
            raw = self.readi(dp, off, DIRENT_SIZE)
            if len(raw) != DIRENT_SIZE:
                raise KernelPanic("dirlookup read")
            de = DirEntry.unpack(raw)
            if de.inum == 0:
                continue
            if namecmp(name, de.name) == 0:
                return self._iget(dp.dev, de.inum), off
        return None

    def dirlink(self, dp: Inode, name: str, inum: int) -> None:
        """Add the entry (name, inum) to a locked directory."""
        found = self.dirlookup(dp, name)
        if found is not None:
            self.iput(found[0])
            raise FileExistsError(errno.EEXIST, "entry already exists", name)
        off = dp.size
        for candidate in range(0, dp.size, DIRENT_SIZE):
            raw = self.readi(dp, candidate, DIRENT_SIZE)
            if len(raw) != DIRENT_SIZE:
                raise KernelPanic("dirlink read")
            if DirEntry.unpack(raw).inum == 0:
                off = candidate
                break
        if self.writei(dp, DirEntry(inum, name).pack(), off) != DIRENT_SIZE:
            raise KernelPanic("dirlink")

    # Paths.

    def _namex(self, path: str, parent: bool, cwd: Inode | None):
        if path.startswith("/"):
            ip = self._iget(ROOTDEV, ROOTINO)
        elif cwd is None:
            raise ValueError(f"relative path {path!r} needs a current directory")
        else:
            ip = self.idup(cwd)

        while (elem := skipelem(path)) is not None:
            name, path = elem
            self.ilock(ip)
            if ip.type != FileType.DIR:
                self.iunlockput(ip)
                return None
            if parent and path == "":
                # Stop one level early.
                self.iunlock(ip)
                return ip, name
            found = self.dirlookup(ip, name)
            self.iunlockput(ip)
            if found is None:
                return None
            ip = found[0]
        if parent:
            self.iput(ip)
            return None
        return ip

    def namei(self, path: str, cwd: Inode | None = None) -> Inode | None:
        """Return the referenced inode named by ``path``, or ``None``."""
        return self._namex(path, False, cwd)

    def nameiparent(
        self, path: str, cwd: Inode | None = None
    ) -> tuple[Inode, str] | None:
        """Return the parent directory of ``path`` and its last element, or ``None``."""
        return self._namex(path, True, cwd)