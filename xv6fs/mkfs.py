"""Build a file system image holding a root directory and a set of files."""

from __future__ import annotations

import os
import struct
import sys
from collections.abc import Iterable, Sequence
from pathlib import Path

from .layout import (
    BPB,
    BSIZE,
    DINODE_SIZE,
    FSSIZE,
    IPB,
    LOGSIZE,
    MAXFILE,
    NDIRECT,
    NINDIRECT,
    ROOTINO,
    DirEntry,
    DiskInode,
    FileType,
    Superblock,
    inode_block,
)

NINODES = 200
NBITMAP = FSSIZE // BPB + 1
NINODEBLOCKS = NINODES // IPB + 1
NLOG = LOGSIZE
# Boot block, superblock, log, inode blocks and bitmap.
NMETA = 2 + NLOG + NINODEBLOCKS + NBITMAP
NDATA = FSSIZE - NMETA

_INDIRECT = struct.Struct(f"<{NINDIRECT}I")


class ImageBuilder:
    """Writes a fresh, empty image and allocates inodes and blocks in it."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)
        self.sb = Superblock(
            size=FSSIZE,
            nblocks=NDATA,
            ninodes=NINODES,
            nlog=NLOG,
            logstart=2,
            inodestart=2 + NLOG,
            bmapstart=2 + NLOG + NINODEBLOCKS,
        )
        self.freeinode = 1
        self.freeblock = NMETA
        self._fp = open(self.path, "w+b")
        try:
            zero = bytes(BSIZE)
            for sec in range(FSSIZE):
                self._wsect(sec, zero)
            self._wsect(1, self.sb.pack().ljust(BSIZE, b"\0"))
        except BaseException:
            self._fp.close()
            raise

    def __enter__(self) -> ImageBuilder:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._fp.close()

    def _wsect(self, sec: int, data: bytes) -> None:
        self._fp.seek(sec * BSIZE)
        self._fp.write(data)

    def _rsect(self, sec: int) -> bytes:
        self._fp.seek(sec * BSIZE)
        data = self._fp.read(BSIZE)
        if len(data) != BSIZE:
            raise OSError(f"read: short read of sector {sec}")
        return data

    def _next_block(self) -> int:
        block = self.freeblock
        self.freeblock += 1
        return block

    def read_inode(self, inum: int) -> DiskInode:
        start = (inum % IPB) * DINODE_SIZE
        return DiskInode.unpack(self._rsect(inode_block(inum, self.sb))[start:])

    def write_inode(self, inum: int, dinode: DiskInode) -> None:
        bn = inode_block(inum, self.sb)
        block = bytearray(self._rsect(bn))
        start = (inum % IPB) * DINODE_SIZE
        block[start:start + DINODE_SIZE] = dinode.pack()
        self._wsect(bn, bytes(block))

    def ialloc(self, type: int) -> int:
        """Allocate the next inode with the given type and one link."""
        inum = self.freeinode
        self.freeinode += 1
        self.write_inode(inum, DiskInode(type=int(type), nlink=1, size=0))
        return inum

    def iappend(self, inum: int, data: bytes) -> None:
        """Append bytes to an inode's content, allocating blocks as needed."""
        din = self.read_inode(inum)
        off = din.size
        pos = 0
        while pos < len(data):
            fbn = off // BSIZE
            if fbn >= MAXFILE:
                raise ValueError(f"inode {inum} would exceed {MAXFILE} blocks")
            if fbn < NDIRECT:
                if din.addrs[fbn] == 0:
                    din.addrs[fbn] = self._next_block()
                block_no = din.addrs[fbn]
            else:
                if din.addrs[NDIRECT] == 0:
                    din.addrs[NDIRECT] = self._next_block()
                indirect = list(_INDIRECT.unpack(self._rsect(din.addrs[NDIRECT])))
                slot = fbn - NDIRECT
                if indirect[slot] == 0:
                    indirect[slot] = self._next_block()
                    self._wsect(din.addrs[NDIRECT], _INDIRECT.pack(*indirect))
                block_no = indirect[slot]
            n1 = min(len(data) - pos, (fbn + 1) * BSIZE - off)
            block = bytearray(self._rsect(block_no))
            start = off - fbn * BSIZE
            block[start:start + n1] = data[pos:pos + n1]
            self._wsect(block_no, bytes(block))
            pos += n1
            off += n1
        din.size = off
        self.write_inode(inum, din)

    def finish(self) -> int:
        """Mark every block allocated so far in the free map; return their count."""
        used = self.freeblock
        if used >= BPB:
            raise ValueError(f"{used} blocks do not fit in one bitmap block")
        bitmap = bytearray(BSIZE)
        for i in range(used):
            bitmap[i // 8] |= 1 << (i % 8)
        self._wsect(self.sb.bmapstart, bytes(bitmap))
        self._fp.flush()
        return used


def _populate(builder: ImageBuilder, files: Iterable[str | os.PathLike[str]]) -> None:
    rootino = builder.ialloc(FileType.DIR)
    if rootino != ROOTINO:
        raise ValueError(f"root inode is {rootino}, expected {ROOTINO}")
    builder.iappend(rootino, DirEntry(rootino, ".").pack())
    builder.iappend(rootino, DirEntry(rootino, "..").pack())

    for path in files:
        data = Path(path).read_bytes()
        inum = builder.ialloc(FileType.FILE)
        builder.iappend(rootino, DirEntry(inum, Path(path).name).pack())
        builder.iappend(inum, data)

    # Round the root directory up past its last block.
    din = builder.read_inode(rootino)
    din.size = (din.size // BSIZE + 1) * BSIZE
    builder.write_inode(rootino, din)


def build_image(path: str | os.PathLike[str], files: Iterable[str | os.PathLike[str]]) -> int:
    """Write an image at ``path`` holding ``files``; return the blocks used."""
    with ImageBuilder(path) as builder:
        _populate(builder, files)
        return builder.finish()


def main(argv: Sequence[str] | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        print("Usage: mkfs fs.img files...", file=sys.stderr)
        return 1
    image, *files = args

    try:
        builder = ImageBuilder(image)
    except OSError as exc:
        print(f"{image}: {exc.strerror or exc}", file=sys.stderr)
        return 1

    with builder:
        print(
            f"nmeta {NMETA} (boot, super, log blocks {NLOG} inode blocks "
            f"{NINODEBLOCKS}, bitmap blocks {NBITMAP}) blocks {NDATA} total {FSSIZE}"
        )
        try:
            _populate(builder, files)
        except OSError as exc:
            print(f"{exc.filename or image}: {exc.strerror or exc}", file=sys.stderr)
            return 1
        except ValueError as exc:
            print(f"mkfs: {exc}", file=sys.stderr)
            return 1
        print(f"balloc: first {builder.freeblock} blocks have been allocated")
        try:
            builder.finish()
        except ValueError as exc:
            print(f"mkfs: {exc}", file=sys.stderr)
            return 1
        print(f"balloc: write bitmap block at sector {builder.sb.bmapstart}")
    return 0


if __name__ == "__main__":
    sys.exit(main())