"""A disk whose blocks live in memory, backed by an image file."""

from __future__ import annotations

import os
from pathlib import Path

from .layout import BSIZE, ROOTDEV, KernelPanic


class MemDisk:
    """Holds a file system image in memory and serves it block by block."""

    def __init__(self, image: bytes) -> None:
        self._image = bytearray(image)
        self.nblocks = len(self._image) // BSIZE

    @classmethod
    def from_file(cls, path: str | os.PathLike[str]) -> MemDisk:
        return cls(Path(path).read_bytes())

    def save(self, path: str | os.PathLike[str]) -> None:
        Path(path).write_bytes(bytes(self._image))

    @property
    def image(self) -> bytes:
        return bytes(self._image)

    def _offset(self, dev: int, blockno: int) -> int:
        if dev != ROOTDEV:
            raise KernelPanic(f"iderw: request not for disk {ROOTDEV}")
        if blockno < 0 or blockno >= self.nblocks:
            raise KernelPanic("iderw: block out of range")
        return blockno * BSIZE

    def read_block(self, dev: int, blockno: int) -> bytes:
        start = self._offset(dev, blockno)
        return bytes(self._image[start:start + BSIZE])

    def write_block(self, dev: int, blockno: int, data: bytes) -> None:
        start = self._offset(dev, blockno)
        if len(data) != BSIZE:
            raise ValueError(f"a block is {BSIZE} bytes, got {len(data)}")
        self._image[start:start + BSIZE] = data