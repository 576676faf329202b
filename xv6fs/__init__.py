"""A small Unix-style file system: image builder, buffer cache, redo log, inodes, open files, pipes, console and keyboard decoding."""

__version__ = "0.1.0"

__all__ = [
    "layout",
    "disk",
    "bufcache",
    "log",
    "mkfs",
    "fs",
    "file",
    "pipe",
    "kbd",
    "console",
]