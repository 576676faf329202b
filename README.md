# xv6fs

A compact Unix-style file system kept on disk-image files and served from
memory. The package holds the pieces to build an image and work with it: a
buffer cache, a crash-safe redo log, inodes and directories, an open-file
table, pipes, a console line discipline and a PC keyboard scancode decoder.
It has no dependencies outside the standard library.

## Installing

```
pip install .
```

To run the tests, install the `test` extra and run `pytest`:

```
pip install .[test]
pytest
```

## Building an image

The `xv6-mkfs` command writes a fresh 1000-block image. Give it the image
path and then the files to copy into the root directory:

```
xv6-mkfs fs.img README notes.txt
```

Each file goes into the root directory under its base name, cut to 14
bytes, after the `.` and `..` entries. The command prints the layout and the
number of blocks allocated, and exits with status 1 if a file cannot be
read or an image cannot be made. From Python:

```python
from xv6fs.mkfs import build_image

used = build_image("fs.img", ["README", "notes.txt"])
```

`build_image` returns the number of blocks marked allocated in the free
map. For finer control, `ImageBuilder` offers `ialloc`, `iappend`,
`read_inode`, `write_inode` and `finish`, and can be used as a context
manager.

## Reading and writing an image

```python
from xv6fs.disk import MemDisk
from xv6fs.bufcache import BufferCache
from xv6fs.layout import Superblock
from xv6fs.log import Log
from xv6fs.fs import FileSystem

disk = MemDisk.from_file("fs.img")
cache = BufferCache(disk, 30)
buf = cache.bread(1, 1)
sb = Superblock.unpack(buf.data)
cache.brelse(buf)

log = Log(cache, 1, sb)        # recovers any committed transaction
fs = FileSystem(cache, log, 1)

with log.transaction():
    ip = fs.namei("/README")
    fs.ilock(ip)
    text = fs.readi(ip, 0, ip.size)
    fs.iunlockput(ip)

disk.save("fs.img")
```

`MemDisk` serves only device 1, the root device. Every change to the file
system, and every `iput`, belongs inside `log.transaction()` (or a
`begin_op()` / `end_op()` pair). Changes reach their home blocks only when
the last open operation ends, so an image is never left half written.

`FileSystem` also offers `ialloc`, `iupdate`, `idup`, `writei`, `stati`,
`dirlookup`, `dirlink` and `nameiparent`. Relative paths need a current
directory inode passed as `cwd`. Inodes of type `FileType.DEV` are read and
written through handlers registered in `fs.devsw`, keyed by major number:
objects with `read(ip, n)` and `write(ip, data)` methods.

## Open files and pipes

`FileTable` holds open files and offers `alloc`, `dup`, `close`, `stat`,
`read` and `write`. Writes to an inode are split into chunks, each in its
own transaction. `pipe_alloc(table)` returns a read end and a write end that
share one `Pipe` of 512 bytes; reading returns `b""` once the buffer is
empty and the write end is closed.

## Console and keyboard

`Console` takes an output object with a `write(str)` method. `interrupt`
feeds it typed characters with line editing: backspace, kill line (Ctrl-U)
and end of file (Ctrl-D); it returns whether Ctrl-P asked for a process
listing. `read` waits for a committed line. `KeyboardDecoder.feed` turns PC
scancodes into character codes, tracking Shift, Ctrl and Caps Lock.
`format_kernel` handles the small `%d %x %p %s %%` format language.

## Errors

Inconsistencies such as freeing a free block, or running out of buffers or
inodes, raise `xv6fs.layout.KernelPanic`. Ordinary failures use the usual
exceptions: `ValueError` for reads or writes outside a file,
`FileExistsError` from `dirlink`, `OSError` for a full file table or a file
opened the wrong way, and `BrokenPipeError` when writing to a pipe whose
read end is closed.

## What it does not do

There are no processes, system calls or a shell: nothing opens files by
path for you, creates directories, unlinks or renames. Those are built by
calling `FileSystem` and `FileTable` directly. The only disk is the
in-memory `MemDisk`, and the console is not registered as a device on its
own.