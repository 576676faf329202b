import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from xv6fs.file import FileKind, FileTable
from xv6fs.pipe import PIPESIZE, Pipe, pipe_alloc


def test_write_then_read():
    p = Pipe()
    assert p.write(b"hello") == 5
    assert p.read(100) == b"hello"
    assert p.nread == p.nwrite == 5


def test_partial_read():
    p = Pipe()
    p.write(b"abcdef")
    assert p.read(2) == b"ab"
    assert p.read(10) == b"cdef"


def test_read_after_writer_closed():
    p = Pipe()
    p.write(b"tail")
    p.close(True)
    assert p.read(10) == b"tail"
    assert p.read(10) == b""


def test_write_to_closed_reader_fails_when_full():
    p = Pipe()
    p.close(False)
    assert p.write(b"x" * PIPESIZE) == PIPESIZE
    with pytest.raises(BrokenPipeError):
        p.write(b"y")


def test_large_write_waits_for_reader():
    p = Pipe()
    payload = bytes(range(256)) * 5
    received = bytearray()

    def reader():
        while len(received) < len(payload):
            received.extend(p.read(100))

    t = threading.Thread(target=reader, daemon=True)
    t.start()
    assert p.write(payload) == len(payload)
    t.join(timeout=5)
    assert bytes(received) == payload


def test_read_waits_for_writer():
    p = Pipe()
    with ThreadPoolExecutor(max_workers=1) as pool:
        pending = pool.submit(p.read, 10)
        time.sleep(0.05)
        assert not pending.done()
        assert p.write(b"late") == 4
        assert pending.result(timeout=5) == b"late"


def test_pipe_alloc_sets_ends():
    table = FileTable(None, nfile=2)
    r, w = pipe_alloc(table)
    assert r.kind is FileKind.PIPE and w.kind is FileKind.PIPE
    assert r.pipe is w.pipe
    assert (r.readable, r.writable) == (True, False)
    assert (w.readable, w.writable) == (False, True)


def test_pipe_alloc_full_table_releases_slot():
    table = FileTable(None, nfile=1)
    with pytest.raises(OSError):
        pipe_alloc(table)
    assert table.alloc().ref == 1