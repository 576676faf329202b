"""Console: kernel-style formatting, line-edited input and output."""

from __future__ import annotations

import threading
from collections.abc import Iterable
from typing import Protocol

BACKSPACE = 0x100
INPUT_BUF = 128


def _ctrl(c: str) -> int:
    return ord(c) - ord("@")


class TextOutput(Protocol):
    def write(self, s: str) -> object: ...


def _format_int(value: int, base: int, signed: bool) -> str:
    x = int(value) & 0xFFFFFFFF
    negative = signed and x & 0x80000000
    if negative:
        x = 0x100000000 - x
    digits = str(x) if base == 10 else format(x, "x")
    return "-" + digits if negative else digits


def format_kernel(fmt: str, *args: object) -> str:
    """Format like the kernel's printf: only %d, %x, %p, %s and %%."""
    out: list[str] = []
    values = iter(args)

    def arg() -> object:
        try:
            return next(values)
        except StopIteration:
            raise TypeError("not enough arguments for format string") from None

    chars = iter(fmt)
    for c in chars:
        if c != "%":
            out.append(c)
            continue
        c = next(chars, None)
        if c is None:
            break
        if c == "d":
            out.append(_format_int(arg(), 10, True))
        elif c in ("x", "p"):
            out.append(_format_int(arg(), 16, False))
        elif c == "s":
            s = arg()
            out.append("(null)" if s is None else str(s))
        elif c == "%":
            out.append("%")
        else:
            # Print unknown % sequence to draw attention.
            out.append("%" + c)
    return "".join(out)


class Console:
    """Echoes typed input, keeps an editable line buffer, and writes output."""

    def __init__(self, output: TextOutput) -> None:
        self.output = output
        self._cond = threading.Condition()
        self._buf = bytearray(INPUT_BUF)
        self._r = 0  # read index
        self._w = 0  # write index
        self._e = 0  # edit index

    def putc(self, c: int) -> None:
        """Write one character; BACKSPACE erases the previous one."""
        if c == BACKSPACE:
            self.output.write("\b \b")
        else:
            self.output.write(chr(c & 0xFF))

    def interrupt(self, chars: Iterable[int] | str) -> bool:
        """Take typed characters; return whether a process listing was asked for."""
        dump = False
        with self._cond:
            for c in chars:
                if isinstance(c, str):
                    c = ord(c)
                if c == _ctrl("P"):
                    dump = True
                elif c == _ctrl("U"):
                    while (self._e != self._w
                           and self._buf[(self._e - 1) % INPUT_BUF] != ord("\n")):
                        self._e -= 1
                        self.putc(BACKSPACE)
                elif c in (_ctrl("H"), 0x7F):
                    if self._e != self._w:
                        self._e -= 1
                        self.putc(BACKSPACE)
                elif c != 0 and self._e - self._r < INPUT_BUF:
                    if c == ord("\r"):
                        c = ord("\n")
                    c &= 0xFF
                    self._buf[self._e % INPUT_BUF] = c
                    self._e += 1
                    self.putc(c)
                    if c in (ord("\n"), _ctrl("D")) or self._e == self._r + INPUT_BUF:
                        self._w = self._e
                        self._cond.notify_all()
        return dump

    def read(self, n: int) -> bytes:
        """Read up to ``n`` bytes of committed input, stopping after a newline.

        Waits for input; an empty result means end of file (^D).
        """
        target = n
        out = bytearray()
        with self._cond:
            while n > 0:
                while self._r == self._w:
                    self._cond.wait()
                c = self._buf[self._r % INPUT_BUF]
                self._r += 1
                if c == _ctrl("D"):
                    if n < target:
                        # Keep ^D so the next read returns nothing.
                        self._r -= 1
                    break
                out.append(c)
                n -= 1
                if c == ord("\n"):
                    break
        return bytes(out)

    def write(self, data: bytes) -> int:
        """Write bytes to the output; return how many."""
        data = bytes(data)
        with self._cond:
            for b in data:
                self.putc(b)
        return len(data)