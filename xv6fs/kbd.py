"""PC keyboard scan code decoding."""

from __future__ import annotations

NO = 0

SHIFT = 1 << 0
CTL = 1 << 1
ALT = 1 << 2
CAPSLOCK = 1 << 3
NUMLOCK = 1 << 4
SCROLLLOCK = 1 << 5
E0ESC = 1 << 6

KEY_HOME = 0xE0
KEY_END = 0xE1
KEY_UP = 0xE2
KEY_DN = 0xE3
KEY_LF = 0xE4
KEY_RT = 0xE5
KEY_PGUP = 0xE6
KEY_PGDN = 0xE7
KEY_INS = 0xE8
KEY_DEL = 0xE9


def ctrl(c: str) -> int:
    """The control code of character ``c``."""
    return (ord(c) - ord("@")) & 0xFF


def _table(prefix: list[int], extras: dict[int, int]) -> tuple[int, ...]:
    table = prefix + [NO] * (256 - len(prefix))
    for code, value in extras.items():
        table[code] = value
    return tuple(table)


_SPECIAL = {
    0xC8: KEY_UP, 0xD0: KEY_DN,
    0xC9: KEY_PGUP, 0xD1: KEY_PGDN,
    0xCB: KEY_LF, 0xCD: KEY_RT,
    0x97: KEY_HOME, 0xCF: KEY_END,
    0xD2: KEY_INS, 0xD3: KEY_DEL,
}

_KEYPAD = "\x00 " + "\x00" * 13 + "789-456+1230."

SHIFTCODE = _table([], {0x1D: CTL, 0x2A: SHIFT, 0x36: SHIFT, 0x38: ALT, 0x9D: CTL, 0xB8: ALT})
TOGGLECODE = _table([], {0x3A: CAPSLOCK, 0x45: NUMLOCK, 0x46: SCROLLLOCK})

NORMALMAP = _table(
    [ord(c) for c in
     "\x00\x1b1234567890-=\b\tqwertyuiop[]\n\x00asdfghjkl;'`\x00\\zxcvbnm,./\x00*"
     + _KEYPAD],
    {0x9C: ord("\n"), 0xB5: ord("/"), **_SPECIAL},
)

SHIFTMAP = _table(
    [ord(c) for c in
     "\x00\x1b!@#$%^&*()_+\b\tQWERTYUIOP{}\n\x00ASDFGHJKL:\"~\x00|ZXCVBNM<>?\x00*"
     + _KEYPAD],
    {0x9C: ord("\n"), 0xB5: ord("/"), **_SPECIAL},
)

CTLMAP = _table(
    [NO] * 16
    + [ctrl(c) for c in "QWERTYUIOP"]
    + [NO, NO, ord("\r"), NO]
    + [ctrl(c) for c in "ASDFGHJKL"]
    + [NO, NO, NO, NO, ctrl("\\")]
    + [ctrl(c) for c in "ZXCVBNM"]
    + [NO, NO, ctrl("/"), NO, NO],
    {0x9C: ord("\r"), 0xB5: ctrl("/"), **_SPECIAL},
)

_CHARCODE = (NORMALMAP, SHIFTMAP, CTLMAP, CTLMAP)


class KeyboardDecoder:
    """Turns a stream of scan codes into character codes."""

    def __init__(self) -> None:
        self.shift = 0

    def feed(self, scancode: int) -> int:
        """Decode one scan code; return its character, or 0 if it yields none."""
        data = scancode & 0xFF
        if data == 0xE0:
            self.shift |= E0ESC
            return 0
        if data & 0x80:
            # Key released.
            if not self.shift & E0ESC:
                data &= 0x7F
            self.shift &= ~(SHIFTCODE[data] | E0ESC)
            return 0
        if self.shift & E0ESC:
            data |= 0x80
            self.shift &= ~E0ESC

        self.shift |= SHIFTCODE[data]
        self.shift ^= TOGGLECODE[data]
        c = _CHARCODE[self.shift & (CTL | SHIFT)][data]
        if self.shift & CAPSLOCK:
            if ord("a") <= c <= ord("z"):
                c += ord("A") - ord("a")
            elif ord("A") <= c <= ord("Z"):
                c += ord("a") - ord("A")
        return c