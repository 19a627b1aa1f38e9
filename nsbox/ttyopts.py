"""Parsing of terminal options and applying them to terminal attributes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

DEFAULT_PTMX = "/dev/pts/ptmx"

NCCS = 32

# Input modes.
IGNBRK = 0o1
BRKINT = 0o2
IGNPAR = 0o4
PARMRK = 0o10
INPCK = 0o20
ISTRIP = 0o40
INLCR = 0o100
IGNCR = 0o200
ICRNL = 0o400
IUCLC = 0o1000
IXON = 0o2000
IXANY = 0o4000
IXOFF = 0o10000
IUTF8 = 0o40000

# Output modes.
OPOST = 0o1
OLCUC = 0o2
ONLCR = 0o4
OCRNL = 0o10
ONOCR = 0o20
ONLRET = 0o40
OFILL = 0o100
NL0 = 0o0
NL1 = 0o400
CR0 = 0o0
CR1 = 0o1000
CR2 = 0o2000
CR3 = 0o3000
TAB0 = 0o0
TAB1 = 0o4000
TAB2 = 0o10000
TAB3 = 0o14000
VT0 = 0o0
VT1 = 0o40000
FF0 = 0o0
FF1 = 0o100000

# Control modes.
CSTOPB = 0o100
CREAD = 0o200
PARENB = 0o400
PARODD = 0o1000
HUPCL = 0o2000
CLOCAL = 0o4000
CMSPAR = 0o10000000000
CRTSCTS = 0o20000000000

# Local modes.
ISIG = 0o1
ICANON = 0o2
ECHO = 0o10
ECHOE = 0o20
ECHOK = 0o40
ECHONL = 0o100
NOFLSH = 0o200
TOSTOP = 0o400
ECHOCTL = 0o1000
ECHOPRT = 0o2000
ECHOKE = 0o4000
FLUSHO = 0o10000
IEXTEN = 0o100000
EXTPROC = 0o200000

# Control character indices.
VINTR = 0
VQUIT = 1
VERASE = 2
VKILL = 3
VEOF = 4
VSTART = 8
VSTOP = 9
VSUSP = 10
VEOL = 11
VREPRINT = 12
VWERASE = 14
VLNEXT = 15
VEOL2 = 16

_SPACE = b" \t\n\r\f\v"
_HEX = b"0123456789abcdefABCDEF"


class TtyOptionError(ValueError):
    """Raised when a tty option is unknown or has an invalid value."""


@dataclass
class TermiosFlags:
    """A set of bits for each of the four termios flag words."""

    iflag: int = 0
    oflag: int = 0
    cflag: int = 0
    lflag: int = 0


@dataclass
class TtyOptions:
    """Terminal settings requested for the pty of the spawned process.

    ``set_flags`` are turned on and ``cleared_flags`` turned off; ``cc``
    maps control character indices to the value they are set to.
    """

    ptmx: str | None = None
    set_flags: TermiosFlags = field(default_factory=TermiosFlags)
    cleared_flags: TermiosFlags = field(default_factory=TermiosFlags)
    cc: dict[int, int] = field(default_factory=dict)

    @property
    def ptmx_path(self) -> str:
        """The ptmx device to open, the default unless one was given."""
        return self.ptmx if self.ptmx is not None else DEFAULT_PTMX

    def parse(self, key: str, val: str | None) -> None:
        """Apply tty option ``key``; a leading ``-`` negates a flag."""
        name = key[1:] if key.startswith("-") else key
        entry = _OPTIONS.get(name)
        if entry is None:
            raise TtyOptionError(f"unrecognized tty option '{key}'")
        handler, cookie = entry
        handler(self, key, val, cookie)

    def apply(self, attrs: list) -> list:
        """Return ``attrs`` (as from termios.tcgetattr) with these options applied."""
        iflag, oflag, cflag, lflag, ispeed, ospeed, cc = attrs
        cflag = (cflag | self.set_flags.cflag) & ~self.cleared_flags.cflag
        lflag = (lflag | self.set_flags.lflag) & ~self.cleared_flags.lflag
        iflag = (iflag | self.set_flags.iflag) & ~self.cleared_flags.iflag
        oflag = (oflag | self.set_flags.oflag) & ~self.cleared_flags.oflag
        new_cc = list(cc)
        for index, value in self.cc.items():
            if index >= len(new_cc):
                continue
            new_cc[index] = bytes([value]) if isinstance(new_cc[index], bytes) else value
        return [iflag, oflag, cflag, lflag, ispeed, ospeed, new_cc]


def _strtol(data: bytes, base: int) -> tuple[int, int]:
    """Parse a leading integer like strtol; return (value, end offset)."""
    pos = 0
    while pos < len(data) and data[pos] in _SPACE:
        pos += 1
    negative = False
    if pos < len(data) and data[pos] in b"+-":
        negative = data[pos] == ord("-")
        pos += 1
    if (
        base == 16
        and data[pos : pos + 2] in (b"0x", b"0X")
        and pos + 2 < len(data)
        and data[pos + 2] in _HEX
    ):
        pos += 2
    allowed = _HEX if base == 16 else b"01234567"
    start = pos
    while pos < len(data) and data[pos] in allowed:
        pos += 1
    if pos == start:
        return 0, 0
    value = int(data[start:pos], base)
    return (-value if negative else value), pos


def parse_control_char(key: str, val: str | None) -> int:
    """Parse the value of a control character option.

    Accepts a single character, caret notation (``^C``, ``^?``) or a
    backslash escape in octal (``\\177``) or hexadecimal (``\\x7f``).
    """
    if key.startswith("-"):
        raise TtyOptionError(f"tty option '{key}' cannot be negated")
    if val is None:
        raise TtyOptionError(f"tty option '{key}' must have a value")

    data = val.encode()
    cc = data[0] if data else 0
    end = 1 if cc != 0 else 0

    if data[:1] == b"^" and len(data) > 1:
        second = data[1]
        if (second < ord("@") or second > ord("_")) and second != ord("?"):
            raise TtyOptionError(
                f"invalid control character '{val}' for tty option '{key}'"
            )
        cc = 127 if second == ord("?") else second - 64
        end = 2

    if data[:1] == b"\\" and len(data) > 1:
        base, start = 8, 1
        if data[1] == ord("x"):
            base, start = 16, 2
        value, consumed = _strtol(data[start:], base)
        if value < 0 or value >= 256:
            raise TtyOptionError(
                f"invalid escape sequence '{val}' for tty option '{key}'"
            )
        cc = value
        end = start + consumed

    if end < len(data):
        raise TtyOptionError(
            f"there can be no more than one control character for tty option '{key}'"
        )
    return cc


def _parse_flag(opts: TtyOptions, key: str, val: str | None, cookie: object) -> None:
    if val is not None:
        raise TtyOptionError(f"tty option '{key}' must have no value")
    assert isinstance(cookie, TermiosFlags)
    dest = opts.cleared_flags if key.startswith("-") else opts.set_flags
    dest.iflag |= cookie.iflag
    dest.oflag |= cookie.oflag
    dest.lflag |= cookie.cflag
    dest.lflag |= cookie.lflag


def _parse_cc(opts: TtyOptions, key: str, val: str | None, cookie: object) -> None:
    assert isinstance(cookie, int)
    opts.cc[cookie] = parse_control_char(key, val)


def _parse_ptmx(opts: TtyOptions, key: str, val: str | None, cookie: object) -> None:
    if key.startswith("-"):
        raise TtyOptionError(f"tty option '{key}' cannot be negated")
    if val is None:
        raise TtyOptionError(f"tty option '{key}' must have a value")
    opts.ptmx = val


_Handler = Callable[[TtyOptions, str, "str | None", object], None]


def _i(bits: int) -> tuple[_Handler, object]:
    return _parse_flag, TermiosFlags(iflag=bits)


def _o(bits: int) -> tuple[_Handler, object]:
    return _parse_flag, TermiosFlags(oflag=bits)


def _c(bits: int) -> tuple[_Handler, object]:
    return _parse_flag, TermiosFlags(cflag=bits)


def _l(bits: int) -> tuple[_Handler, object]:
    return _parse_flag, TermiosFlags(lflag=bits)


def _v(index: int) -> tuple[_Handler, object]:
    return _parse_cc, index


_OPTIONS: dict[str, tuple[_Handler, object]] = {
    "brkint": _i(BRKINT),
    "clocal": _c(CLOCAL),
    "cmspar": _c(CMSPAR),
    "cr0": _o(CR0),
    "cr1": _o(CR1),
    "cr2": _o(CR2),
    "cr3": _o(CR3),
    "cread": _c(CREAD),
    "crtscts": _c(CRTSCTS),
    "cstopb": _c(CSTOPB),
    "echo": _l(ECHO),
    "echoctl": _l(ECHOCTL),
    "echoe": _l(ECHOE),
    "echok": _l(ECHOK),
    "echoke": _l(ECHOKE),
    "echonl": _l(ECHONL),
    "echoprt": _l(ECHOPRT),
    "extproc": _l(EXTPROC),
    "ff0": _o(FF0),
    "ff1": _o(FF1),
    "flusho": _l(FLUSHO),
    "hupcl": _c(HUPCL),
    "icanon": _l(ICANON),
    "icrnl": _i(ICRNL),
    "iexten": _l(IEXTEN),
    "ignbrk": _i(IGNBRK),
    "igncr": _i(IGNCR),
    "ignpar": _i(IGNPAR),
    "inlcr": _i(INLCR),
    "inpck": _i(INPCK),
    "isig": _l(ISIG),
    "istrip": _i(ISTRIP),
    "iuclc": _i(IUCLC),
    "iutf8": _i(IUTF8),
    "ixany": _i(IXANY),
    "ixoff": _i(IXOFF),
    "ixon": _i(IXON),
    "nl0": _o(NL0),
    "nl1": _o(NL1),
    "noflsh": _l(NOFLSH),
    "ocrnl": _o(OCRNL),
    "ofill": _o(OFILL),
    "olcuc": _o(OLCUC),
    "onlcr": _o(ONLCR),
    "onlret": _o(ONLRET),
    "onocr": _o(ONOCR),
    "opost": _o(OPOST),
    "parenb": _c(PARENB),
    "parmrk": _i(PARMRK),
    "parodd": _c(PARODD),
    "ptmx": (_parse_ptmx, None),
    "tab0": _o(TAB0),
    "tab1": _o(TAB1),
    "tab2": _o(TAB2),
    "tab3": _o(TAB3),
    "tostop": _l(TOSTOP),
    "veof": _v(VEOF),
    "veol": _v(VEOL),
    "veol2": _v(VEOL2),
    "verase": _v(VERASE),
    "vintr": _v(VINTR),
    "vkill": _v(VKILL),
    "vlnext": _v(VLNEXT),
    "vquit": _v(VQUIT),
    "vreprint": _v(VREPRINT),
    "vstart": _v(VSTART),
    "vstop": _v(VSTOP),
    "vsusp": _v(VSUSP),
    "vt0": _o(VT0),
    "vt1": _o(VT1),
    "vwerase": _v(VWERASE),
}