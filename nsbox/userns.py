"""User-namespace id maps: parsing, loading, projecting and formatting."""

from __future__ import annotations

import grp
import pwd
import re
import string
import warnings
from dataclasses import dataclass
from typing import Iterable, Iterator, Sequence

MAX_USER_MAPPINGS = 340
ID_MAX = 65534
UINT32_MAX = 0xFFFFFFFF
_ULONG_MAX = 2**64 - 1

_SUBID_LINE = re.compile(r"([^:]{1,32}):\s*([+-]?\d+):\s*([+-]?\d+)")
_PROCID_LINE = re.compile(r"\s*([+-]?\d+)\s*([+-]?\d+)\s*([+-]?\d+)")


class IdMapError(Exception):
    """Raised when an id map cannot be parsed, loaded or built."""


@dataclass(frozen=True)
class IdRange:
    """A contiguous range of ids mapped from ``outer`` to ``inner``."""

    inner: int
    outer: int
    length: int


@dataclass(frozen=True)
class Id:
    """A numeric user or group id, with its name when known."""

    id: int
    name: str | None = None


def _append(id_map: list[IdRange], inner: int, outer: int, length: int) -> None:
    if len(id_map) >= MAX_USER_MAPPINGS:
        raise IdMapError(
            f"load_subids: more than the max of {MAX_USER_MAPPINGS} mappings in use"
        )
    id_map.append(IdRange(inner, outer, length))


def _u32(value: int) -> int:
    return value & UINT32_MAX


def _strtoul(text: str) -> int:
    """Parse like strtoul with base 0, returning the full unsigned long."""
    s = text.lstrip(" \t\n\r\f\v")
    negative = False
    if s and s[0] in "+-":
        negative = s[0] == "-"
        s = s[1:]
    if s[:2] in ("0x", "0X") and len(s) > 2 and s[2] in string.hexdigits:
        base, allowed, s = 16, string.hexdigits, s[2:]
    elif s.startswith("0"):
        base, allowed = 8, string.octdigits
    else:
        base, allowed = 10, string.digits
    end = 0
    while end < len(s) and s[end] in allowed:
        end += 1
    value = int(s[:end], base) if end else 0
    if value > _ULONG_MAX:
        return _ULONG_MAX
    if negative:
        value = (-value) % (_ULONG_MAX + 1)
    return value


def _parse_id(text: str | None, which: str) -> int:
    if text is None:
        raise IdMapError(f"missing {which} in id map")
    value = _strtoul(text)
    if value == _ULONG_MAX:
        raise IdMapError(f"parsing {text}")
    return _u32(value)


def _split_range(text: str) -> tuple[str | None, str | None, str | None]:
    """Split ``inner:outer:length`` the way successive strtok calls would."""
    rest: str | None = text.lstrip(":")
    if not rest:
        return None, None, None
    first, sep, rest = rest.partition(":")
    if not sep:
        return first, None, None
    rest = rest.lstrip(":")
    if not rest:
        return first, None, None
    second, sep, rest = rest.partition(":")
    third = rest if sep and rest else None
    return first, second, third


def parse_id_map(opt: str) -> list[IdRange]:
    """Parse a ``inner:outer:length[,...]`` id map option."""
    id_map: list[IdRange] = []
    for range_text in filter(None, opt.split(",")):
        inner_text, outer_text, length_text = _split_range(range_text)
        inner = _parse_id(inner_text, "inner id range start")
        outer = _parse_id(outer_text, "outer id range start")
        length = _parse_id(length_text, "id range length")
        _append(id_map, inner, outer, length)
    return id_map


def load_subids(subid_path: str, ident: Id) -> list[IdRange]:
    """Load the subordinate id ranges allotted to ``ident``.

    The first range always maps ``ident.id`` itself. Entries of
    ``subid_path`` whose name field equals the id's name or number are
    appended with an inner start of 0. Root with no allotted entries gets
    the whole host range mapped instead.
    """
    id_map: list[IdRange] = []
    _append(id_map, 0, ident.id, 1)

    try:
        subids = open(subid_path, encoding="utf-8", errors="replace")
    except OSError:
        return id_map

    id_str = str(ident.id)
    name = ident.name if ident.name is not None else id_str

    found = False
    with subids:
        for line in subids:
            match = _SUBID_LINE.match(line)
            if match is None:
                continue
            entry_name = match.group(1)
            if entry_name != name and entry_name != id_str:
                continue
            _append(id_map, 0, _u32(int(match.group(2))), _u32(int(match.group(3))))
            found = True

    if not found and ident.id == 0:
        # UINT32_MAX - 1 is left out because the kernel rejects it.
        id_map[0] = IdRange(0, 0, UINT32_MAX - 2)
    return id_map


def generate_id_map(
    allotted: Iterable[IdRange], subid_path: str, ident: Id
) -> list[IdRange]:
    """Lay the allotted ranges out contiguously after ``ident.id`` mapped to 0.

    Emits a RuntimeWarning when fewer than ID_MAX ids end up mapped.
    """
    out: list[IdRange] = []
    _append(out, 0, ident.id, 1)
    cur_id = 1

    for allotted_range in allotted:
        outer, length = allotted_range.outer, allotted_range.length
        while length:
            if outer <= ident.id < outer + length:
                before = ident.id - outer
                if before:
                    _append(out, cur_id, outer, before)
                    cur_id = _u32(cur_id + before)
                outer = ident.id + 1
                length -= before + 1
                continue
            _append(out, cur_id, outer, length)
            cur_id = _u32(cur_id + length)
            length = 0

    if cur_id < ID_MAX:
        name = ident.name if ident.name is not None else str(ident.id)
        warnings.warn(
            f"not enough IDs allocated for {name} in {subid_path} "
            f"(currently {cur_id} allocated). Things may not work as expected, "
            f"please allocate at least {ID_MAX} IDs for it.",
            RuntimeWarning,
            stacklevel=2,
        )
    return out


def load_proc_ids(procid_path: str) -> list[IdRange]:
    """Load an id map in the ``/proc/<pid>/[ug]id_map`` format."""
    try:
        source = open(procid_path, encoding="utf-8", errors="replace")
    except OSError as exc:
        raise IdMapError(f"open {procid_path}: {exc.strerror}") from exc

    id_map: list[IdRange] = []
    with source:
        for line in source:
            match = _PROCID_LINE.match(line)
            if match is None:
                raise IdMapError("load_current_maps: invalid uid map format")
            inner, outer, length = (_u32(int(group)) for group in match.groups())
            _append(id_map, inner, outer, length)
    return id_map


@dataclass
class _Cursor:
    inner: int
    outer: int
    length: int

    def advance(self, count: int) -> None:
        self.inner += count
        self.outer += count
        self.length -= count


def _cursors(ranges: Iterable[IdRange]) -> Iterator[_Cursor]:
    for r in ranges:
        yield _Cursor(r.inner, r.outer, r.length)


def project(id_map: Iterable[IdRange], onto: Iterable[IdRange]) -> list[IdRange]:
    """Split the ranges of ``id_map`` along the boundaries of ``onto``.

    A range's outer ids are matched against the inner ids of ``onto``;
    only the overlapping parts are kept, split wherever ``onto`` is split.
    Both maps must be normalized.
    """
    result: list[IdRange] = []
    ranges = _cursors(id_map)
    targets = _cursors(onto)
    cur = next(ranges, None)
    tgt = next(targets, None)

    while cur is not None and tgt is not None:
        if cur.length == 0:
            cur = next(ranges, None)
            continue
        if tgt.length == 0:
            tgt = next(targets, None)
            continue
        if tgt.inner > cur.outer:
            cur.advance(min(tgt.inner - cur.outer, cur.length))
            continue
        if tgt.inner < cur.outer:
            tgt.advance(min(cur.outer - tgt.inner, tgt.length))
            continue
        if len(result) == MAX_USER_MAPPINGS:
            raise IdMapError(
                "projecting guest map onto host id map would result in more "
                f"than {MAX_USER_MAPPINGS} mappings"
            )
        count = min(cur.length, tgt.length)
        result.append(IdRange(cur.inner, cur.outer, count))
        cur.advance(count)
        tgt.advance(count)
    return result


def format_id_map(id_map: Iterable[IdRange]) -> str:
    """Render the non-empty ranges in the kernel's ``uid_map`` format."""
    return "".join(
        f"{r.inner} {r.outer} {r.length}\n" for r in id_map if r.length != 0
    )


def normalize(
    id_map: Iterable[IdRange], inner: bool, merge: bool
) -> list[IdRange]:
    """Return the non-empty ranges sorted by inner or outer start.

    With ``merge``, ranges contiguous on both sides are joined.
    """
    key = (lambda r: r.inner) if inner else (lambda r: r.outer)
    ordered = sorted((r for r in id_map if r.length != 0), key=key)
    if not merge:
        return ordered

    merged: list[IdRange] = []
    for r in ordered:
        if merged:
            prev = merged[-1]
            if prev.inner + prev.length == r.inner and prev.outer + prev.length == r.outer:
                merged[-1] = IdRange(prev.inner, prev.outer, prev.length + r.length)
                continue
        merged.append(r)
    return merged


def count_ids(id_map: Iterable[IdRange]) -> int:
    """Return the number of ids mapped; OverflowError past 32 bits."""
    total = sum(r.length for r in id_map)
    if total > UINT32_MAX:
        raise OverflowError("too many ids in id map")
    return total


def is_empty(id_map: Sequence[IdRange]) -> bool:
    """Whether the map maps no id at all."""
    return not any(r.length for r in id_map)


def load_user(uid: int) -> Id:
    """Return the user id with its account name when one exists."""
    try:
        name: str | None = pwd.getpwuid(uid).pw_name
    except KeyError:
        name = None
    return Id(uid & UINT32_MAX, name)


def load_group(gid: int) -> Id:
    """Return the group id with its group name when one exists."""
    try:
        name: str | None = grp.getgrgid(gid).gr_name
    except KeyError:
        name = None
    return Id(gid & UINT32_MAX, name)