"""Clock offsets for time namespaces."""

from __future__ import annotations

import errno
import os
import time
from typing import Sequence

CLOCK_TAI = 11
MAX_CLOCK = CLOCK_TAI + 1
SEC_IN_NS = 1_000_000_000


def clock_offset(target: tuple[int, int], now: tuple[int, int]) -> tuple[int, int]:
    """Return the (seconds, nanoseconds) offset turning ``now`` into ``target``."""
    sec = target[0] - now[0] - 1
    nsec = SEC_IN_NS - now[1] + target[1]
    while nsec > SEC_IN_NS:
        sec += 1
        nsec -= SEC_IN_NS
    return sec, nsec


def init_clocks(fd: int, times: Sequence[tuple[int, int] | None]) -> list[int]:
    """Write time-namespace offsets to ``fd`` for each requested clock.

    ``times`` is indexed by clock id; an entry of None, or one whose
    seconds are -1, leaves that clock alone. Clocks the system or the
    namespace does not support are skipped. Returns the clocks written.
    """
    written: list[int] = []
    for clock, target in enumerate(times):
        if target is None or target[0] == -1:
            continue
        try:
            now_ns = time.clock_gettime_ns(clock)
        except OSError as exc:
            if exc.errno == errno.EINVAL:
                continue
            raise
        sec, nsec = clock_offset(target, divmod(now_ns, SEC_IN_NS))
        try:
            os.write(fd, f"{clock} {sec} {nsec}\n".encode())
        except OSError as exc:
            if exc.errno == errno.EINVAL:
                continue
            raise
        written.append(clock)
    return written