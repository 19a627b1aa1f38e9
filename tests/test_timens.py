import os
import time

import pytest

from nsbox.timens import SEC_IN_NS, clock_offset, init_clocks


@pytest.mark.parametrize(
    "target, now",
    [
        ((1000, 0), (10, 500)),
        ((5, 999_999_999), (3, 1)),
        ((0, 0), (12345, 678)),
        ((7, 250), (7, 250)),
    ],
)
def test_offset_adds_up_to_target(target, now):
    sec, nsec = clock_offset(target, now)
    total = sec * SEC_IN_NS + nsec + now[0] * SEC_IN_NS + now[1]
    assert total == target[0] * SEC_IN_NS + target[1]
    assert 0 <= nsec <= SEC_IN_NS


def test_offset_keeps_full_second_in_nanoseconds():
    assert clock_offset((5, 0), (2, 0)) == (2, SEC_IN_NS)


def _read_lines(read_fd):
    return os.read(read_fd, 4096).decode().splitlines()


def test_init_clocks_writes_monotonic_offset():
    read_fd, write_fd = os.pipe()
    try:
        times = [None] * (time.CLOCK_MONOTONIC + 1)
        times[time.CLOCK_MONOTONIC] = (1000, 0)
        before = time.clock_gettime_ns(time.CLOCK_MONOTONIC)
        written = init_clocks(write_fd, times)
        after = time.clock_gettime_ns(time.CLOCK_MONOTONIC)
        lines = _read_lines(read_fd)
    finally:
        os.close(read_fd)
        os.close(write_fd)

    assert written == [time.CLOCK_MONOTONIC]
    assert len(lines) == 1
    clock, sec, nsec = lines[0].split()
    assert int(clock) == time.CLOCK_MONOTONIC
    offset = int(sec) * SEC_IN_NS + int(nsec)
    target = 1000 * SEC_IN_NS
    assert target - after <= offset <= target - before


def test_init_clocks_skips_unset_clocks():
    read_fd, write_fd = os.pipe()
    try:
        times = [None, (-1, 0)]
        written = init_clocks(write_fd, times)
        os.write(write_fd, b"end\n")
        lines = _read_lines(read_fd)
    finally:
        os.close(read_fd)
        os.close(write_fd)
    assert written == []
    assert lines == ["end"]