"""Writing id maps for a process in a new user namespace."""

from __future__ import annotations

import os
from typing import Sequence

from .userns import (
    Id,
    IdMapError,
    IdRange,
    count_ids,
    format_id_map,
    generate_id_map,
    is_empty,
    load_proc_ids,
    load_subids,
    normalize,
    project,
)

UINT32_MAX = 0xFFFFFFFF


def burn(dirfd: int | None, path: str, data: str | bytes) -> int:
    """Write ``data`` to ``path`` (relative to ``dirfd``) in a single write.

    Files such as /proc/<pid>/uid_map accept exactly one write, hence the
    single call. The file must already exist. Returns the bytes written.
    """
    payload = data.encode() if isinstance(data, str) else bytes(data)
    fd = os.open(path, os.O_WRONLY, dir_fd=dirfd)
    try:
        return os.write(fd, payload)
    finally:
        os.close(fd)


def _normalized(id_map: Sequence[IdRange], inner: bool, merge: bool) -> list[IdRange]:
    ranges = list(id_map)
    result = normalize(ranges, inner, merge)
    return list(result) if result is not None else ranges


def make_idmap(
    which: str,
    subid_path: str,
    procmap_path: str,
    ident: Id,
    desired: Sequence[IdRange] | None,
) -> str:
    """Compute the text to write to a child's uid_map or gid_map.

    ``which`` names the kind of id ("uid" or "gid") for error messages.
    The ranges allotted to ``ident`` in ``subid_path`` bound what may be
    mapped; ``desired`` picks ranges among them, and when empty a full
    map is generated. The result is sliced along the current map read
    from ``procmap_path``. Raises IdMapError when ``desired`` asks for ids
    outside the allotted ones.
    """
    current = _normalized(load_proc_ids(procmap_path), True, False)
    subids = _normalized(load_subids(subid_path, ident), False, True)

    wanted = list(desired) if desired is not None else []
    if wanted and not is_empty(wanted):
        # Allotted ranges are identity maps of the host ids the user may use.
        allowed = [
            IdRange(inner=r.outer, outer=r.outer, length=r.length) for r in subids
        ]
        wanted = _normalized(wanted, False, True)
        subids = list(project(wanted, allowed))

        nids = count_ids(subids)
        desired_ids = count_ids(wanted)
        if nids >= UINT32_MAX or desired_ids >= UINT32_MAX:
            raise IdMapError(f"too many {which}s to map")
        if nids != desired_ids:
            raise IdMapError(
                f"cannot map desired {which} map: some {which}s are not in the "
                f"{which}s allowed in {subid_path}"
            )
    else:
        subids = list(generate_id_map(subids, subid_path, ident))

    return format_id_map(list(project(subids, current)))