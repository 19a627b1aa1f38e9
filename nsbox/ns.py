"""Namespace kinds and entering namespaces by unshare or setns."""

from __future__ import annotations

import errno
import os
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterable, Mapping

from .path import make_path

# Redefined here so every namespace kind can be requested whatever the
# headers of the running system know about.
CLONE_NEWNET = 0x40000000
CLONE_NEWUTS = 0x04000000
CLONE_NEWCGROUP = 0x02000000
CLONE_NEWNS = 0x00020000
CLONE_NEWPID = 0x20000000
CLONE_NEWUSER = 0x10000000
CLONE_NEWIPC = 0x08000000
CLONE_NEWTIME = 0x00000080

ALL_NAMESPACES = (
    CLONE_NEWCGROUP
    | CLONE_NEWIPC
    | CLONE_NEWNS
    | CLONE_NEWNET
    | CLONE_NEWPID
    | CLONE_NEWUSER
    | CLONE_NEWUTS
    | CLONE_NEWTIME
)


class NsType(IntEnum):
    """The kinds of namespace, in the order they are handled."""

    CGROUP = 0
    IPC = 1
    MNT = 2
    NET = 3
    PID = 4
    TIME = 5
    USER = 6
    UTS = 7


class NsAction(IntEnum):
    """What to do with a namespace; any non-negative value is an nsfs fd."""

    SHARE_WITH_PARENT = -1
    UNSHARE = -2


# Value given in a share mapping to keep the parent's namespace.
SHARE_WITH_PARENT = NsAction.SHARE_WITH_PARENT

_FLAGS: dict[NsType, tuple[int, str]] = {
    NsType.CGROUP: (CLONE_NEWCGROUP, "cgroup"),
    NsType.IPC: (CLONE_NEWIPC, "ipc"),
    NsType.MNT: (CLONE_NEWNS, "mnt"),
    NsType.NET: (CLONE_NEWNET, "net"),
    NsType.PID: (CLONE_NEWPID, "pid"),
    NsType.TIME: (CLONE_NEWTIME, "time"),
    NsType.USER: (CLONE_NEWUSER, "user"),
    NsType.UTS: (CLONE_NEWUTS, "uts"),
}


@dataclass
class NsId:
    """A namespace kind together with the action taken on it."""

    ns: NsType
    action: int

    @property
    def is_setns(self) -> bool:
        return self.action not in (NsAction.UNSHARE, NsAction.SHARE_WITH_PARENT)


def ns_name(ns: NsType) -> str:
    """Return the name of the namespace under /proc/<pid>/ns."""
    return _FLAGS[NsType(ns)][1]


def ns_cloneflag(ns: NsType) -> int:
    """Return the clone flag that creates this kind of namespace."""
    return _FLAGS[NsType(ns)][0]


def _is_nsfd_current(fd: int, name: str) -> bool:
    path = make_path("/proc/self/ns/%s", name)
    try:
        own = os.stat(path)
    except FileNotFoundError:
        # This namespace kind is not supported.
        return False
    return own.st_ino == os.fstat(fd).st_ino


def opts_to_nsactions(shares: Mapping[NsType, object]) -> list[int]:
    """Turn per-namespace share options into actions, indexed by NsType.

    A missing or None entry unshares the namespace, SHARE_WITH_PARENT keeps
    the parent's, and a path is opened as the nsfs file to join. A path
    naming the namespace already in use counts as sharing with the parent.
    """
    actions: list[int] = []
    try:
        for ns in NsType:
            share = shares.get(ns)
            if share is None:
                actions.append(NsAction.UNSHARE)
            elif share == NsAction.SHARE_WITH_PARENT:
                actions.append(NsAction.SHARE_WITH_PARENT)
            else:
                fd = os.open(share, os.O_RDONLY | os.O_CLOEXEC)
                if _is_nsfd_current(fd, ns_name(ns)):
                    os.close(fd)
                    actions.append(NsAction.SHARE_WITH_PARENT)
                else:
                    actions.append(fd)
    except BaseException:
        for action in actions:
            if action >= 0:
                os.close(action)
        raise
    return actions


def _enter_one(ns: NsId) -> None:
    flag, name = _FLAGS[ns.ns]
    if ns.action == NsAction.SHARE_WITH_PARENT:
        return
    if ns.action == NsAction.UNSHARE:
        try:
            os.unshare(flag)
        except OSError as exc:
            if exc.errno == errno.EINVAL:
                # The namespace kind is not supported; leave it shared.
                ns.action = NsAction.SHARE_WITH_PARENT
                return
            raise OSError(exc.errno, f"unshare {name}: {exc.strerror}") from exc
        return
    try:
        os.setns(ns.action, flag)
    except OSError as exc:
        raise OSError(exc.errno, f"setns {name}: {exc.strerror}") from exc


def _is_postfork(ns: NsId) -> bool:
    # Only the cgroup namespace has to be entered after forking.
    return ns.ns == NsType.CGROUP


def enter_prefork(namespaces: Iterable[NsId], sort_setns_first: bool) -> list[NsId]:
    """Enter every namespace that must be entered before forking.

    With ``sort_setns_first``, namespaces joined through an nsfs file are
    entered before those unshared, keeping the order otherwise. Returns
    the namespaces left to enter after forking; a namespace that must be
    entered before forking but comes after one that must wait raises
    ValueError.
    """
    ordered = list(namespaces)
    if sort_setns_first:
        ordered.sort(key=lambda ns: not ns.is_setns)

    for index, ns in enumerate(ordered):
        if ns.action != NsAction.SHARE_WITH_PARENT and _is_postfork(ns):
            first_postfork = ns
            remaining = ordered[index:]
            break
        _enter_one(ns)
    else:
        return []

    for ns in remaining:
        if not _is_postfork(ns):
            raise ValueError(
                f"incompatible options: {ns_name(ns.ns)} namespace must be entered "
                "before forking, but must be done after "
                f"{ns_name(first_postfork.ns)} namespace is entered post-fork."
            )
    return remaining


def enter_postfork(namespaces: Iterable[NsId]) -> None:
    """Enter the namespaces that were deferred until after forking."""
    for ns in namespaces:
        _enter_one(ns)