import errno
import os
from unittest import mock

import pytest

from nsbox import ns as nsmod
from nsbox.ns import (
    NsAction,
    NsId,
    NsType,
    SHARE_WITH_PARENT,
    enter_postfork,
    enter_prefork,
    ns_cloneflag,
    ns_name,
    opts_to_nsactions,
)


@pytest.mark.parametrize(
    "kind, name",
    [
        (NsType.CGROUP, "cgroup"),
        (NsType.IPC, "ipc"),
        (NsType.MNT, "mnt"),
        (NsType.NET, "net"),
        (NsType.PID, "pid"),
        (NsType.TIME, "time"),
        (NsType.USER, "user"),
        (NsType.UTS, "uts"),
    ],
)
def test_ns_name(kind, name):
    assert ns_name(kind) == name


def test_cloneflags():
    assert ns_cloneflag(NsType.NET) == 0x40000000
    assert ns_cloneflag(NsType.MNT) == 0x00020000
    flags = [ns_cloneflag(kind) for kind in NsType]
    assert len(set(flags)) == len(flags)
    combined = 0
    for flag in flags:
        combined |= flag
    assert combined == nsmod.ALL_NAMESPACES


def test_default_actions_unshare():
    actions = opts_to_nsactions({})
    assert actions == [NsAction.UNSHARE] * len(NsType)


def test_share_with_parent_passes_through():
    actions = opts_to_nsactions({NsType.NET: SHARE_WITH_PARENT})
    assert actions[NsType.NET] == NsAction.SHARE_WITH_PARENT
    assert actions[NsType.UTS] == NsAction.UNSHARE


def test_current_namespace_file_means_share():
    actions = opts_to_nsactions({NsType.UTS: "/proc/self/ns/uts"})
    assert actions[NsType.UTS] == NsAction.SHARE_WITH_PARENT


def test_other_file_is_opened(tmp_path):
    target = tmp_path / "netns"
    target.write_bytes(b"")
    actions = opts_to_nsactions({NsType.NET: str(target)})
    fd = actions[NsType.NET]
    try:
        assert fd >= 0
        assert os.fstat(fd).st_ino == os.stat(target).st_ino
    finally:
        os.close(fd)


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        opts_to_nsactions({NsType.NET: str(tmp_path / "absent")})


def test_nsid_is_setns():
    assert NsId(NsType.NET, 3).is_setns
    assert not NsId(NsType.NET, NsAction.UNSHARE).is_setns
    assert not NsId(NsType.NET, NsAction.SHARE_WITH_PARENT).is_setns


def test_prefork_all_shared_enters_nothing():
    namespaces = [NsId(kind, NsAction.SHARE_WITH_PARENT) for kind in NsType]
    with mock.patch("nsbox.ns.os.unshare", create=True) as unshare, mock.patch(
        "nsbox.ns.os.setns", create=True
    ) as setns:
        remaining = enter_prefork(namespaces, sort_setns_first=True)
    assert remaining == []
    assert unshare.call_count == 0
    assert setns.call_count == 0


def test_prefork_defers_cgroup():
    namespaces = [
        NsId(NsType.NET, NsAction.SHARE_WITH_PARENT),
        NsId(NsType.CGROUP, NsAction.UNSHARE),
    ]
    with mock.patch("nsbox.ns.os.unshare", create=True) as unshare:
        remaining = enter_prefork(namespaces, sort_setns_first=False)
    assert remaining == [NsId(NsType.CGROUP, NsAction.UNSHARE)]
    assert unshare.call_count == 0


def test_prefork_incompatible_order():
    namespaces = [
        NsId(NsType.CGROUP, NsAction.UNSHARE),
        NsId(NsType.NET, NsAction.SHARE_WITH_PARENT),
    ]
    with pytest.raises(ValueError, match="incompatible options: net namespace"):
        enter_prefork(namespaces, sort_setns_first=False)


def _recording_patches(calls):
    unshare = mock.patch(
        "nsbox.ns.os.unshare",
        create=True,
        side_effect=lambda flag: calls.append(("unshare", flag)),
    )
    setns = mock.patch(
        "nsbox.ns.os.setns",
        create=True,
        side_effect=lambda fd, flag: calls.append(("setns", fd, flag)),
    )
    return unshare, setns


def test_prefork_sorts_setns_first():
    calls = []
    unshare, setns = _recording_patches(calls)
    namespaces = [NsId(NsType.IPC, NsAction.UNSHARE), NsId(NsType.UTS, 7)]
    with unshare, setns:
        remaining = enter_prefork(namespaces, sort_setns_first=True)
    assert remaining == []
    assert calls == [
        ("setns", 7, ns_cloneflag(NsType.UTS)),
        ("unshare", ns_cloneflag(NsType.IPC)),
    ]


def test_prefork_keeps_order_without_sort():
    calls = []
    unshare, setns = _recording_patches(calls)
    namespaces = [NsId(NsType.IPC, NsAction.UNSHARE), NsId(NsType.UTS, 7)]
    with unshare, setns:
        enter_prefork(namespaces, sort_setns_first=False)
    assert calls == [
        ("unshare", ns_cloneflag(NsType.IPC)),
        ("setns", 7, ns_cloneflag(NsType.UTS)),
    ]


def test_unsupported_namespace_becomes_shared():
    ns = NsId(NsType.TIME, NsAction.UNSHARE)
    with mock.patch(
        "nsbox.ns.os.unshare", create=True, side_effect=OSError(errno.EINVAL, "invalid")
    ):
        enter_prefork([ns], sort_setns_first=False)
    assert ns.action == NsAction.SHARE_WITH_PARENT


def test_unshare_failure_raises():
    with mock.patch(
        "nsbox.ns.os.unshare", create=True, side_effect=OSError(errno.EPERM, "denied")
    ):
        with pytest.raises(OSError) as excinfo:
            enter_prefork([NsId(NsType.NET, NsAction.UNSHARE)], sort_setns_first=False)
    assert excinfo.value.errno == errno.EPERM
    assert "unshare net" in str(excinfo.value)


def test_setns_failure_raises():
    with mock.patch(
        "nsbox.ns.os.setns", create=True, side_effect=OSError(errno.EBADF, "bad fd")
    ):
        with pytest.raises(OSError) as excinfo:
            enter_postfork([NsId(NsType.CGROUP, 9)])
    assert excinfo.value.errno == errno.EBADF
    assert "setns cgroup" in str(excinfo.value)


def test_postfork_enters_cgroup():
    with mock.patch("nsbox.ns.os.unshare", create=True) as unshare:
        enter_postfork([NsId(NsType.CGROUP, NsAction.UNSHARE)])
    unshare.assert_called_once_with(ns_cloneflag(NsType.CGROUP))