"""Building and sending rtnetlink requests for links, addresses and routes."""

from __future__ import annotations

import contextlib
import errno
import os
import socket
import struct
from typing import Callable, Iterator

from .netconf import (
    AF_INET,
    AF_INET6,
    IF_NAMESIZE,
    MACVLAN_MODE_PRIVATE,
    NIC_TYPE_SIZE,
    RT_SCOPE_UNIVERSE,
    AddrOptions,
    Ip,
    NicOptions,
    RouteOptions,
)

NLMSG_ERROR = 2

RTM_NEWLINK = 16
RTM_NEWADDR = 20
RTM_NEWROUTE = 24

NLM_F_REQUEST = 0x01
NLM_F_ACK = 0x04
NLM_F_EXCL = 0x200
NLM_F_CREATE = 0x400

NLA_F_NESTED = 1 << 15

IFLA_ADDRESS = 1
IFLA_BROADCAST = 2
IFLA_IFNAME = 3
IFLA_LINK = 5
IFLA_LINKINFO = 18
IFLA_NET_NS_PID = 19

IFLA_INFO_KIND = 1
IFLA_INFO_DATA = 2

IFLA_MACVLAN_MODE = 1
IFLA_IPVLAN_MODE = 1
IFLA_IPVLAN_FLAGS = 2

RTA_DST = 1
RTA_SRC = 2
RTA_OIF = 4
RTA_GATEWAY = 5
RTA_PRIORITY = 6

IFA_ADDRESS = 1
IFA_LOCAL = 2
IFA_BROADCAST = 4

IFF_UP = 0x1

UINT16_MAX = 0xFFFF
UINT32_MAX = 0xFFFFFFFF

NLMSGHDR = struct.Struct("=IHHII")
IFINFOMSG = struct.Struct("=BxHiII")
IFADDRMSG = struct.Struct("=BBBBI")
RTMSG = struct.Struct("=BBBBBBBBI")
NLATTR = struct.Struct("=HH")
_NLMSGERR_CODE = struct.Struct("=i")

NLMSG_HDRLEN = NLMSGHDR.size
NLA_HDRLEN = NLATTR.size

# Response: netlink header followed by nlmsgerr (error code + echoed header).
_ACK_SIZE = NLMSG_HDRLEN + _NLMSGERR_CODE.size + NLMSG_HDRLEN

_CREATE_FLAGS = NLM_F_REQUEST | NLM_F_ACK | NLM_F_EXCL | NLM_F_CREATE


class NetlinkError(OSError):
    """Raised when the kernel rejects a netlink request."""


def _align(size: int) -> int:
    return (size + 3) & ~3


def _u32(value: int) -> bytes:
    return struct.pack("=I", value & UINT32_MAX)


def _cstr(text: str, limit: int | None = None) -> bytes:
    raw = text.encode()
    if limit is not None:
        raw = raw[:limit]
    return raw.split(b"\0", 1)[0] + b"\0"


class NetlinkPacket:
    """A netlink message under construction: header, fixed part, attributes."""

    def __init__(self, msg_type: int, flags: int, header: bytes = b"") -> None:
        self.msg_type = msg_type
        self.flags = flags
        self._buf = bytearray(NLMSG_HDRLEN)
        self._buf += header
        self._buf += bytes(_align(len(header)) - len(header))

    def __len__(self) -> int:
        return len(self._buf)

    def _reserve(self, attr_type: int, size: int) -> int:
        if size > UINT16_MAX - NLA_HDRLEN:
            raise ValueError(f"attribute size {NLA_HDRLEN + size} overflows uint16_t")
        aligned = _align(NLA_HDRLEN + size)
        offset = len(self._buf)
        if offset + aligned > UINT32_MAX:
            raise OverflowError(
                f"could not reserve {aligned} more bytes for netlink packet buffer"
            )
        self._buf += bytes(aligned)
        NLATTR.pack_into(self._buf, offset, NLA_HDRLEN + size, attr_type)
        return offset

    def add_attr(self, attr_type: int, data: bytes) -> None:
        """Append an attribute carrying ``data``, padded to alignment."""
        payload = bytes(data)
        offset = self._reserve(attr_type, len(payload)) + NLA_HDRLEN
        self._buf[offset : offset + len(payload)] = payload

    @contextlib.contextmanager
    def nested(self, attr_type: int) -> Iterator[NetlinkPacket]:
        """Open a nested attribute; attributes added inside belong to it."""
        nested_type = NLA_F_NESTED | attr_type
        start = self._reserve(nested_type, 0)
        yield self
        length = len(self._buf) - start
        if length > UINT16_MAX:
            raise ValueError(f"nested attribute list size {length} overflows uint16_t")
        NLATTR.pack_into(self._buf, start, length, nested_type)

    def to_bytes(self) -> bytes:
        """Return the finished message with its length filled in."""
        data = bytearray(self._buf)
        NLMSGHDR.pack_into(data, 0, len(data), self.msg_type, self.flags, 0, 0)
        return bytes(data)


def _add_macvlan_attrs(packet: NetlinkPacket, nic: NicOptions) -> None:
    packet.add_attr(IFLA_LINK, _u32(nic.link_idx))
    with packet.nested(IFLA_LINKINFO):
        packet.add_attr(IFLA_INFO_KIND, _cstr(nic.kind, NIC_TYPE_SIZE))
        with packet.nested(IFLA_INFO_DATA):
            mode = nic.macvlan_mode or MACVLAN_MODE_PRIVATE
            packet.add_attr(IFLA_MACVLAN_MODE, _u32(mode))


def _add_ipvlan_attrs(packet: NetlinkPacket, nic: NicOptions) -> None:
    packet.add_attr(IFLA_LINK, _u32(nic.link_idx))
    with packet.nested(IFLA_LINKINFO):
        packet.add_attr(IFLA_INFO_KIND, _cstr(nic.kind, NIC_TYPE_SIZE))
        with packet.nested(IFLA_INFO_DATA):
            packet.add_attr(IFLA_IPVLAN_MODE, _u32(nic.ipvlan_mode))
            packet.add_attr(IFLA_IPVLAN_FLAGS, _u32(nic.ipvlan_modeflags))


def _add_default_attrs(packet: NetlinkPacket, nic: NicOptions) -> None:
    with packet.nested(IFLA_LINKINFO):
        packet.add_attr(IFLA_INFO_KIND, _cstr(nic.kind, NIC_TYPE_SIZE))


_NIC_HANDLERS: dict[str, Callable[[NetlinkPacket, NicOptions], None]] = {
    "macvlan": _add_macvlan_attrs,
    "macvtap": _add_macvlan_attrs,
    "ipvlan": _add_ipvlan_attrs,
}


def build_if_add(nic: NicOptions) -> NetlinkPacket:
    """Build the RTM_NEWLINK request creating ``nic`` in its target namespace."""
    packet = NetlinkPacket(RTM_NEWLINK, _CREATE_FLAGS, IFINFOMSG.pack(0, 0, 0, 0, 0))
    packet.add_attr(IFLA_NET_NS_PID, struct.pack("=i", nic.netns_pid))
    if any(nic.address):
        packet.add_attr(IFLA_ADDRESS, nic.address)
    if any(nic.broadcast):
        packet.add_attr(IFLA_BROADCAST, nic.broadcast)
    handler = _NIC_HANDLERS.get(nic.kind[:NIC_TYPE_SIZE], _add_default_attrs)
    handler(packet, nic)
    return packet


def build_if_rename(link: int, to: str) -> NetlinkPacket:
    """Build the RTM_NEWLINK request renaming interface ``link`` to ``to``."""
    packet = NetlinkPacket(
        RTM_NEWLINK, NLM_F_REQUEST | NLM_F_ACK, IFINFOMSG.pack(0, 0, link, 0, 0)
    )
    packet.add_attr(IFLA_IFNAME, _cstr(to))
    return packet


def build_if_up(index: int) -> NetlinkPacket:
    """Build the RTM_NEWLINK request bringing interface ``index`` up."""
    return NetlinkPacket(
        RTM_NEWLINK, NLM_F_REQUEST | NLM_F_ACK, IFINFOMSG.pack(0, 0, index, IFF_UP, 0)
    )


def build_route_add(route: RouteOptions, oif: int | None) -> NetlinkPacket:
    """Build the RTM_NEWROUTE request for ``route``, leaving via ``oif``."""
    if route.family not in (AF_INET, AF_INET6):
        raise ValueError("route must either be ipv6 or ipv4")
    header = RTMSG.pack(
        route.family,
        route.dst.prefix_length,
        route.src.prefix_length,
        0,
        route.table,
        route.protocol,
        route.scope & 0xFF,
        route.type,
        0,
    )
    packet = NetlinkPacket(RTM_NEWROUTE, _CREATE_FLAGS, header)
    if route.gateway.is_set:
        packet.add_attr(RTA_GATEWAY, route.gateway.address)
    if route.src.is_set:
        packet.add_attr(RTA_SRC, route.src.address)
    if route.dst.is_set:
        packet.add_attr(RTA_DST, route.dst.address)
    if route.metric > 0:
        packet.add_attr(RTA_PRIORITY, _u32(route.metric))
    if oif:
        packet.add_attr(RTA_OIF, _u32(oif))
    return packet


def build_addr_add(addr: AddrOptions, index: int) -> NetlinkPacket:
    """Build the RTM_NEWADDR request assigning ``addr`` to interface ``index``."""
    ip = addr.ip
    header = IFADDRMSG.pack(ip.family, ip.prefix_length, 0, RT_SCOPE_UNIVERSE, index)
    packet = NetlinkPacket(RTM_NEWADDR, _CREATE_FLAGS, header)
    if ip.family == AF_INET6:
        packet.add_attr(IFA_LOCAL, ip.address)
        packet.add_attr(IFA_ADDRESS, ip.address)
    elif ip.family == AF_INET:
        packet.add_attr(IFA_LOCAL, ip.address)
        host_mask = ((1 << (32 - ip.prefix_length)) - 1) & UINT32_MAX
        broadcast = int.from_bytes(ip.address, "big") | host_mask
        packet.add_attr(IFA_BROADCAST, broadcast.to_bytes(4, "big"))
        packet.add_attr(IFA_ADDRESS, ip.address)
    return packet


def _ack_error(response: bytes) -> int:
    """Return the errno carried by an acknowledgement, or 0 on success."""
    if len(response) < NLMSG_HDRLEN:
        raise NetlinkError(errno.EPROTO, "short netlink response")
    _, msg_type, _, _, _ = NLMSGHDR.unpack_from(response)
    if msg_type != NLMSG_ERROR:
        return 0
    if len(response) < NLMSG_HDRLEN + _NLMSGERR_CODE.size:
        raise NetlinkError(errno.EPROTO, "short netlink error response")
    (code,) = _NLMSGERR_CODE.unpack_from(response, NLMSG_HDRLEN)
    return -code


def _ip_text(family: int, ip: Ip) -> str:
    size = 16 if family == AF_INET6 else 4
    address = ip.address if ip.is_set else bytes(size)
    return socket.inet_ntop(family, address)


def _nametoindex(name: str, context: str) -> int:
    try:
        return socket.if_nametoindex(name)
    except OSError as exc:
        code = exc.errno or errno.ENODEV
        raise NetlinkError(code, f"{context}: {os.strerror(code)}") from exc


class RtNetlink:
    """A route netlink socket sending requests and waiting for their ack."""

    def __init__(self, sock: socket.socket | None = None) -> None:
        if sock is None:
            sock = socket.socket(
                socket.AF_NETLINK,
                socket.SOCK_RAW | socket.SOCK_CLOEXEC,
                socket.NETLINK_ROUTE,
            )
            try:
                sock.bind((0, 0))
                sock.connect((0, 0))
            except BaseException:
                sock.close()
                raise
        self._sock = sock

    def __enter__(self) -> RtNetlink:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def send(self, packet: NetlinkPacket) -> None:
        """Send ``packet`` and raise NetlinkError if the kernel rejects it."""
        self._sock.send(packet.to_bytes())
        code = _ack_error(self._sock.recv(_ACK_SIZE))
        if code:
            raise NetlinkError(code, os.strerror(code))

    def _send_or_raise(self, packet: NetlinkPacket, context: str) -> None:
        try:
            self.send(packet)
        except NetlinkError as exc:
            raise NetlinkError(exc.errno, f"{context}: {exc.strerror}") from exc

    def if_add(self, nic: NicOptions) -> None:
        """Create the interface described by ``nic``."""
        self._send_or_raise(
            build_if_add(nic), f"if_add {nic.kind} {nic.name[:IF_NAMESIZE]}"
        )

    def if_rename(self, link: int, to: str) -> None:
        """Rename interface ``link`` to ``to``."""
        try:
            self.send(build_if_rename(link, to))
        except NetlinkError as exc:
            try:
                name = socket.if_indextoname(link)
            except OSError:
                name = str(link)
            raise NetlinkError(
                exc.errno,
                f"if_rename {name[:IF_NAMESIZE]} -> {to[:IF_NAMESIZE]}: {exc.strerror}",
            ) from exc

    def if_up(self, name: str) -> None:
        """Bring the interface called ``name`` up."""
        index = _nametoindex(name, f"if_up {name}: if_nametoindex")
        self._send_or_raise(build_if_up(index), f"if_up {name[:IF_NAMESIZE]}")

    def route_add(self, route: RouteOptions) -> None:
        """Add ``route``."""
        oif = None
        if route.intf:
            oif = _nametoindex(route.intf, f"if_nametoindex {route.intf}")
        packet = build_route_add(route, oif)
        family = route.family
        context = (
            f"route_add {_ip_text(family, route.dst)}/{route.dst.prefix_length} "
            f"via {_ip_text(family, route.gateway)}/{route.gateway.prefix_length} "
            f"src {_ip_text(family, route.src)}/{route.src.prefix_length} "
            f"dev {route.intf[:IF_NAMESIZE]} metric {route.metric}"
        )
        self._send_or_raise(packet, context)

    def addr_add(self, addr: AddrOptions) -> None:
        """Assign ``addr`` to its interface."""
        index = _nametoindex(addr.intf, f"if_nametoindex {addr.intf}")
        packet = build_addr_add(addr, index)
        context = f"addr_add {addr.ip} {addr.intf[:IF_NAMESIZE]}"
        self._send_or_raise(packet, context)

    def close(self) -> None:
        """Close the socket."""
        self._sock.close()