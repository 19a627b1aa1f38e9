"""Parsing of network interface, address and route options."""

from __future__ import annotations

import re
import socket
from dataclasses import dataclass, field
from typing import Callable

AF_INET = socket.AF_INET
AF_INET6 = socket.AF_INET6

IF_NAMESIZE = 16
NIC_TYPE_SIZE = 16
IP_TEXT_MAX = 64
IPVLAN_MODE_TEXT_MAX = 1024

MACVLAN_MODE_PRIVATE = 1
MACVLAN_MODE_VEPA = 2
MACVLAN_MODE_BRIDGE = 4
MACVLAN_MODE_PASSTHRU = 8
MACVLAN_MODE_SOURCE = 16

IPVLAN_MODE_L2 = 0
IPVLAN_MODE_L3 = 1
IPVLAN_MODE_L3S = 2

IPVLAN_F_PRIVATE = 0x01
IPVLAN_F_VEPA = 0x02

RT_SCOPE_UNIVERSE = 0
RT_SCOPE_SITE = 200
RT_SCOPE_LINK = 253
RT_SCOPE_HOST = 254
RT_SCOPE_NOWHERE = 255

RTPROT_REDIRECT = 1
RTPROT_KERNEL = 2
RTPROT_BOOT = 3
RTPROT_STATIC = 4

RT_TABLE_DEFAULT = 253
RT_TABLE_MAIN = 254
RT_TABLE_LOCAL = 255

RTN_UNSPEC = 0
RTN_UNICAST = 1
RTN_LOCAL = 2
RTN_BROADCAST = 3
RTN_ANYCAST = 4
RTN_MULTICAST = 5
RTN_BLACKHOLE = 6
RTN_UNREACHABLE = 7
RTN_PROHIBIT = 8
RTN_THROW = 9
RTN_NAT = 10
RTN_XRESOLVE = 11

# Marks a route scope that still has to be derived from the route type.
SCOPE_UNSET = 0xFFFF

_UINT32_MASK = 0xFFFFFFFF
_LLONG_MAX = 2**63 - 1

_INT_PREFIX = re.compile(r"\s*([+-]?\d+)")
_MAC = re.compile(r"(?:[0-9A-Fa-f]{1,2}:){5}[0-9A-Fa-f]{1,2}")


class NetConfigError(ValueError):
    """Raised when a network option is unknown or has an invalid value."""


def _leading_int(text: str) -> int:
    """Parse the leading decimal integer of ``text``; 0 when there is none."""
    match = _INT_PREFIX.match(text)
    return int(match.group(1)) if match else 0


@dataclass
class Ip:
    """An IPv4 or IPv6 address with a prefix length; family 0 means unset."""

    family: int = 0
    address: bytes = b""
    prefix_length: int = 0

    @property
    def is_set(self) -> bool:
        return self.family != 0

    def __str__(self) -> str:
        if not self.is_set:
            return ""
        return f"{socket.inet_ntop(self.family, self.address)}/{self.prefix_length}"


def parse_ip(data: str) -> Ip:
    """Parse ``address[/prefix]``; the prefix defaults to the full length."""
    if len(data.encode()) >= IP_TEXT_MAX:
        raise NetConfigError(f"invalid IP address '{data}': string too large")

    address, sep, prefix = data.partition("/")
    if ":" in address:
        family, max_prefix = AF_INET6, 128
    else:
        family, max_prefix = AF_INET, 32

    try:
        packed = socket.inet_pton(family, address)
    except OSError as exc:
        raise NetConfigError(f"invalid IP address '{address}'") from exc

    if not sep:
        return Ip(family, packed, max_prefix)

    value = _leading_int(prefix)
    if value < 0 or value > max_prefix:
        raise NetConfigError(f"invalid prefix length '{prefix}'")
    return Ip(family, packed, value)


def parse_mac(text: str) -> bytes:
    """Parse a MAC address of the form aa:bb:cc:dd:ee:ff into six bytes."""
    if _MAC.fullmatch(text) is None:
        raise NetConfigError(
            f"{text} is not a valid MAC address (must be in format aa:bb:cc:dd:ee:ff)."
        )
    return bytes(int(part, 16) for part in text.split(":"))


def _lookup(table: dict[str, int], name: str | None) -> int | None:
    if name is None:
        return None
    return table.get(name)


_MACVLAN_MODES = {
    "private": MACVLAN_MODE_PRIVATE,
    "vepa": MACVLAN_MODE_VEPA,
    "bridge": MACVLAN_MODE_BRIDGE,
    "passthru": MACVLAN_MODE_PASSTHRU,
    "source": MACVLAN_MODE_SOURCE,
}

_IPVLAN_MODES = {
    "l2": IPVLAN_MODE_L2,
    "l3": IPVLAN_MODE_L3,
    "l3s": IPVLAN_MODE_L3S,
}

_IPVLAN_MODE_FLAGS = {
    "bridge": 0,
    "private": IPVLAN_F_PRIVATE,
    "vepa": IPVLAN_F_VEPA,
}


@dataclass
class NicOptions:
    """Options for a network interface created inside the namespace."""

    kind: str = ""
    name: str = ""
    link_idx: int = 0
    netns_pid: int = 0
    address: bytes = bytes(6)
    broadcast: bytes = bytes(6)
    macvlan_mode: int = 0
    ipvlan_mode: int = 0
    ipvlan_modeflags: int = 0

    def parse(self, key: str, val: str) -> None:
        """Apply option ``key`` with value ``val`` for this interface type."""
        kind = self.kind[:NIC_TYPE_SIZE]
        for nictype, opt, handler in _NIC_OPTIONS:
            if nictype and kind != nictype:
                continue
            if key != opt:
                continue
            handler(self, val)
            return
        raise NetConfigError(
            f"unknown option '{key}' for interface type '{self.kind}'"
        )


def _nic_macvlan_mode(nic: NicOptions, value: str) -> None:
    mode = _lookup(_MACVLAN_MODES, value)
    if mode is None:
        raise NetConfigError(f"invalid MACVLAN mode {value}")
    nic.macvlan_mode = mode


def _nic_ipvlan_mode(nic: NicOptions, value: str) -> None:
    if len(value.encode()) >= IPVLAN_MODE_TEXT_MAX - 1:
        raise NetConfigError(f"invalid IPVLAN mode {value}: value too large")

    tokens = [token for token in value.split("+") if token]
    mode_name = tokens[0] if tokens else None
    mode = _lookup(_IPVLAN_MODES, mode_name)
    if mode is None:
        raise NetConfigError(f"invalid IPVLAN mode {mode_name} in {value}")
    nic.ipvlan_mode = mode

    for flag in tokens[1:]:
        flag_value = _lookup(_IPVLAN_MODE_FLAGS, flag)
        if flag_value is None:
            raise NetConfigError(f"invalid IPVLAN mode flag {flag} in {value}")
        nic.ipvlan_modeflags |= flag_value


def _nic_link(nic: NicOptions, value: str) -> None:
    try:
        nic.link_idx = socket.if_nametoindex(value)
    except OSError as exc:
        raise NetConfigError(f"if_nametoindex {value}: {exc}") from exc


def _nic_address(nic: NicOptions, value: str) -> None:
    nic.address = parse_mac(value)


def _nic_broadcast(nic: NicOptions, value: str) -> None:
    nic.broadcast = parse_mac(value)


_NIC_OPTIONS: tuple[tuple[str, str, Callable[[NicOptions, str], None]], ...] = (
    ("macvlan", "mode", _nic_macvlan_mode),
    ("macvlan", "link", _nic_link),
    ("ipvlan", "mode", _nic_ipvlan_mode),
    ("ipvlan", "link", _nic_link),
    ("", "address", _nic_address),
    ("", "brd", _nic_broadcast),
)


@dataclass
class AddrOptions:
    """An IP address to assign to an interface."""

    ip: Ip = field(default_factory=Ip)
    intf: str = ""

    def parse(self, key: str, val: str) -> None:
        """Apply option ``key`` (``ip`` or ``dev``) with value ``val``."""
        if key == "ip":
            self.ip = parse_ip(val)
        elif key == "dev":
            self.intf = val[: IF_NAMESIZE - 1]
        else:
            raise NetConfigError(f"unknown option '{key}' for address")


_ROUTE_SCOPES = {
    "universe": RT_SCOPE_UNIVERSE,
    "site": RT_SCOPE_SITE,
    "link": RT_SCOPE_LINK,
    "host": RT_SCOPE_HOST,
    "nowhere": RT_SCOPE_NOWHERE,
}

_ROUTE_PROTOCOLS = {
    "redirect": RTPROT_REDIRECT,
    "kernel": RTPROT_KERNEL,
    "boot": RTPROT_BOOT,
    "static": RTPROT_STATIC,
}

_ROUTE_TABLES = {
    "main": RT_TABLE_MAIN,
    "local": RT_TABLE_LOCAL,
    "default": RT_TABLE_DEFAULT,
}

_ROUTE_TYPES = {
    "unicast": RTN_UNICAST,
    "local": RTN_LOCAL,
    "broadcast": RTN_BROADCAST,
    "anycast": RTN_ANYCAST,
    "multicast": RTN_MULTICAST,
    "blackhole": RTN_BLACKHOLE,
    "unreachable": RTN_UNREACHABLE,
    "prohibit": RTN_PROHIBIT,
    "throw": RTN_THROW,
    "nat": RTN_NAT,
    "xresolve": RTN_XRESOLVE,
}


@dataclass
class RouteOptions:
    """A route to add inside the network namespace."""

    family: int = 0
    src: Ip = field(default_factory=Ip)
    dst: Ip = field(default_factory=Ip)
    gateway: Ip = field(default_factory=Ip)
    intf: str = ""
    scope: int = 0
    protocol: int = 0
    table: int = 0
    type: int = 0
    metric: int = 0

    def parse(self, key: str, val: str) -> None:
        """Apply route option ``key`` with value ``val``."""
        handler = _ROUTE_OPTIONS.get(key)
        if handler is None:
            raise NetConfigError(f"unknown option '{key}' for route")
        handler(self, val)

    def set_defaults(self) -> None:
        """Set the defaults that apply before options are parsed."""
        self.protocol = RTPROT_BOOT
        if self.family == AF_INET:
            self.scope = SCOPE_UNSET
        self.type = RTN_UNICAST

    def set_defaults_post(self) -> None:
        """Derive the table, scope and family left unset by the options."""
        if self.table == 0:
            if self.type in (RTN_LOCAL, RTN_BROADCAST, RTN_ANYCAST, RTN_NAT):
                self.table = RT_TABLE_LOCAL
            else:
                self.table = RT_TABLE_MAIN

        if self.scope == SCOPE_UNSET:
            if self.type == RTN_UNICAST:
                self.scope = RT_SCOPE_UNIVERSE if self.gateway.is_set else RT_SCOPE_LINK
            elif self.type == RTN_MULTICAST:
                self.scope = RT_SCOPE_UNIVERSE
            elif self.type in (RTN_BROADCAST, RTN_ANYCAST):
                self.scope = RT_SCOPE_LINK
            elif self.type in (RTN_LOCAL, RTN_NAT):
                self.scope = RT_SCOPE_HOST
        if self.scope == SCOPE_UNSET:
            raise NetConfigError("route: must specify a scope")

        if self.family == 0:
            self.family = AF_INET


def _route_ip(route: RouteOptions, data: str) -> Ip:
    ip = parse_ip(data)
    if route.family == 0:
        route.family = ip.family
    if route.family != ip.family:
        raise NetConfigError("route IPs must either all be IPv4, or all be IPv6.")
    return ip


def _route_src(route: RouteOptions, data: str) -> None:
    route.src = _route_ip(route, data)


def _route_dst(route: RouteOptions, data: str) -> None:
    if data == "default":
        # Same as leaving the destination unset: 0.0.0.0/0 or ::/0.
        return
    route.dst = _route_ip(route, data)


def _route_gateway(route: RouteOptions, data: str) -> None:
    route.gateway = _route_ip(route, data)


def _route_dev(route: RouteOptions, data: str) -> None:
    route.intf = data[: IF_NAMESIZE - 1]


def _route_metric(route: RouteOptions, data: str) -> None:
    value = _leading_int(data)
    if value < 0 or value > _LLONG_MAX:
        raise NetConfigError(f"invalid metric {data}")
    route.metric = value & _UINT32_MASK


def _route_scope(route: RouteOptions, value: str) -> None:
    scope = _lookup(_ROUTE_SCOPES, value)
    if scope is None:
        number = _leading_int(value)
        if number <= 0 or number >= RT_SCOPE_SITE:
            raise NetConfigError(
                f"invalid scope {value}: must be one of universe, site, link, host, "
                "nowhere, or a number in [1, 200)."
            )
        scope = number
    route.scope = scope


def _route_proto(route: RouteOptions, value: str) -> None:
    protocol = _lookup(_ROUTE_PROTOCOLS, value)
    if protocol is None:
        number = _leading_int(value)
        if number < 5 or number >= 256:
            raise NetConfigError(
                f"invalid protocol {value}: must be one of redirect, kernel, boot, "
                "static, or a number in [5, 256)."
            )
        protocol = number
    route.protocol = protocol


def _route_table(route: RouteOptions, value: str) -> None:
    table = _lookup(_ROUTE_TABLES, value)
    if table is None:
        number = _leading_int(value)
        if number <= 0 or number >= 253:
            raise NetConfigError(
                f"invalid table {value}: must be one of main, local, default, "
                "or a number in [1, 253)."
            )
        table = number
    route.table = table


def _route_type(route: RouteOptions, value: str) -> None:
    route_type = _lookup(_ROUTE_TYPES, value)
    if route_type is None:
        raise NetConfigError(
            f"invalid type {value}: must be one of unicast, local, broadcast, "
            "anycast, multicast, blackhole, unreachable, prohibit, throw, nat "
            "or xresolve."
        )
    route.type = route_type


_ROUTE_OPTIONS: dict[str, Callable[[RouteOptions, str], None]] = {
    "src": _route_src,
    "dst": _route_dst,
    "gateway": _route_gateway,
    "dev": _route_dev,
    "metric": _route_metric,
    "scope": _route_scope,
    "proto": _route_proto,
    "type": _route_type,
    "table": _route_table,
}