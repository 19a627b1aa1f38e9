"""Building blocks for Linux namespace sandboxes: paths, id maps, clocks, networking, namespaces and tty options."""

__version__ = "0.1.0"

__all__ = [
    "netconf",
    "netlink",
    "ns",
    "outer",
    "path",
    "timens",
    "ttyopts",
    "userns",
]