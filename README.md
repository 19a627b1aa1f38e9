# nsbox

Building blocks for setting up Linux namespace sandboxes from Python.

The package covers pieces a sandbox launcher needs between `fork` and `exec`:

- **Paths** (`nsbox.path`): `clean_path` cleans a path lexically (collapses
  duplicate slashes, drops `.` components, cancels `..` against the preceding
  component) and `make_path` formats a path with `%` arguments and cleans it,
  raising `ValueError` if it would not fit in `PATH_MAX` bytes.
- **User namespace id maps** (`nsbox.userns`): parse `inner:outer:length`
  option strings with `parse_id_map`, read allotments from files in the
  `/etc/subuid` format with `load_subids`, read maps in the
  `/proc/<pid>/uid_map` format with `load_proc_ids`, and combine them with
  `normalize`, `project`, `generate_id_map`, `count_ids`, `is_empty` and
  `format_id_map`. `load_user` and `load_group` return an `Id` with its name
  when one exists. Errors raise `IdMapError`; ranges are `IdRange` values.
- **Time namespaces** (`nsbox.timens`): `clock_offset` computes the
  `(seconds, nanoseconds)` offset that turns one time into another, and
  `init_clocks` writes offsets for every requested clock to a file
  descriptor, skipping unsupported clocks and returning the ones written.
- **Network configuration** (`nsbox.netconf`): `NicOptions`, `AddrOptions`
  and `RouteOptions` take `key`/`value` options through their `parse`
  methods; `RouteOptions.set_defaults` and `set_defaults_post` fill in the
  protocol, type, table, scope and family. `parse_ip` and `parse_mac` parse
  addresses. Invalid options raise `NetConfigError`.
- **Netlink** (`nsbox.netlink`): `build_if_add`, `build_if_rename`,
  `build_if_up`, `build_route_add` and `build_addr_add` return a
  `NetlinkPacket` (whose `to_bytes` gives the request) without touching the
  kernel. `RtNetlink` opens a route netlink socket and sends those requests
  with `if_add`, `if_rename`, `if_up`, `route_add` and `addr_add`, raising
  `NetlinkError` when the kernel rejects one. It is a context manager.
- **Namespaces** (`nsbox.ns`): `NsType`, `NsId`, `ns_name`, `ns_cloneflag`,
  `opts_to_nsactions`, `enter_prefork` and `enter_postfork` decide which
  namespaces to join with `setns` and which to `unshare`, and in what order;
  the cgroup namespace is deferred until after forking.
- **Terminal options** (`nsbox.ttyopts`): `TtyOptions.parse` takes stty-like
  options (`echo`, `-icanon`, `veof=^D`, `ptmx=/dev/ptmx`, ...) and
  `TtyOptions.apply` applies them to an attribute list as returned by
  `termios.tcgetattr`. `parse_control_char` parses single characters, caret
  notation and backslash escapes. Errors raise `TtyOptionError`.
- **Id map writing** (`nsbox.outer`): `make_idmap` produces the final uid or
  gid map text for a child process and `burn` writes data to a file in a
  single `write` call, as the kernel requires for `uid_map` and `gid_map`.

Entering namespaces, sending netlink requests and writing id maps need Linux
and, depending on what they touch, privileges such as `CAP_SYS_ADMIN`,
`CAP_NET_ADMIN` or `CAP_SETUID`. The parsing and formatting helpers are plain
Python.

## Examples

Cleaning a path:

```python
from nsbox.path import clean_path

clean_path("/a//b/../c")   # "/a/c"
```

Turning an id map option into the text the kernel expects:

```python
from nsbox.userns import parse_id_map, format_id_map

id_map = parse_id_map("0:1000:1,1:100000:65535")
print(format_id_map(id_map), end="")
# 0 1000 1
# 1 100000 65535
```

Parsing a route:

```python
from nsbox.netconf import RouteOptions

route = RouteOptions()
route.set_defaults()
route.parse("dst", "10.0.0.0/8")
route.parse("gateway", "10.0.0.1")
route.parse("metric", "100")
route.set_defaults_post()
```

Parsing terminal options:

```python
from nsbox.ttyopts import TtyOptions

opts = TtyOptions()
opts.parse("-echo", None)
opts.parse("veof", "^D")
```

## What the package does not do

It is a library only: there is no command that launches a sandboxed program.
It does not allocate a pseudo-terminal for a child or relay terminal input and
output, it does not wait for or forward signals, and it does not spawn a
helper process, create cgroups or persist namespace files. `TtyOptions` only
parses and applies terminal settings.

## Running the tests

Install the package with its `test` extra, then run pytest from the
repository root.