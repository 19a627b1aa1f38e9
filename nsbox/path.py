"""Lexical cleaning and construction of filesystem paths."""

import os

PATH_MAX = 4096


def clean_path(path: str) -> str:
    """Clean a path lexically.

    Duplicate slashes and ``.`` components are removed, and ``..``
    components cancel the component before them. A ``..`` with nothing
    left to cancel is dropped. A leading slash is kept.
    """
    absolute = path.startswith("/")
    components: list[str] = []
    for component in path.split("/"):
        if component in ("", "."):
            continue
        if component == "..":
            if components:
                components.pop()
            continue
        components.append(component)
    cleaned = "/".join(components)
    return "/" + cleaned if absolute else cleaned


def make_path(fmt: str, *args) -> str:
    """Format a path from ``fmt`` and ``args`` and clean it.

    Raises ValueError if the formatted path does not fit in PATH_MAX bytes.
    """
    formatted = fmt % args if args else fmt
    if len(os.fsencode(formatted)) >= PATH_MAX:
        raise ValueError("makepath: resulting path larger than PATH_MAX.")
    return clean_path(formatted)