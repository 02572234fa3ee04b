"""Read and write kernel parameters under /proc/sys."""

from __future__ import annotations

import os

PROC_SYS_ROOT = "/proc/sys"

_INTERCHANGE = str.maketrans({".": "/", "/": "."})


def to_normal_name(name: str) -> str:
    """Normalise a sysctl name to use slashes as separators.

    The separator in use is the first of '.' or '/' to occur; when it is a dot,
    dots and slashes are swapped.
    """
    for ch in name:
        if ch == ".":
            return name.translate(_INTERCHANGE)
        if ch == "/":
            break
    return name


def _full_path(name: str, root: str) -> str:
    return os.path.normpath(f"{root}/{to_normal_name(name)}")


def _get(name: str, root: str) -> str:
    with open(_full_path(name, root), encoding="utf-8") as handle:
        data = handle.read()
    return data[:-1]


def _set(name: str, value: str, root: str) -> str:
    with open(_full_path(name, root), "w", encoding="utf-8") as handle:
        handle.write(value)
    return _get(name, root)


def sysctl(name: str, *args: str, root: str = PROC_SYS_ROOT) -> str:
    """Return a kernel parameter, or set it first when one value is given."""
    if len(args) > 1:
        raise ValueError("unexcepted additional parameters")
    if args:
        return _set(name, args[0], root)
    return _get(name, root)