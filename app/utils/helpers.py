"""
Helper utilities for Folder Watch.

Common functions used by the transfer pipeline, the watcher and the API.
"""

import base64
import fnmatch
import hashlib
from datetime import datetime, timezone
from pathlib import Path, PurePath, PurePosixPath, PureWindowsPath
from typing import Union

PathLike = Union[str, Path]


def utc_now() -> datetime:
    """Get current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _pure_path(path: PathLike) -> PurePath:
    raw = str(path)
    # Drive letters and UNC shares only make sense with Windows semantics.
    if (len(raw) > 1 and raw[1] == ":") or raw.startswith("\\\\"):
        return PureWindowsPath(raw)
    return PurePosixPath(raw)


def destination_path_for(path: PathLike) -> str:
    """
    Map a local file path to its blob name by stripping the root prefix.

    ``/data/in/report.csv`` becomes ``data/in/report.csv`` and
    ``C:\\data\\report.csv`` becomes ``data/report.csv``.

    Args:
        path: Absolute local path

    Returns:
        Destination path using ``/`` separators
    """
    pure = _pure_path(path)
    parts = pure.parts[1:] if pure.anchor else pure.parts
    return "/".join(parts)


def source_path_for(destination: str, root: PathLike) -> Path:
    """
    Reverse ``destination_path_for`` given the root the file was stripped of.

    Args:
        destination: Blob name produced by ``destination_path_for``
        root: Volume root of the source, e.g. ``/`` or ``C:\\``

    Returns:
        Local path of the original file
    """
    return Path(root).joinpath(*destination.split("/"))


def md5_base64(data: bytes) -> str:
    """MD5 digest of data, base64 encoded as storage services expect it."""
    return base64.b64encode(hashlib.md5(data).digest()).decode("ascii")


def block_id_for(sequence: int) -> str:
    """
    Build a block identifier from a 1-based sequence number.

    All identifiers of one blob must share a length, so the number is
    zero-padded to seven digits before base64 encoding.
    """
    return base64.b64encode(f"BlockId{sequence:07d}".encode("ascii")).decode("ascii")


def sequence_from_block_id(block_id: str) -> int:
    """Recover the sequence number encoded by ``block_id_for``."""
    decoded = base64.b64decode(block_id).decode("ascii")
    return int(decoded[len("BlockId"):])


def matches_filter(path: PathLike, pattern: str) -> bool:
    """Check a file name against a glob filter such as ``*.txt``."""
    if pattern in ("", "*", "*.*"):
        return True
    return fnmatch.fnmatch(_pure_path(path).name, pattern)


def format_bytes(bytes_count: int) -> str:
    """Format bytes as human-readable string."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024.0:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024.0
    return f"{bytes_count:.1f} PB"


def normalise_path(path: Path) -> Path:
    """Return a resolved version of ``path`` without forcing existence."""
    try:
        return path.expanduser().resolve()
    except FileNotFoundError:
        return path.expanduser().absolute()
