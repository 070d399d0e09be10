"""Shared utility functions used across the engine."""
from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any

import orjson


# --- Text Utilities -----------------------------------------------------------

def truncate_text(text: str, max_chars: int = 300) -> str:
    """Truncate text for display purposes."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars].rstrip() + "..."


def expand_path(path: str | Path) -> Path:
    """Expand ``~`` and environment variables in a user-supplied path."""
    return Path(os.path.expandvars(str(path))).expanduser()


# --- File I/O -----------------------------------------------------------------

def dump_json(data: Any) -> bytes:
    """Serialise to compact JSON bytes. numpy arrays are written natively."""
    return orjson.dumps(data, option=orjson.OPT_SERIALIZE_NUMPY | orjson.OPT_NON_STR_KEYS)


def load_json(path: str | Path) -> Any:
    """Load JSON data from file."""
    with open(Path(path), "rb") as f:
        return orjson.loads(f.read())


def atomic_write_bytes(path: str | Path, payload: bytes) -> None:
    """
    Replace ``path`` with ``payload`` in one step.

    The bytes go to a temp file in the destination directory first and are
    moved over the target with ``os.replace`` (an atomic rename on POSIX and
    Windows), so readers see either the old file or the new one, never a
    half-written file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as tmp_f:
            tmp_f.write(payload)
            tmp_f.flush()
            os.fsync(tmp_f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
