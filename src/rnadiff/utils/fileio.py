"""
Atomic file-write utilities.

Summaries and reports are written to a temporary file in the destination
directory and moved into place with ``os.replace()``, so an interrupted run
never leaves a half-written ``summary.json`` next to complete results.
"""

from __future__ import annotations

import json
import math
import os
import tempfile
from pathlib import Path
from typing import Any

import numpy as np

__all__ = ['atomic_write_json', 'atomic_write_text', 'to_jsonable']


def to_jsonable(value: Any) -> Any:
    """
    Convert numpy scalars/arrays, paths and NaN into JSON-safe values.

    NaN and infinities become ``None`` (JSON has no NaN).
    """
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, np.ndarray):
        return [to_jsonable(v) for v in value.tolist()]
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, Path):
        return str(value)
    return value


def _atomic_write(path: str | os.PathLike, write) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path: str | None = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="w", dir=path.parent, suffix=".tmp", delete=False, encoding="utf-8"
        ) as tmp:
            tmp_path = tmp.name
            write(tmp)
        os.replace(tmp_path, path)
    except BaseException:
        if tmp_path is not None and os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def atomic_write_json(path: str | os.PathLike, data: Any, *, indent: int = 2) -> None:
    """Write *data* as JSON atomically via temp-file + rename.

    Parameters
    ----------
    path:
        Destination file path. Parent directories are created.
    data:
        Object made of dicts, lists, scalars, numpy values and paths.
    indent:
        JSON indentation (default 2).
    """
    _atomic_write(path, lambda f: json.dump(to_jsonable(data), f, indent=indent))


def atomic_write_text(path: str | os.PathLike, content: str) -> None:
    """Write *content* as text atomically via temp-file + rename."""
    _atomic_write(path, lambda f: f.write(content))
