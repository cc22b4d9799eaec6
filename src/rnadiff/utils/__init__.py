"""Utility modules for the differential expression workflow."""

from rnadiff.utils.fileio import (
    atomic_write_json,
    atomic_write_text,
    to_jsonable,
)

__all__ = [
    'atomic_write_json',
    'atomic_write_text',
    'to_jsonable',
]
