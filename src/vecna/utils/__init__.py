"""Small helpers shared across vecna."""

from vecna.utils.io import atomic_write_text, read_json, shared_file_lock, write_json

__all__ = [
    "atomic_write_text",
    "read_json",
    "shared_file_lock",
    "write_json",
]
