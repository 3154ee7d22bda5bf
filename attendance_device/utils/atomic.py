"""
Atomic file replacement.

Writes go to a temporary sibling first and are swapped in with os.replace,
so a crash leaves either the old file or the new one, never a truncated mix.
"""

import os
from typing import Iterable


def atomic_write_lines(path: str, lines: Iterable[str], tmp_path: str | None = None) -> None:
    """
    Replace ``path`` with ``lines`` atomically.

    Args:
        path: Destination file
        lines: Text chunks to write (newlines included by the caller)
        tmp_path: Temporary file to stage into (defaults to ``path + '.tmp'``)

    Raises:
        OSError: If staging or replacing fails; ``path`` is left untouched
    """
    tmp_path = tmp_path or f'{path}.tmp'
    try:
        with open(tmp_path, 'w', encoding='utf-8') as handle:
            for line in lines:
                handle.write(line)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except OSError:
        discard_stale(tmp_path)
        raise


def atomic_write_text(path: str, text: str) -> None:
    """Replace ``path`` with ``text`` atomically."""
    atomic_write_lines(path, [text])


def discard_stale(tmp_path: str) -> bool:
    """
    Remove a leftover temporary file.

    Returns:
        True if a file was removed
    """
    try:
        os.remove(tmp_path)
    except OSError:
        return False
    return True
