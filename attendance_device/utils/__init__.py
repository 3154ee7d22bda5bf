"""
Utility modules package.
"""

from .atomic import atomic_write_lines, atomic_write_text, discard_stale
from .timing import format_uptime, unix_now

__all__ = [
    'atomic_write_lines',
    'atomic_write_text',
    'discard_stale',
    'format_uptime',
    'unix_now',
]
