"""
Pointer path search package.

Holds the level-by-level path expander, the search runner that prints
each level, and shared formatting/logging helpers used by pointer_scanner.
"""

from . import expander, search_runner, utils

__all__ = ["expander", "search_runner", "utils"]
