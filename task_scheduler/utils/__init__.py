# File: utils/__init__.py
"""Pure Python utilities for the task scheduler.

Submodules:
    - dt_utils: Timezone handling, day boundaries and calendar arithmetic

Usage:
    from .utils import dt_utils
"""

from . import dt_utils

__all__ = ["dt_utils"]
