"""Manager modules for the task scheduler.

Managers orchestrate workflows and coordinate between engines and storage.
They are stateful, lock-aware, and notify listeners after writes.
"""

from .scheduler_manager import Scheduler

__all__ = ["Scheduler"]
