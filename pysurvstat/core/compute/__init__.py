"""
Shared compute infrastructure for pysurvstat.

Submodules:
    timing: Execution timing utilities
"""

from pysurvstat.core.compute.timing import Timer, timed

__all__ = [
    "Timer",
    "timed",
]
