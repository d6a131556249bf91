"""
vecna - git worktree lifecycle manager.

This package creates, lists, removes and reconciles the git worktrees of a
project, keeping a small JSON state document beside the repository.
"""

__version__ = "0.1.0"

from vecna.config import Settings, load_settings
from vecna.exceptions import VecnaError

__all__ = [
    "__version__",
    "Settings",
    "VecnaError",
    "load_settings",
]
