"""
Core modules for vecna.

This package contains the core business logic for:
- Running git (GitGateway)
- Throttling network fetches
- Persisting project state and the global registry
- Project setup and resolution
- Worktree lifecycle and reconciliation
- Environment setup of new worktrees
"""

from vecna.core.environment import EnvironmentSetup
from vecna.core.fetch_throttle import FetchThrottle
from vecna.core.git import GitGateway
from vecna.core.project import ResolutionContext, resolve_project, setup_project
from vecna.core.reconciler import WorktreeReconciler, build_reconciler
from vecna.core.state import ProjectStateStore

__all__ = [
    "EnvironmentSetup",
    "FetchThrottle",
    "GitGateway",
    "ResolutionContext",
    "resolve_project",
    "setup_project",
    "WorktreeReconciler",
    "build_reconciler",
    "ProjectStateStore",
]
