"""
Pydantic models for vecna.

This package contains data models for:
- Worktree registry entries and enriched worktrees
- Project state and the global project registry
- Maintenance operations (clean, tidy)
"""

from vecna.models.maintenance import (
    BranchDeletion,
    CleanRemoval,
    CleanReport,
    ResetRemoval,
    SkippedBranch,
    TidyPlan,
    TidyReport,
    UnregisteredDirectory,
)
from vecna.models.project_config import (
    DefaultProject,
    GlobalRegistry,
    PackageManager,
    ProjectConfig,
    WorktreeMetadata,
    WorktreePolicy,
)
from vecna.models.worktree import (
    DiskUsage,
    EnvironmentReport,
    LastCommit,
    SyncStatus,
    Worktree,
    WorktreeCreateResult,
    WorktreeEntry,
    WorktreeRemovalResult,
)

__all__ = [
    "BranchDeletion",
    "CleanRemoval",
    "CleanReport",
    "ResetRemoval",
    "SkippedBranch",
    "TidyPlan",
    "TidyReport",
    "UnregisteredDirectory",
    "DefaultProject",
    "GlobalRegistry",
    "PackageManager",
    "ProjectConfig",
    "WorktreeMetadata",
    "WorktreePolicy",
    "DiskUsage",
    "EnvironmentReport",
    "LastCommit",
    "SyncStatus",
    "Worktree",
    "WorktreeCreateResult",
    "WorktreeEntry",
    "WorktreeRemovalResult",
]
