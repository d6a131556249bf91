"""
Pydantic models for maintenance features (clean and tidy).

This module provides data models for:
- The tidy plan, with explicit variants for clean removals and removals
  that require a hard reset
- Tidy and clean operation reporting
"""

from datetime import datetime
from pathlib import Path
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class CleanRemoval(BaseModel):
    """A worktree without local changes, removed as-is."""

    kind: Literal["clean"] = "clean"
    name: str
    path: Path
    branch: str
    reason: str = "Associated branch deleted from remote"

    @property
    def will_reset(self) -> bool:
        return False


class ResetRemoval(BaseModel):
    """A worktree with uncommitted changes that will be hard reset before removal."""

    kind: Literal["reset"] = "reset"
    name: str
    path: Path
    branch: str
    reason: str = "Associated branch deleted from remote"

    @property
    def will_reset(self) -> bool:
        return True


WorktreeRemovalPlan = Annotated[
    Union[CleanRemoval, ResetRemoval], Field(discriminator="kind")
]


class BranchDeletion(BaseModel):
    """A local branch scheduled for deletion."""

    name: str
    reason: str = "Branch deleted from remote"


class SkippedBranch(BaseModel):
    """A branch that qualified for deletion but is kept."""

    name: str
    reason: str


class TidyPlan(BaseModel):
    """Everything a tidy run would change, computed before any mutation."""

    worktrees_to_remove: list[WorktreeRemovalPlan] = Field(default_factory=list)
    branches_to_delete: list[BranchDeletion] = Field(default_factory=list)
    skipped: list[SkippedBranch] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.worktrees_to_remove and not self.branches_to_delete

    @property
    def resets_required(self) -> list[ResetRemoval]:
        return [w for w in self.worktrees_to_remove if isinstance(w, ResetRemoval)]


class TidyReport(BaseModel):
    """Report generated after a tidy operation."""

    timestamp: datetime = Field(default_factory=datetime.now)
    plan: TidyPlan
    dry_run: bool
    executed: bool = False
    cancelled: bool = False
    removed_worktrees: list[str] = Field(default_factory=list)
    deleted_branches: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class UnregisteredDirectory(BaseModel):
    """A git checkout under the base directory that git does not know about."""

    name: str
    path: Path


class CleanReport(BaseModel):
    """Report generated after reconciling the registry, disk and metadata."""

    timestamp: datetime = Field(default_factory=datetime.now)
    dry_run: bool
    orphaned_worktrees: list[str] = Field(
        default_factory=list,
        description="Registered worktrees whose directory is missing",
    )
    stale_metadata: list[str] = Field(
        default_factory=list,
        description="Metadata entries with no registered worktree",
    )
    unregistered_directories: list[UnregisteredDirectory] = Field(default_factory=list)
    pruned: bool = False
    errors: list[str] = Field(default_factory=list)

    @property
    def issue_count(self) -> int:
        return (
            len(self.orphaned_worktrees)
            + len(self.stale_metadata)
            + len(self.unregistered_directories)
        )
