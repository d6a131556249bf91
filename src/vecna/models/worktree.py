"""Pydantic models for worktree information."""

from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


class WorktreeEntry(BaseModel):
    """A single row of git's worktree registry."""

    path: Path = Field(description="Absolute path to the worktree directory")
    branch: str = Field(description="Branch name checked out in this worktree")
    head: str = Field(default="", description="Full SHA of the HEAD commit")
    is_main: bool = Field(default=False, description="Whether this is the main checkout")
    is_current: bool = Field(
        default=False, description="Whether the caller's cwd is inside this worktree"
    )
    is_prunable: bool = Field(
        default=False, description="Whether git reports the entry as prunable"
    )

    @property
    def name(self) -> str:
        """Get the worktree directory name."""
        return self.path.name


class LastCommit(BaseModel):
    """The most recent commit of a worktree."""

    hash: str = ""
    message: str = ""
    timestamp: Optional[datetime] = None

    @property
    def short_hash(self) -> str:
        return self.hash[:8]


class SyncStatus(BaseModel):
    """Commit counts relative to the project's main branch."""

    ahead_count: int = Field(default=0, ge=0)
    behind_count: int = Field(default=0, ge=0)


class Worktree(BaseModel):
    """A worktree enriched with commit, sync and remote information."""

    path: Path = Field(description="Absolute path to the worktree directory")
    branch: str = Field(description="Branch name checked out in this worktree")
    is_current: bool = Field(default=False)
    is_main: bool = Field(default=False)
    last_commit: LastCommit = Field(default_factory=LastCommit)
    sync_status: SyncStatus = Field(default_factory=SyncStatus)
    remote_exists: bool = Field(
        default=True, description="Whether a remote-tracking branch is known locally"
    )
    has_uncommitted_changes: bool = Field(default=False)
    exists_on_disk: bool = Field(default=True)
    degraded: bool = Field(
        default=False, description="Whether enrichment failed and defaults were used"
    )

    @property
    def name(self) -> str:
        """Get the worktree directory name."""
        return self.path.name

    @property
    def short_path(self) -> str:
        """Get a shortened display path."""
        return f"~/{self.path.relative_to(Path.home())}" if self.path.is_relative_to(
            Path.home()
        ) else str(self.path)


class WorktreeCreateResult(BaseModel):
    """Result of creating a new worktree."""

    worktree: WorktreeEntry
    created_branch: bool = Field(
        default=False, description="Whether a new branch was created"
    )
    source_branch: Optional[str] = Field(
        default=None, description="Ref the new branch was created from"
    )
    metadata_saved: bool = Field(
        default=True, description="Whether the worktree metadata was recorded"
    )


class WorktreeRemovalResult(BaseModel):
    """Result of removing a worktree and its local branch."""

    path: Path
    branch: Optional[str] = None
    worktree_removed: bool = False
    already_absent: bool = Field(
        default=False, description="Nothing was registered at the path"
    )
    branch_deleted: bool = False
    branch_unmerged: bool = Field(
        default=False, description="Branch deletion was refused as not fully merged"
    )
    branch_error: Optional[str] = None
    metadata_pruned: bool = False


class EnvironmentReport(BaseModel):
    """Outcome of preparing a freshly created worktree."""

    copied_files: list[Path] = Field(default_factory=list)
    package_manager: Optional[str] = None
    dependencies_installed: bool = False
    scripts_run: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class DiskUsage(BaseModel):
    """Size of a worktree directory on disk."""

    total_bytes: int = 0
    file_count: int = 0
    dir_count: int = 0

    @property
    def human_size(self) -> str:
        size = float(self.total_bytes)
        for unit in ("B", "KB", "MB"):
            if size < 1024:
                return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
            size /= 1024
        return f"{size:.1f} GB"
