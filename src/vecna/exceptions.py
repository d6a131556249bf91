"""Exception hierarchy for vecna.

Library code raises these; only the CLI turns them into exit codes.
"""

from pathlib import Path
from typing import Optional


class VecnaError(Exception):
    """Base exception for all vecna errors."""


class VcsCommandFailed(VecnaError):
    """Raised when a git command exits with a non-zero status."""

    def __init__(self, command: str, exit_code: Optional[int], stderr: str = ""):
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        detail = f": {stderr}" if stderr else ""
        super().__init__(f"git {command} failed (exit code {exit_code}){detail}")


class UnmergedBranchError(VcsCommandFailed):
    """Raised when git refuses to delete a branch that is not fully merged."""


class NotARepositoryError(VecnaError):
    """Raised when no git repository can be found."""


class NotMainRepositoryError(VecnaError):
    """Raised when an operation requires the main checkout but got a worktree."""


class WorktreeError(VecnaError):
    """Base exception for worktree lifecycle operations."""


class WorktreeNotFoundError(WorktreeError):
    """Raised when a worktree cannot be found."""


class PathAlreadyExistsError(WorktreeError):
    """Raised when the target directory of a new worktree already exists."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"Directory already exists: {path}")


class BranchInUseError(WorktreeError):
    """Raised when a branch is already checked out in another worktree."""

    def __init__(self, branch: str, worktree_path: Path):
        self.branch = branch
        self.worktree_path = worktree_path
        super().__init__(
            f"Branch '{branch}' is already checked out at: {worktree_path}. "
            f"Switch to that worktree instead."
        )


class CurrentWorktreeError(WorktreeError):
    """Raised when trying to remove the worktree the caller is standing in."""


class UncommittedChangesError(WorktreeError):
    """Raised when removing a dirty worktree without force."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"Worktree has uncommitted changes: {path}")


class ConfigNotFoundError(VecnaError):
    """Raised when no project configuration can be resolved."""

    def __init__(self, message: str = "No .vecna.json found. Run 'vecna setup' from your project root."):
        super().__init__(message)


class StateStoreError(VecnaError):
    """Raised when a JSON state document cannot be read or written."""
