"""Thin synchronous facade over the git binary.

Every method runs git through GitPython and returns parsed results. Nothing is
cached; each call reflects the repository as it is right now.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from git import Git, Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from vecna.exceptions import NotARepositoryError, UnmergedBranchError, VcsCommandFailed
from vecna.models.worktree import LastCommit, WorktreeEntry

logger = logging.getLogger(__name__)

GIT_DIR_NAME = ".git"
FIELD_SEPARATOR = "\x1f"
UNMERGED_MARKERS = ("not fully merged", "not merged")


def _clean_stderr(stderr: Optional[str]) -> str:
    """Strip GitPython's "stderr: '...'" decoration from an error message."""
    text = (stderr or "").strip()
    prefix = "stderr: '"
    if text.startswith(prefix) and text.endswith("'"):
        text = text[len(prefix):-1]
    return text.strip()


class GitGateway:
    """Runs git commands against one repository."""

    def __init__(self, repo_path: Path, timeout: int = 60):
        """
        Open the repository containing repo_path.

        Args:
            repo_path: Any path inside the repository.
            timeout: Seconds before a git command is killed.

        Raises:
            NotARepositoryError: If repo_path is not inside a git repository.
        """
        self.timeout = timeout
        try:
            self.repo = Repo(repo_path, search_parent_directories=True)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise NotARepositoryError(f"Not a git repository: {repo_path}") from e
        if self.repo.working_tree_dir is None:
            raise NotARepositoryError(f"Bare repositories are not supported: {repo_path}")
        self.root = Path(self.repo.working_tree_dir)

    def _run(self, command: str, *args: str, cwd: Optional[Path] = None) -> str:
        """Run one git command and return its stdout."""
        runner = self.repo.git if cwd is None else Git(str(cwd))
        logger.debug(f"git {command} {' '.join(args)}" + (f" (in {cwd})" if cwd else ""))
        try:
            return getattr(runner, command)(*args, kill_after_timeout=self.timeout)
        except GitCommandError as e:
            stderr = _clean_stderr(e.stderr)
            name = command.replace("_", "-")
            if command == "branch" and any(m in stderr for m in UNMERGED_MARKERS):
                raise UnmergedBranchError(name, e.status, stderr) from e
            raise VcsCommandFailed(name, e.status, stderr) from e

    # Repository layout

    @staticmethod
    def is_main_repository(path: Path) -> bool:
        """A main checkout has a .git directory; a linked worktree has a .git file."""
        return (Path(path) / GIT_DIR_NAME).is_dir()

    @staticmethod
    def find_repository_root(start_path: Path) -> Path:
        """
        Walk up from start_path until a directory holding a .git entry is found.

        Raises:
            NotARepositoryError: If the filesystem root is reached.
        """
        current = Path(start_path).resolve()
        for candidate in (current, *current.parents):
            if (candidate / GIT_DIR_NAME).exists():
                return candidate
        raise NotARepositoryError(f"Not a git repository (or any parent): {start_path}")

    def main_repository_root(self) -> Path:
        """Root of the main checkout, even when opened inside a linked worktree."""
        common_dir = self._run("rev_parse", "--git-common-dir").strip()
        return (self.root / common_dir).resolve().parent

    # Worktree registry

    def list_worktrees(self, cwd: Optional[Path] = None) -> list[WorktreeEntry]:
        """
        Parse `git worktree list --porcelain` into registry entries.

        Bare and detached entries are skipped. An entry is current when cwd is the
        entry path or nested under it; with nested worktrees the deepest match wins.

        Args:
            cwd: The caller's working directory, or None to mark nothing current.
        """
        output = self._run("worktree", "list", "--porcelain")

        blocks: list[dict] = []
        current: dict = {}
        for line in output.split("\n"):
            line = line.strip()
            if not line:
                if current:
                    blocks.append(current)
                    current = {}
                continue

            key, _, value = line.partition(" ")
            if key == "worktree":
                current["path"] = value
            elif key == "HEAD":
                current["head"] = value
            elif key == "branch":
                current["branch"] = value
            elif key in ("detached", "bare"):
                current[key] = True
            elif key == "prunable":
                current["prunable"] = True
        if current:
            blocks.append(current)

        entries = []
        for index, block in enumerate(blocks):
            branch_ref = block.get("branch", "")
            if block.get("bare") or block.get("detached") or not branch_ref:
                logger.debug(f"Skipping non-branch worktree entry: {block.get('path')}")
                continue
            entries.append(
                WorktreeEntry(
                    path=Path(block["path"]),
                    branch=branch_ref.removeprefix("refs/heads/"),
                    head=block.get("head", ""),
                    is_main=index == 0,
                    is_prunable=block.get("prunable", False),
                )
            )

        if cwd is not None:
            self._mark_current(entries, Path(cwd))

        return entries

    @staticmethod
    def _mark_current(entries: list[WorktreeEntry], cwd: Path) -> None:
        resolved_cwd = cwd.resolve()
        best: Optional[WorktreeEntry] = None
        for entry in entries:
            entry_path = entry.path.resolve()
            if resolved_cwd == entry_path or resolved_cwd.is_relative_to(entry_path):
                if best is None or len(entry_path.parts) > len(best.path.resolve().parts):
                    best = entry
        if best is not None:
            best.is_current = True

    def add_worktree(self, path: Path, existing_branch: str) -> None:
        """Check out an existing branch into a new worktree."""
        self._run("worktree", "add", str(path), existing_branch)

    def add_worktree_with_new_branch(self, path: Path, new_branch: str, from_ref: str) -> None:
        """Create new_branch at from_ref and check it out into a new worktree."""
        self._run("worktree", "add", "-b", new_branch, str(path), from_ref)

    def remove_worktree(self, path: Path, force: bool = False) -> None:
        args = ["remove"]
        if force:
            args.append("--force")
        args.append(str(path))
        self._run("worktree", *args)

    def prune_worktrees(self) -> None:
        self._run("worktree", "prune")

    # Branches

    def local_branches(self) -> list[str]:
        output = self._run("branch", "--format=%(refname:short)")
        return [line.strip() for line in output.splitlines() if line.strip()]

    def remotes(self) -> list[str]:
        output = self._run("remote")
        return [line.strip() for line in output.splitlines() if line.strip()]

    def has_remotes(self) -> bool:
        return bool(self.remotes())

    def remote_branches(self) -> list[str]:
        """Remote-tracking branches with their remote prefix stripped."""
        remotes = self.remotes()
        output = self._run("branch", "-r", "--format=%(refname:short)")

        branches = []
        for line in output.splitlines():
            ref = line.strip()
            if not ref or ref.endswith("/HEAD") or "/" not in ref:
                continue
            for remote in remotes:
                if ref.startswith(f"{remote}/"):
                    branches.append(ref[len(remote) + 1:])
                    break
        return branches

    def branch_exists(self, name: str) -> bool:
        """
        Check whether a branch can be checked out by name.

        Tries local branches, then remote-tracking branches, then a revision
        lookup (covers refs that only other worktrees hold).
        """
        if name in self.local_branches():
            return True
        if name in self.remote_branches():
            return True
        try:
            self._run("rev_parse", "--verify", "--quiet", f"refs/heads/{name}")
            return True
        except VcsCommandFailed:
            return False

    def remote_branch_set(self) -> Optional[frozenset[str]]:
        """
        Snapshot the locally cached remote-tracking branches for repeated lookups.

        Returns None when git cannot list them; callers must then treat every
        branch as present on the remote.
        """
        try:
            return frozenset(self.remote_branches())
        except VcsCommandFailed as e:
            logger.warning(f"Could not list remote branches, assuming they all exist: {e}")
            return None

    def does_remote_branch_exist(self, name: str) -> bool:
        """
        Check the locally cached remote-tracking branches for name.

        Never touches the network. Any git failure is treated as "exists" so that
        nothing gets deleted on incomplete information.
        """
        known = self.remote_branch_set()
        return known is None or name in known

    def current_branch(self) -> str:
        return self._run("branch", "--show-current").strip()

    def delete_branch(self, name: str, force: bool = False) -> None:
        """
        Delete a local branch.

        Raises:
            UnmergedBranchError: If git refuses because the branch is not merged.
            VcsCommandFailed: For any other failure.
        """
        self._run("branch", "-D" if force else "-d", name)

    def ahead_behind(self, branch: str, against: str) -> tuple[int, int]:
        """Return (ahead, behind) commit counts of branch relative to against."""
        output = self._run("rev_list", "--left-right", "--count", f"{branch}...{against}")
        parts = output.split()
        if len(parts) != 2:
            return 0, 0
        return int(parts[0]), int(parts[1])

    # Working directory state

    def last_commit(self, path: Path) -> LastCommit:
        output = self._run(
            "log", "-1", f"--format=%H{FIELD_SEPARATOR}%s{FIELD_SEPARATOR}%ct", cwd=path
        ).strip()
        if not output:
            return LastCommit()
        commit_hash, message, timestamp = output.split(FIELD_SEPARATOR, 2)
        return LastCommit(
            hash=commit_hash,
            message=message,
            timestamp=datetime.fromtimestamp(int(timestamp)),
        )

    def has_uncommitted_changes(self, path: Path) -> bool:
        return bool(self._run("status", "--porcelain", cwd=path).strip())

    def reset_uncommitted_changes(self, path: Path) -> None:
        """Discard tracked and untracked changes in a worktree."""
        self._run("reset", "--hard", "HEAD", cwd=path)
        self._run("clean", "-fd", cwd=path)

    # Network and checkout

    def checkout(self, branch: str) -> None:
        self._run("checkout", branch)

    def pull(self) -> None:
        self._run("pull")

    def fetch(self, prune: bool = True) -> None:
        args = ["--prune"] if prune else []
        self._run("fetch", *args)
