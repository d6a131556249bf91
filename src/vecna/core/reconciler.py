"""
Worktree lifecycle and reconciliation engine.

Combines the git registry, the JSON state documents and the fetch throttle into
one view of a project's worktrees, and drives every mutation:
- create and remove worktrees
- bulk cleanup of branches deleted upstream (tidy)
- reconciliation of registry, disk and metadata (clean)
"""

import fnmatch
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from pathlib import Path
from typing import Callable, Optional

from vecna.config import Settings
from vecna.core.environment import EnvironmentSetup
from vecna.core.fetch_throttle import FetchThrottle
from vecna.core.git import GitGateway
from vecna.core.project import ResolutionContext, resolve_project
from vecna.core.state import ProjectStateStore
from vecna.exceptions import (
    BranchInUseError,
    CurrentWorktreeError,
    NotMainRepositoryError,
    PathAlreadyExistsError,
    StateStoreError,
    UncommittedChangesError,
    UnmergedBranchError,
    VcsCommandFailed,
    WorktreeError,
    WorktreeNotFoundError,
)
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
from vecna.models.project_config import ProjectConfig
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

logger = logging.getLogger(__name__)

# GitCommandNotFound is an OSError subclass
ENRICHMENT_ERRORS = (VcsCommandFailed, OSError, ValueError)

ConfirmCallback = Callable[[TidyPlan], bool]


def flatten_branch_name(branch: str) -> str:
    """Turn a branch name into a single directory name."""
    return branch.replace("/", "-").replace("\\", "-")


def measure_disk_usage(path: Path) -> DiskUsage:
    """Walk a directory and sum file sizes. Unreadable entries are skipped."""
    usage = DiskUsage()
    for root, dirs, files in os.walk(path):
        usage.dir_count += len(dirs)
        for filename in files:
            try:
                usage.total_bytes += os.lstat(os.path.join(root, filename)).st_size
                usage.file_count += 1
            except OSError:
                continue
    return usage


def _same_path(a: Path, b: Path) -> bool:
    return Path(a).resolve() == Path(b).resolve()


def _on_remote(branch: str, remote_branches: Optional[frozenset[str]]) -> bool:
    # An unreadable remote list counts as "everything still exists"
    return remote_branches is None or branch in remote_branches


class WorktreeReconciler:
    """
    Manages the worktrees of one project.

    Built once per invocation with resolved collaborators; see build_reconciler.
    The gateway must be opened on the project's main checkout, while the
    context carries the caller's directory for current-worktree detection.
    """

    def __init__(
        self,
        gateway: GitGateway,
        store: ProjectStateStore,
        project: ProjectConfig,
        context: ResolutionContext,
        throttle: Optional[FetchThrottle] = None,
        settings: Optional[Settings] = None,
    ):
        self.gateway = gateway
        self.store = store
        self.project = project
        self.context = context
        self.settings = settings or Settings()
        self.throttle = throttle or FetchThrottle(
            cache_dir=store.config_dir / "cache",
            window=timedelta(minutes=self.settings.fetch.throttle_minutes),
        )

    @property
    def project_root(self) -> Path:
        return Path(self.project.path)

    @property
    def base_directory(self) -> Path:
        """Directory holding the project's worktrees."""
        base = Path(self.project.worktree_policy.base_directory)
        return base if base.is_absolute() else self.project_root / base

    def worktree_path_for(self, branch: str) -> Path:
        return self.base_directory / flatten_branch_name(branch)

    # Registry

    def list_worktrees(self) -> list[WorktreeEntry]:
        return self.gateway.list_worktrees(self.context.cwd)

    def find_worktree(
        self, identifier: str, entries: Optional[list[WorktreeEntry]] = None
    ) -> Optional[WorktreeEntry]:
        """
        Find a worktree by name, branch, or path.

        Exact matches win; a branch ending in "/<identifier>" is accepted as a
        fallback so "login" finds "feature/login".
        """
        if entries is None:
            entries = self.list_worktrees()

        candidate_path = Path(identifier).expanduser()
        for entry in entries:
            if identifier in (entry.name, entry.branch, str(entry.path)):
                return entry
            if candidate_path.is_absolute() and _same_path(candidate_path, entry.path):
                return entry

        for entry in entries:
            if entry.branch.endswith(f"/{identifier}"):
                return entry

        return None

    def _is_registered(self, path: Path) -> bool:
        return any(_same_path(entry.path, path) for entry in self.gateway.list_worktrees())

    # Enumerate

    def refresh_remote_state(self) -> bool:
        """
        Fetch from the remotes unless a fetch happened within the throttle window.

        Returns:
            True if a fetch ran and succeeded.
        """
        root = str(self.project_root)
        if not self.throttle.should_fetch(root):
            logger.debug("Skipping fetch, cache is fresh")
            return False
        try:
            self.gateway.fetch()
        except VcsCommandFailed as e:
            logger.warning(f"Background fetch failed, using cached remote state: {e}")
            return False
        self.throttle.record_fetch(root)
        return True

    def list_enriched_worktrees(self, include_main: bool = True) -> list[Worktree]:
        """
        List worktrees with commit, sync and status information.

        Entries are queried in parallel but returned in registry order. A failed
        query degrades that worktree to safe defaults instead of failing the list.
        """
        entries = self.list_worktrees()
        if not include_main:
            entries = [entry for entry in entries if not entry.is_main]
        if not entries:
            return []

        remote_branches = self.gateway.remote_branch_set()
        workers = min(self.settings.worktree.enrichment_workers, len(entries))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(
                executor.map(lambda entry: self._enrich(entry, remote_branches), entries)
            )

    def _enrich(
        self, entry: WorktreeEntry, remote_branches: Optional[frozenset[str]]
    ) -> Worktree:
        worktree = Worktree(
            path=entry.path,
            branch=entry.branch,
            is_current=entry.is_current,
            is_main=entry.is_main,
        )
        if not entry.path.exists():
            worktree.exists_on_disk = False
            return worktree

        try:
            worktree.last_commit = self.gateway.last_commit(entry.path)
            ahead, behind = self.gateway.ahead_behind(entry.branch, self.project.main_branch)
            worktree.sync_status = SyncStatus(ahead_count=ahead, behind_count=behind)
            worktree.has_uncommitted_changes = self.gateway.has_uncommitted_changes(entry.path)
            worktree.remote_exists = _on_remote(entry.branch, remote_branches)
        except ENRICHMENT_ERRORS as e:
            logger.warning(f"Could not read status of {entry.path}: {e}")
            worktree.last_commit = LastCommit()
            worktree.sync_status = SyncStatus()
            worktree.has_uncommitted_changes = False
            worktree.remote_exists = True
            worktree.degraded = True

        return worktree

    def get_worktree(self, identifier: str) -> Worktree:
        """
        Get enriched information about one worktree.

        Raises:
            WorktreeNotFoundError: If the worktree cannot be found.
        """
        entry = self.find_worktree(identifier)
        if entry is None:
            raise WorktreeNotFoundError(f"Worktree not found: {identifier}")
        return self._enrich(entry, self.gateway.remote_branch_set())

    def touch(self, identifier: str) -> Optional[WorktreeEntry]:
        """Record an access to a worktree. Returns the entry, or None if unknown."""
        entry = self.find_worktree(identifier)
        if entry is None:
            return None
        try:
            self.store.touch_worktree(self.project, entry.name)
        except StateStoreError as e:
            logger.warning(f"Could not update access time for {entry.name}: {e}")
        return entry

    def disk_usage(self, identifier: str) -> DiskUsage:
        entry = self.find_worktree(identifier)
        if entry is None:
            raise WorktreeNotFoundError(f"Worktree not found: {identifier}")
        return measure_disk_usage(entry.path)

    # Create

    def create(self, branch: str, from_branch: Optional[str] = None) -> WorktreeCreateResult:
        """
        Create a worktree for branch under the base directory.

        An existing local or remote branch is checked out; otherwise a new branch
        is created at from_branch (default: the project's main branch).

        Raises:
            PathAlreadyExistsError: If the target directory exists.
            BranchInUseError: If another worktree already has the branch.
            VcsCommandFailed: If git refuses to create the worktree.
        """
        worktree_path = self.worktree_path_for(branch)
        if worktree_path.exists():
            raise PathAlreadyExistsError(worktree_path)

        for entry in self.list_worktrees():
            if entry.branch == branch:
                raise BranchInUseError(branch, entry.path)

        worktree_path.parent.mkdir(parents=True, exist_ok=True)

        created_branch = not self.gateway.branch_exists(branch)
        source_branch = None
        if created_branch:
            source_branch = from_branch or self.project.main_branch
            logger.info(f"Creating branch {branch} from {source_branch}")
            self.gateway.add_worktree_with_new_branch(worktree_path, branch, source_branch)
        else:
            logger.info(f"Checking out existing branch {branch}")
            self.gateway.add_worktree(worktree_path, branch)

        entry = next(
            (e for e in self.list_worktrees() if _same_path(e.path, worktree_path)), None
        )
        if entry is None:
            raise WorktreeError(f"Worktree created but not found. Path: {worktree_path}")

        metadata_saved = True
        try:
            self.store.record_worktree(self.project, entry.name, branch, entry.path)
        except StateStoreError as e:
            logger.warning(f"Worktree created but metadata could not be saved: {e}")
            metadata_saved = False

        return WorktreeCreateResult(
            worktree=entry,
            created_branch=created_branch,
            source_branch=source_branch,
            metadata_saved=metadata_saved,
        )

    def prepare_environment(self, worktree_path: Path, install: bool = True) -> EnvironmentReport:
        """Copy config files, install dependencies and run post-create scripts."""
        setup = EnvironmentSetup(self.project)
        return setup.prepare(worktree_path, install=install)

    # Remove

    def remove(
        self,
        identifier: str,
        force: bool = False,
        delete_branch: bool = True,
        force_branch: Optional[bool] = None,
    ) -> WorktreeRemovalResult:
        """
        Remove a worktree and, by default, its local branch.

        Args:
            identifier: Worktree name, branch, or path.
            force: Remove even with uncommitted changes.
            delete_branch: Delete the local branch after removal.
            force_branch: Delete the branch even if unmerged. Defaults to force.

        Raises:
            CurrentWorktreeError: If the caller is inside the worktree.
            WorktreeError: If the worktree is the main checkout.
            UncommittedChangesError: If the worktree is dirty and force is False.
            VcsCommandFailed: If git fails and the worktree is still registered.
        """
        if force_branch is None:
            force_branch = force

        entry = self.find_worktree(identifier)
        if entry is None:
            return self._remove_absent(identifier)

        if entry.is_current:
            raise CurrentWorktreeError(
                f"Cannot remove the worktree you are in: {entry.path}. Switch to another one first."
            )
        if entry.is_main:
            raise WorktreeError("Cannot remove the main worktree")

        on_disk = entry.path.exists()
        if on_disk and not force and self.gateway.has_uncommitted_changes(entry.path):
            raise UncommittedChangesError(entry.path)

        result = WorktreeRemovalResult(path=entry.path, branch=entry.branch)

        removal_error: Optional[VcsCommandFailed] = None
        try:
            if on_disk:
                self.gateway.remove_worktree(entry.path, force=force)
            else:
                logger.info(f"Directory already gone, pruning registry: {entry.path}")
                self.gateway.prune_worktrees()
        except VcsCommandFailed as e:
            removal_error = e

        if self._is_registered(entry.path):
            if removal_error is not None:
                raise removal_error
            raise WorktreeError(f"Worktree is still registered after removal: {entry.path}")
        if removal_error is not None:
            logger.warning(f"git reported an error but the worktree is gone: {removal_error}")

        result.worktree_removed = True
        result.metadata_pruned = self._forget(entry.name)

        if delete_branch:
            self._delete_branch(result, entry.branch, force_branch)

        return result

    def _remove_absent(self, identifier: str) -> WorktreeRemovalResult:
        candidate = Path(identifier).expanduser()
        branch: Optional[str] = None
        if not candidate.is_absolute():
            candidate = self.worktree_path_for(identifier)
            branch = identifier

        if candidate.exists():
            raise WorktreeNotFoundError(
                f"Worktree not found: {identifier} ({candidate} is not a registered worktree)"
            )

        logger.info(f"Worktree {identifier} is already absent")
        return WorktreeRemovalResult(
            path=candidate,
            branch=branch,
            already_absent=True,
            metadata_pruned=self._forget(candidate.name),
        )

    def _forget(self, name: str) -> bool:
        try:
            return self.store.remove_worktree_state(self.project, name)
        except StateStoreError as e:
            logger.warning(f"Could not prune metadata for {name}: {e}")
            return False

    def _delete_branch(self, result: WorktreeRemovalResult, branch: str, force: bool) -> None:
        try:
            self.gateway.delete_branch(branch, force=force)
            result.branch_deleted = True
        except UnmergedBranchError as e:
            result.branch_unmerged = True
            result.branch_error = e.stderr or str(e)
        except VcsCommandFailed as e:
            logger.warning(f"Could not delete branch {branch}: {e}")
            result.branch_error = str(e)

    def delete_branch(self, branch: str, force: bool = False) -> None:
        """Delete a local branch, e.g. after the user accepts an unmerged deletion."""
        self.gateway.delete_branch(branch, force=force)

    # Clean

    def clean(self, dry_run: bool = False) -> CleanReport:
        """
        Reconcile the git registry, the disk and the metadata document.

        Registered worktrees with a missing directory are pruned, metadata without
        a registered worktree is removed, and git checkouts under the base
        directory that git does not know about are reported but left alone.
        """
        report = CleanReport(dry_run=dry_run)
        entries = self.gateway.list_worktrees()

        orphaned = [e for e in entries if not e.is_main and not e.path.exists()]
        report.orphaned_worktrees = [str(e.path) for e in orphaned]
        report.unregistered_directories = self._find_unregistered(entries)

        if dry_run:
            surviving = [e.name for e in entries if e not in orphaned]
            report.stale_metadata = [
                name for name in self.project.worktree_state if name not in surviving
            ]
            return report

        if orphaned:
            try:
                self.gateway.prune_worktrees()
                report.pruned = True
            except VcsCommandFailed as e:
                report.errors.append(f"Failed to prune worktrees: {e}")

        try:
            valid_names = [e.name for e in self.gateway.list_worktrees()]
            report.stale_metadata = self.store.prune_orphaned_states(self.project, valid_names)
        except (VcsCommandFailed, StateStoreError) as e:
            report.errors.append(f"Failed to prune metadata: {e}")

        return report

    def _find_unregistered(self, entries: list[WorktreeEntry]) -> list[UnregisteredDirectory]:
        base = self.base_directory
        if not base.is_dir():
            return []

        registered = {e.path.resolve() for e in entries}
        found = []
        for child in sorted(base.iterdir()):
            if child.is_dir() and (child / ".git").exists() and child.resolve() not in registered:
                found.append(UnregisteredDirectory(name=child.name, path=child))
        return found

    # Tidy

    def is_protected_branch(self, branch: str, keep_pattern: Optional[str] = None) -> bool:
        if branch == self.project.main_branch:
            return True
        if branch in self.settings.tidy.protected_branches:
            return True
        return bool(keep_pattern) and fnmatch.fnmatchcase(branch, keep_pattern)

    def prepare_main_branch(self) -> None:
        """
        Bring the main checkout up to date before planning a tidy.

        Raises:
            NotMainRepositoryError: If the project path is not a main checkout.
            VcsCommandFailed: If checkout, pull or fetch fails.
        """
        if not GitGateway.is_main_repository(self.project_root):
            raise NotMainRepositoryError(
                f"Tidy must run against the main repository: {self.project_root}"
            )

        main_branch = self.project.main_branch
        if self.gateway.current_branch() != main_branch:
            logger.info(f"Switching main checkout to {main_branch}")
            self.gateway.checkout(main_branch)

        self.gateway.pull()
        self.gateway.fetch(prune=True)
        self.throttle.record_fetch(str(self.project_root))

    def plan_tidy(self, keep_pattern: Optional[str] = None) -> TidyPlan:
        """Compute which worktrees and branches a tidy would remove. Mutates nothing."""
        plan = TidyPlan()

        if not self.gateway.has_remotes():
            logger.warning("Repository has no remotes; no branch can be detected as deleted")
            return plan

        by_branch = {entry.branch: entry for entry in self.list_worktrees()}
        remote_branches = self.gateway.remote_branch_set()

        for branch in self.gateway.local_branches():
            if self.is_protected_branch(branch, keep_pattern):
                continue
            if _on_remote(branch, remote_branches):
                continue

            entry = by_branch.get(branch)
            if entry is not None:
                if entry.is_current:
                    plan.skipped.append(
                        SkippedBranch(name=branch, reason="Checked out in the current worktree")
                    )
                    continue
                if entry.is_main:
                    plan.skipped.append(
                        SkippedBranch(name=branch, reason="Checked out in the main checkout")
                    )
                    continue

                dirty = False
                if entry.path.exists():
                    try:
                        dirty = self.gateway.has_uncommitted_changes(entry.path)
                    except VcsCommandFailed as e:
                        logger.warning(f"Could not read status of {entry.path}: {e}")
                        plan.skipped.append(
                            SkippedBranch(name=branch, reason="Could not read worktree status")
                        )
                        continue

                removal_type = ResetRemoval if dirty else CleanRemoval
                plan.worktrees_to_remove.append(
                    removal_type(name=entry.name, path=entry.path, branch=branch)
                )

            plan.branches_to_delete.append(BranchDeletion(name=branch))

        return plan

    def execute_tidy(self, plan: TidyPlan) -> TidyReport:
        """Carry out a plan. Failures are collected and do not stop later items."""
        report = TidyReport(plan=plan, dry_run=False, executed=True)

        for removal in plan.worktrees_to_remove:
            try:
                if removal.path.exists():
                    if removal.will_reset:
                        self.gateway.reset_uncommitted_changes(removal.path)
                    self.gateway.remove_worktree(removal.path, force=True)
                else:
                    self.gateway.prune_worktrees()
            except VcsCommandFailed as e:
                report.errors.append(f"Failed to remove worktree {removal.name}: {e}")
                continue
            self._forget(removal.name)
            report.removed_worktrees.append(removal.name)

        for deletion in plan.branches_to_delete:
            try:
                self.gateway.delete_branch(deletion.name, force=True)
            except VcsCommandFailed as e:
                report.errors.append(f"Failed to delete branch {deletion.name}: {e}")
                continue
            report.deleted_branches.append(deletion.name)

        return report

    def tidy(
        self,
        keep_pattern: Optional[str] = None,
        dry_run: bool = False,
        force: bool = False,
        confirm: Optional[ConfirmCallback] = None,
    ) -> TidyReport:
        """
        Remove worktrees and local branches whose remote branch was deleted.

        The plan is identical with and without dry_run. Execution needs force or
        a confirm callback that approves the plan. Without any remote there is
        nothing to compare against, so nothing is pulled or planned.
        """
        if not self.gateway.has_remotes():
            logger.warning("Repository has no remotes; no branch can be detected as deleted")
            return TidyReport(plan=TidyPlan(), dry_run=dry_run)

        self.prepare_main_branch()
        plan = self.plan_tidy(keep_pattern)

        if dry_run or plan.is_empty:
            return TidyReport(plan=plan, dry_run=dry_run)

        if not force and (confirm is None or not confirm(plan)):
            logger.info("Tidy cancelled")
            return TidyReport(plan=plan, dry_run=False, cancelled=True)

        return self.execute_tidy(plan)


def build_reconciler(
    context: ResolutionContext,
    store: Optional[ProjectStateStore] = None,
    settings: Optional[Settings] = None,
    throttle: Optional[FetchThrottle] = None,
) -> WorktreeReconciler:
    """
    Resolve the project for context and wire up a reconciler for it.

    Raises:
        ConfigNotFoundError: If no project can be resolved.
    """
    settings = settings or Settings()
    store = store or ProjectStateStore()
    project = resolve_project(context, store)
    project_root = Path(project.path)

    if context.gateway is not None and _same_path(context.gateway.root, project_root):
        gateway = context.gateway
    else:
        gateway = GitGateway(project_root, timeout=settings.git.timeout_seconds)

    if throttle is None:
        throttle = FetchThrottle(
            cache_dir=store.config_dir / "cache",
            window=timedelta(minutes=settings.fetch.throttle_minutes),
        )
    return WorktreeReconciler(gateway, store, project, context, throttle, settings)
