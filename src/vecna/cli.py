"""CLI entry point for vecna."""

import json
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from vecna.config import Settings, load_settings
from vecna.core.project import ResolutionContext, setup_project
from vecna.core.reconciler import WorktreeReconciler, build_reconciler
from vecna.core.state import ProjectStateStore
from vecna.exceptions import (
    UncommittedChangesError,
    VcsCommandFailed,
    VecnaError,
)
from vecna.logging_config import setup_logging
from vecna.models.maintenance import CleanReport, TidyPlan
from vecna.models.worktree import Worktree

console = Console()


def get_settings(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


def get_context(ctx: click.Context) -> ResolutionContext:
    settings = get_settings(ctx)
    return ResolutionContext.from_cwd(Path.cwd(), git_timeout=settings.git.timeout_seconds)


def get_reconciler(ctx: click.Context) -> WorktreeReconciler:
    """
    Build a reconciler for the project around the cwd.

    Raises:
        click.ClickException: If no project can be resolved.
    """
    try:
        return build_reconciler(get_context(ctx), ProjectStateStore(), get_settings(ctx))
    except VecnaError as e:
        raise click.ClickException(str(e)) from e


def _status_label(worktree: Worktree) -> str:
    if not worktree.exists_on_disk:
        return "[red]missing[/red]"
    if worktree.degraded:
        return "[yellow]unknown[/yellow]"
    if worktree.has_uncommitted_changes:
        return "[yellow]modified[/yellow]"
    return "[green]clean[/green]"


def _sync_label(worktree: Worktree) -> str:
    if not worktree.remote_exists:
        return "[red]gone[/red]"
    sync = worktree.sync_status
    parts = []
    if sync.ahead_count:
        parts.append(f"↑{sync.ahead_count}")
    if sync.behind_count:
        parts.append(f"↓{sync.behind_count}")
    return " ".join(parts) or "[dim]-[/dim]"


@click.group()
@click.version_option(package_name="vecna")
@click.option("-v", "--verbose", is_flag=True, help="Show informational messages.")
@click.option("--debug", is_flag=True, help="Show debug output and write a log file.")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="Path to a settings file.",
)
@click.pass_context
def main(ctx: click.Context, verbose: bool, debug: bool, config_path: Optional[str]) -> None:
    """vecna - git worktree manager.

    Create, list, switch between and clean up the worktrees of a project.
    """
    setup_logging(verbose=verbose, debug=debug)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = load_settings(config_path)


@main.command("setup")
@click.option("-n", "--name", help="Project name (defaults to the directory name).")
@click.option("-m", "--main-branch", help="Main branch (detected when omitted).")
@click.pass_context
def setup_cmd(ctx: click.Context, name: Optional[str], main_branch: Optional[str]) -> None:
    """Register the current repository as a vecna project.

    Must be run from the main checkout, not from a worktree.

    Example:
        vecna setup
        vecna setup --name api --main-branch develop
    """
    store = ProjectStateStore()
    try:
        config = setup_project(
            get_context(ctx), store, get_settings(ctx), name=name, main_branch=main_branch
        )
    except VecnaError as e:
        raise click.ClickException(str(e)) from e

    console.print()
    console.print(f"[bold green]Project '{config.name}' is set up![/bold green]")
    console.print(f"[bold]Path:[/bold]        {config.path}")
    console.print(f"[bold]Main branch:[/bold] {config.main_branch}")
    console.print(f"[bold]Worktrees:[/bold]   {config.worktree_policy.base_directory}")
    console.print()


@main.command("start")
@click.argument("branch")
@click.option(
    "-b",
    "--from",
    "from_branch",
    help="Ref to create a new branch from (defaults to the main branch).",
)
@click.option(
    "--setup/--no-setup",
    "prepare",
    default=True,
    help="Copy config files and run post-create steps (default: enabled).",
)
@click.option(
    "--deps/--no-deps",
    default=True,
    help="Install dependencies in the new worktree (default: enabled).",
)
@click.pass_context
def start_cmd(
    ctx: click.Context, branch: str, from_branch: Optional[str], prepare: bool, deps: bool
) -> None:
    """Create a worktree for BRANCH.

    An existing local or remote branch is checked out; otherwise a new branch
    is created.

    Example:
        vecna start feature/login
        vecna start hotfix/crash --from release/2.1
    """
    reconciler = get_reconciler(ctx)

    try:
        with console.status(f"[bold blue]Creating worktree for '{branch}'..."):
            result = reconciler.create(branch, from_branch=from_branch)
    except VecnaError as e:
        raise click.ClickException(str(e)) from e

    worktree = result.worktree
    console.print()
    console.print("[bold green]Worktree created successfully![/bold green]")
    console.print(f"[bold]Branch:[/bold]  {worktree.branch}")
    console.print(f"[bold]Path:[/bold]    {worktree.path}")
    if result.created_branch:
        console.print(f"[dim]New branch created from {result.source_branch}[/dim]")
    if not result.metadata_saved:
        console.print("[yellow]Warning: worktree metadata could not be saved[/yellow]")

    if prepare:
        with console.status("[bold blue]Preparing environment..."):
            report = reconciler.prepare_environment(worktree.path, install=deps)
        for copied in report.copied_files:
            console.print(f"[green]Copied[/green] {copied.name}")
        if report.dependencies_installed:
            console.print(f"[green]Dependencies installed ({report.package_manager})[/green]")
        for script in report.scripts_run:
            console.print(f"[green]Ran[/green] {script}")
        for warning in report.warnings:
            console.print(f"[yellow]Warning: {warning}[/yellow]")

    console.print()
    console.print(f"[dim]cd {worktree.path}[/dim]")


@main.command("list")
@click.option("--json", "as_json", is_flag=True, help="Print worktrees as JSON.")
@click.option(
    "--fetch/--no-fetch",
    default=True,
    help="Refresh remote branches first, at most once per throttle window.",
)
@click.pass_context
def list_cmd(ctx: click.Context, as_json: bool, fetch: bool) -> None:
    """List the worktrees of the project.

    Example:
        vecna list
        vecna list --json
    """
    reconciler = get_reconciler(ctx)

    try:
        if fetch:
            reconciler.refresh_remote_state()
        worktrees = reconciler.list_enriched_worktrees()
    except VecnaError as e:
        raise click.ClickException(str(e)) from e

    if as_json:
        click.echo(json.dumps([wt.model_dump(mode="json") for wt in worktrees], indent=2))
        return

    if not worktrees:
        console.print("[yellow]No worktrees found.[/yellow]")
        return

    table = Table(
        title=f"Worktrees of {reconciler.project.name}", show_header=True, header_style="bold cyan"
    )
    table.add_column("Name", style="bold")
    table.add_column("Branch", style="green")
    table.add_column("Commit", style="dim")
    table.add_column("Sync", justify="center")
    table.add_column("Status", justify="center")
    table.add_column("Path")

    for wt in worktrees:
        name = wt.name
        if wt.is_current:
            name = f"* {name}"
        if wt.is_main:
            name = f"{name} [blue](main)[/blue]"
        table.add_row(
            name,
            wt.branch,
            wt.last_commit.short_hash,
            _sync_label(wt),
            _status_label(wt),
            wt.short_path,
        )

    console.print()
    console.print(table)
    console.print()


@main.command("switch")
@click.argument("identifier")
@click.pass_context
def switch_cmd(ctx: click.Context, identifier: str) -> None:
    """Print the path of a worktree, for use with cd.

    Example:
        cd $(vecna switch feature/login)
    """
    reconciler = get_reconciler(ctx)

    try:
        entry = reconciler.touch(identifier)
    except VecnaError as e:
        raise click.ClickException(str(e)) from e

    if entry is None:
        raise click.ClickException(f"Worktree not found: {identifier}")
    click.echo(entry.path)


@main.command("info")
@click.argument("identifier")
@click.pass_context
def info_cmd(ctx: click.Context, identifier: str) -> None:
    """Show details about one worktree."""
    reconciler = get_reconciler(ctx)

    try:
        worktree = reconciler.get_worktree(identifier)
        usage = reconciler.disk_usage(identifier) if worktree.exists_on_disk else None
    except VecnaError as e:
        raise click.ClickException(str(e)) from e

    metadata = reconciler.project.get_worktree_state(worktree.name)
    commit = worktree.last_commit

    console.print()
    console.print(f"[bold]Name:[/bold]     {worktree.name}")
    console.print(f"[bold]Branch:[/bold]   {worktree.branch}")
    console.print(f"[bold]Path:[/bold]     {worktree.path}")
    console.print(f"[bold]Status:[/bold]   {_status_label(worktree)}")
    console.print(f"[bold]Sync:[/bold]     {_sync_label(worktree)}")
    if commit.hash:
        console.print(f"[bold]Commit:[/bold]   {commit.short_hash} {commit.message}")
    if metadata is not None:
        console.print(f"[bold]Created:[/bold]  {metadata.created_at:%Y-%m-%d %H:%M}")
        console.print(f"[bold]Accessed:[/bold] {metadata.last_accessed_at:%Y-%m-%d %H:%M}")
    if usage is not None:
        console.print(
            f"[bold]Size:[/bold]     {usage.human_size} "
            f"({usage.file_count} files, {usage.dir_count} directories)"
        )
    console.print()


@main.command("remove")
@click.argument("identifier")
@click.option(
    "-f",
    "--force",
    is_flag=True,
    help="Remove even with uncommitted changes and delete unmerged branches.",
)
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation prompts.")
@click.option("--keep-branch", is_flag=True, help="Keep the local branch.")
@click.pass_context
def remove_cmd(
    ctx: click.Context, identifier: str, force: bool, yes: bool, keep_branch: bool
) -> None:
    """Remove a worktree by name, branch, or path, and its local branch.

    Example:
        vecna remove feature/login
        vecna remove feature-login --keep-branch
    """
    reconciler = get_reconciler(ctx)

    if not yes:
        entry = reconciler.find_worktree(identifier)
        if entry is not None:
            console.print()
            console.print("[bold]About to remove worktree:[/bold]")
            console.print(f"  Branch: {entry.branch}")
            console.print(f"  Path:   {entry.path}")
            console.print()
            if not click.confirm("Are you sure you want to remove this worktree?"):
                console.print("[yellow]Aborted.[/yellow]")
                return

    delete_branch = not keep_branch
    try:
        try:
            result = reconciler.remove(identifier, force=force, delete_branch=delete_branch)
        except UncommittedChangesError as e:
            if yes or not click.confirm(f"{e}. Discard the changes and remove it anyway?"):
                raise
            result = reconciler.remove(
                identifier, force=True, delete_branch=delete_branch, force_branch=False
            )
    except VecnaError as e:
        raise click.ClickException(str(e)) from e

    console.print()
    if result.already_absent:
        console.print(f"[yellow]Nothing to remove: {identifier} is already gone.[/yellow]")
        return

    console.print(f"[bold green]Worktree removed:[/bold green] {result.path}")

    if result.branch_deleted:
        console.print(f"[green]Deleted branch:[/green] {result.branch}")
    elif result.branch_unmerged:
        console.print(f"[yellow]Branch '{result.branch}' is not fully merged.[/yellow]")
        if not yes and click.confirm("Force delete it?"):
            try:
                reconciler.delete_branch(result.branch, force=True)
            except VcsCommandFailed as e:
                raise click.ClickException(str(e)) from e
            console.print(f"[green]Deleted branch:[/green] {result.branch}")
    elif result.branch_error:
        console.print(f"[yellow]Warning: Could not delete branch: {result.branch_error}[/yellow]")


def _print_clean_report(report: CleanReport) -> None:
    for path in report.orphaned_worktrees:
        console.print(f"  [red]orphaned[/red]      {path} [dim](directory missing)[/dim]")
    for name in report.stale_metadata:
        console.print(f"  [yellow]stale[/yellow]         {name} [dim](metadata only)[/dim]")
    for directory in report.unregistered_directories:
        console.print(
            f"  [blue]unregistered[/blue]  {directory.path} [dim](left in place)[/dim]"
        )


@main.command("clean")
@click.option("--dry-run", is_flag=True, help="Only show what would be cleaned.")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation prompt.")
@click.pass_context
def clean_cmd(ctx: click.Context, dry_run: bool, yes: bool) -> None:
    """Prune worktrees whose directory is gone and stale metadata.

    Git checkouts under the worktree directory that git does not know about
    are reported but never deleted.

    Example:
        vecna clean --dry-run
        vecna clean -y
    """
    reconciler = get_reconciler(ctx)

    try:
        preview = reconciler.clean(dry_run=True)
    except VecnaError as e:
        raise click.ClickException(str(e)) from e

    if preview.issue_count == 0:
        console.print("[green]Everything is in sync.[/green]")
        return

    console.print()
    console.print(f"[bold]Found {preview.issue_count} issue(s):[/bold]")
    _print_clean_report(preview)
    console.print()

    if dry_run:
        console.print("[blue]This is a dry run. Nothing was changed.[/blue]")
        return

    if not preview.orphaned_worktrees and not preview.stale_metadata:
        return

    if not yes and not click.confirm("Clean up?"):
        console.print("[yellow]Aborted.[/yellow]")
        return

    report = reconciler.clean(dry_run=False)
    console.print("[bold green]Clean complete![/bold green]")
    console.print(f"  Pruned worktrees: {len(report.orphaned_worktrees) if report.pruned else 0}")
    console.print(f"  Pruned metadata:  {len(report.stale_metadata)}")
    if report.errors:
        console.print()
        console.print("[bold red]Errors:[/bold red]")
        for error in report.errors:
            console.print(f"  [red]{error}[/red]")


def _print_tidy_plan(plan: TidyPlan) -> None:
    if plan.worktrees_to_remove:
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Worktree", style="bold")
        table.add_column("Branch", style="green")
        table.add_column("Action")
        for removal in plan.worktrees_to_remove:
            action = "[red]reset + remove[/red]" if removal.will_reset else "remove"
            table.add_row(removal.name, removal.branch, action)
        console.print(table)

    if plan.branches_to_delete:
        console.print(f"[bold]Branches to delete ({len(plan.branches_to_delete)}):[/bold]")
        for deletion in plan.branches_to_delete:
            console.print(f"  {deletion.name} [dim]({deletion.reason})[/dim]")

    for skipped in plan.skipped:
        console.print(f"[yellow]Skipping {skipped.name}: {skipped.reason}[/yellow]")

    if plan.resets_required:
        console.print()
        console.print(
            f"[bold red]{len(plan.resets_required)} worktree(s) have uncommitted changes "
            f"that will be lost.[/bold red]"
        )


def _confirm_tidy(plan: TidyPlan) -> bool:
    console.print()
    _print_tidy_plan(plan)
    console.print()
    return click.confirm("Proceed?")


@main.command("tidy")
@click.option("--dry-run", is_flag=True, help="Only show what would be removed.")
@click.option("-f", "--force", is_flag=True, help="Skip confirmation prompt.")
@click.option("-k", "--keep", "keep_pattern", help="Glob of branches to keep, e.g. 'release/*'.")
@click.pass_context
def tidy_cmd(ctx: click.Context, dry_run: bool, force: bool, keep_pattern: Optional[str]) -> None:
    """Remove worktrees and branches whose remote branch was deleted.

    Updates the main branch and fetches with --prune first.

    Example:
        vecna tidy --dry-run
        vecna tidy --keep 'release/*'
    """
    reconciler = get_reconciler(ctx)

    try:
        report = reconciler.tidy(
            keep_pattern=keep_pattern,
            dry_run=dry_run,
            force=force,
            confirm=_confirm_tidy,
        )
    except VecnaError as e:
        raise click.ClickException(str(e)) from e

    if report.plan.is_empty:
        for skipped in report.plan.skipped:
            console.print(f"[yellow]Skipping {skipped.name}: {skipped.reason}[/yellow]")
        console.print("[green]Nothing to tidy.[/green]")
        return

    if report.dry_run:
        console.print()
        _print_tidy_plan(report.plan)
        console.print()
        console.print("[blue]This is a dry run. Nothing was changed.[/blue]")
        return

    if report.cancelled:
        console.print("[yellow]Aborted.[/yellow]")
        return

    if force:
        _print_tidy_plan(report.plan)

    console.print()
    console.print("[bold green]Tidy complete![/bold green]")
    console.print(f"  Removed worktrees: {len(report.removed_worktrees)}")
    console.print(f"  Deleted branches:  {len(report.deleted_branches)}")
    if report.errors:
        console.print()
        console.print("[bold red]Errors:[/bold red]")
        for error in report.errors:
            console.print(f"  [red]{error}[/red]")


@main.command("default")
@click.option("--set", "set_name", metavar="NAME", help="Make a registered project the default.")
@click.option("--clear", is_flag=True, help="Remove the default project.")
def default_cmd(set_name: Optional[str], clear: bool) -> None:
    """Show, set or clear the default project.

    The default project is used when the cwd is not inside a set-up repository.
    """
    store = ProjectStateStore()

    try:
        if set_name and clear:
            raise click.UsageError("Use either --set or --clear, not both.")
        if set_name:
            default = store.set_default_project(set_name)
            console.print(f"[green]Default project set to {default.name}[/green] ({default.path})")
        elif clear:
            if store.clear_default_project():
                console.print("[green]Default project cleared.[/green]")
            else:
                console.print("[yellow]No default project was set.[/yellow]")
        else:
            registry = store.read_registry()
            if registry.default_project is None:
                console.print("[yellow]No default project set.[/yellow]")
            else:
                console.print(
                    f"{registry.default_project.name} [dim]({registry.default_project.path})[/dim]"
                )
    except VecnaError as e:
        raise click.ClickException(str(e)) from e


@main.command("reset")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation prompt.")
def reset_cmd(yes: bool) -> None:
    """Delete vecna's global configuration.

    Project .vecna.json files and worktrees are left untouched.
    """
    store = ProjectStateStore()

    if not yes and not click.confirm(f"Delete {store.config_dir}?"):
        console.print("[yellow]Aborted.[/yellow]")
        return

    try:
        removed = store.reset()
    except OSError as e:
        raise click.ClickException(f"Could not remove {store.config_dir}: {e}") from e

    if removed:
        console.print("[green]Global configuration removed.[/green]")
    else:
        console.print("[yellow]Nothing to reset.[/yellow]")


if __name__ == "__main__":
    main()
