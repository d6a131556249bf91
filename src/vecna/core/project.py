"""Project setup and resolution.

A project is the main checkout of a repository plus its .vecna.json document.
Resolution never reads the process working directory directly: the caller's
directory travels in a ResolutionContext.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from vecna.config import Settings
from vecna.core.git import GitGateway
from vecna.core.state import ProjectStateStore
from vecna.exceptions import (
    ConfigNotFoundError,
    NotARepositoryError,
    NotMainRepositoryError,
)
from vecna.models.project_config import ProjectConfig, WorktreePolicy

logger = logging.getLogger(__name__)

IGNORE_FILES = (".gitignore", ".cursorignore")


@dataclass
class ResolutionContext:
    """Where the caller stands, and the repository handle opened from there."""

    cwd: Path
    gateway: Optional[GitGateway] = field(default=None)
    git_timeout: int = 60

    @classmethod
    def from_cwd(cls, cwd: Path, git_timeout: int = 60) -> "ResolutionContext":
        """Build a context, opening the repository around cwd when there is one."""
        try:
            gateway: Optional[GitGateway] = GitGateway(cwd, timeout=git_timeout)
        except NotARepositoryError:
            gateway = None
        return cls(cwd=Path(cwd), gateway=gateway, git_timeout=git_timeout)


def append_to_ignore_file(path: Path, entry: str) -> bool:
    """Append entry as its own line unless present. Returns True if written."""
    content = path.read_text() if path.exists() else ""

    if entry in content.split("\n"):
        return False

    if content and not content.endswith("\n"):
        content += "\n"
    content += entry + "\n"
    path.write_text(content)
    return True


def setup_project(
    context: ResolutionContext,
    store: ProjectStateStore,
    settings: Optional[Settings] = None,
    name: Optional[str] = None,
    main_branch: Optional[str] = None,
) -> ProjectConfig:
    """
    Register the repository around the caller as a vecna project.

    Creates the worktree base directory, ignores it in git and Cursor, writes
    .vecna.json (keeping any existing worktree state) and upserts the project
    into the global registry.

    Raises:
        NotARepositoryError: If the cwd is not inside a repository.
        NotMainRepositoryError: If the repository root is a linked worktree.
    """
    settings = settings or Settings()
    root = GitGateway.find_repository_root(context.cwd)

    if not GitGateway.is_main_repository(root):
        raise NotMainRepositoryError(
            "Setup must be run from the main repository directory, not a worktree"
        )

    existing = store.read_project(root)
    if existing is not None:
        config = existing
        config.path = str(root)
        if name:
            config.name = name
        if main_branch:
            config.main_branch = main_branch
    else:
        gateway = context.gateway or GitGateway(root, timeout=context.git_timeout)
        config = ProjectConfig(
            name=name or root.name,
            path=str(root),
            main_branch=main_branch or _guess_main_branch(gateway),
            worktree_policy=WorktreePolicy(
                base_directory=settings.worktree.default_base_directory
            ),
        )

    base_dir = Path(config.worktree_policy.base_directory)
    worktrees_dir = base_dir if base_dir.is_absolute() else root / base_dir
    worktrees_dir.mkdir(parents=True, exist_ok=True)

    if not base_dir.is_absolute():
        for ignore_name in IGNORE_FILES:
            if append_to_ignore_file(root / ignore_name, base_dir.as_posix()):
                logger.info(f"Added {base_dir.as_posix()} to {ignore_name}")

    store.write_project(config)
    store.register_project(config)
    return config


def _guess_main_branch(gateway: GitGateway) -> str:
    branches = gateway.local_branches()
    for candidate in ("main", "master"):
        if candidate in branches:
            return candidate
    return gateway.current_branch() or "main"


def resolve_project(context: ResolutionContext, store: ProjectStateStore) -> ProjectConfig:
    """
    Find the project the caller is working on.

    The main checkout of the repository around the cwd wins when it has a
    .vecna.json; otherwise the registry's default project is used.

    Raises:
        ConfigNotFoundError: If neither source yields a project.
    """
    if context.gateway is not None:
        main_root = context.gateway.main_repository_root()
        config = store.read_project(main_root)
        if config is not None:
            return config

    registry = store.read_registry()
    if registry.default_project is not None:
        config = store.read_project(registry.default_project.path)
        if config is not None:
            logger.debug(f"Using default project: {registry.default_project.name}")
            return config
        logger.warning(
            f"Default project '{registry.default_project.name}' has no "
            f"{store.LOCAL_CONFIG_FILENAME} at {registry.default_project.path}"
        )

    raise ConfigNotFoundError(
        "No project context found. Run 'vecna setup' or set a default project."
    )
