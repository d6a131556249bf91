"""Pydantic models for the persisted project state and global registry.

Documents are stored with camelCase keys; Python code uses snake_case.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PackageManager(str, Enum):
    """Supported package managers for dependency installation."""

    # Python
    UV = "uv"
    PIP = "pip"
    POETRY = "poetry"
    PIPENV = "pipenv"

    # Node.js
    NPM = "npm"
    YARN = "yarn"
    PNPM = "pnpm"
    BUN = "bun"

    # Ruby
    BUNDLER = "bundler"

    # Rust
    CARGO = "cargo"

    # Go
    GO = "go"

    UNKNOWN = "unknown"


class StateModel(BaseModel):
    """Base for models persisted as camelCase JSON."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class WorktreePolicy(StateModel):
    """How new worktrees are laid out and prepared."""

    base_directory: str = Field(
        default=".worktrees",
        description="Directory holding worktrees (relative to the project root)",
    )
    files_to_copy: list[str] = Field(
        default_factory=lambda: [".env", ".env.local"],
        description="Untracked files copied from the main checkout",
    )
    auto_install_dependencies: bool = Field(default=True)
    package_manager_override: Optional[PackageManager] = Field(
        default=None,
        description="Package manager to use instead of lock-file detection",
    )
    post_create_scripts: list[str] = Field(
        default_factory=list,
        description="Shell commands run inside a new worktree",
    )
    editor_preference: Optional[str] = Field(default=None)


class WorktreeMetadata(StateModel):
    """Descriptive record of a worktree; never authoritative over git."""

    branch: str
    path: str
    created_at: datetime = Field(default_factory=datetime.now)
    last_accessed_at: datetime = Field(default_factory=datetime.now)
    custom_config: Optional[dict[str, Any]] = None


class ProjectConfig(StateModel):
    """Per-project state document stored at the main checkout root."""

    name: str
    path: str = Field(description="Root of the main checkout")
    main_branch: str = Field(default="main")
    linter_commands: dict[str, str] = Field(default_factory=dict)
    test_commands: dict[str, str] = Field(default_factory=dict)
    worktree_policy: WorktreePolicy = Field(default_factory=WorktreePolicy)
    worktree_state: dict[str, WorktreeMetadata] = Field(default_factory=dict)

    def get_worktree_state(self, name: str) -> Optional[WorktreeMetadata]:
        return self.worktree_state.get(name)

    def set_worktree_state(self, name: str, metadata: WorktreeMetadata) -> None:
        self.worktree_state[name] = metadata

    def remove_worktree_state(self, name: str) -> bool:
        """Remove metadata for a worktree. Returns True if removed."""
        if name in self.worktree_state:
            del self.worktree_state[name]
            return True
        return False


class DefaultProject(StateModel):
    """Project used when the cwd is not inside a configured repository."""

    name: str
    path: str


class GlobalRegistry(StateModel):
    """Cross-project registry stored once per user."""

    projects: list[ProjectConfig] = Field(default_factory=list)
    default_project: Optional[DefaultProject] = None

    def get_project(self, name: str) -> Optional[ProjectConfig]:
        for project in self.projects:
            if project.name == name:
                return project
        return None

    def upsert_project(self, project: ProjectConfig) -> None:
        """Insert a project, or merge it over an existing one with the same name."""
        for index, existing in enumerate(self.projects):
            if existing.name == project.name:
                merged = existing.model_dump()
                merged.update(project.model_dump(exclude_unset=True))
                self.projects[index] = ProjectConfig.model_validate(merged)
                return
        self.projects.append(project)
