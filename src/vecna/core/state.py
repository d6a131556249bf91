"""
Persistence of project state and the global project registry.

Two JSON documents are managed here:
- the per-project document (.vecna.json at the main checkout root) holding
  linter/test commands, the worktree policy and per-worktree metadata
- the per-user registry (<config dir>/config.json) listing known projects
  and the optional default project
"""

import json
import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from vecna.config import get_config_dir
from vecna.exceptions import ConfigNotFoundError, StateStoreError
from vecna.models.project_config import (
    DefaultProject,
    GlobalRegistry,
    ProjectConfig,
    WorktreeMetadata,
)
from vecna.utils.io import read_json, write_json

logger = logging.getLogger(__name__)


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


class ProjectStateStore:
    """Reads and writes vecna's JSON state documents."""

    LOCAL_CONFIG_FILENAME = ".vecna.json"
    GLOBAL_CONFIG_FILENAME = "config.json"

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = config_dir or get_config_dir()

    @property
    def registry_path(self) -> Path:
        return self.config_dir / self.GLOBAL_CONFIG_FILENAME

    def project_file(self, project_root: str | Path) -> Path:
        return Path(project_root) / self.LOCAL_CONFIG_FILENAME

    def _load(self, path: Path) -> Any:
        try:
            return read_json(path)
        except (OSError, json.JSONDecodeError) as e:
            raise StateStoreError(f"Could not read {path}: {e}") from e

    def _save(self, path: Path, model: BaseModel) -> None:
        try:
            write_json(path, _dump(model))
        except OSError as e:
            raise StateStoreError(f"Could not write {path}: {e}") from e

    # Project documents

    def read_project(self, project_root: str | Path) -> Optional[ProjectConfig]:
        """
        Load the project document at project_root.

        Returns:
            The ProjectConfig, or None when no document exists yet.

        Raises:
            StateStoreError: If the document exists but is unreadable or invalid.
        """
        path = self.project_file(project_root)
        if not path.exists():
            return None
        try:
            return ProjectConfig.model_validate(self._load(path))
        except ValidationError as e:
            raise StateStoreError(f"Invalid project config {path}: {e}") from e

    def require_project(self, project_root: str | Path) -> ProjectConfig:
        config = self.read_project(project_root)
        if config is None:
            raise ConfigNotFoundError(
                f"No {self.LOCAL_CONFIG_FILENAME} found in {project_root}. "
                f"Run 'vecna setup' from your project root."
            )
        return config

    def write_project(self, config: ProjectConfig) -> Path:
        path = self.project_file(config.path)
        self._save(path, config)
        logger.debug(f"Wrote project config: {path}")
        return path

    # Global registry

    def ensure_registry(self) -> None:
        """Create the registry as {"projects": []} if it does not exist."""
        if not self.registry_path.exists():
            self._save(self.registry_path, GlobalRegistry())

    def read_registry(self) -> GlobalRegistry:
        self.ensure_registry()
        try:
            return GlobalRegistry.model_validate(self._load(self.registry_path))
        except ValidationError as e:
            raise StateStoreError(f"Invalid registry {self.registry_path}: {e}") from e

    def write_registry(self, registry: GlobalRegistry) -> None:
        self._save(self.registry_path, registry)

    def register_project(self, config: ProjectConfig) -> GlobalRegistry:
        """Upsert a project into the registry by name.

        Worktree metadata lives only in the project document, so the registry
        copy is stored without it.
        """
        registry = self.read_registry()
        registry.upsert_project(config.model_copy(update={"worktree_state": {}}))
        self.write_registry(registry)
        return registry

    def set_default_project(self, name: str) -> DefaultProject:
        registry = self.read_registry()
        project = registry.get_project(name)
        if project is None:
            raise ConfigNotFoundError(f"Project '{name}' is not registered. Run 'vecna setup' in it first.")
        registry.default_project = DefaultProject(name=project.name, path=project.path)
        self.write_registry(registry)
        return registry.default_project

    def clear_default_project(self) -> bool:
        """Remove the default project. Returns True if one was set."""
        registry = self.read_registry()
        if registry.default_project is None:
            return False
        registry.default_project = None
        self.write_registry(registry)
        return True

    def reset(self) -> bool:
        """Delete the whole configuration directory. Returns True if it existed."""
        if not self.config_dir.exists():
            return False
        shutil.rmtree(self.config_dir)
        logger.info(f"Removed configuration directory: {self.config_dir}")
        return True

    # Worktree metadata

    def record_worktree(
        self, project: ProjectConfig, name: str, branch: str, path: Path
    ) -> WorktreeMetadata:
        now = datetime.now()
        metadata = WorktreeMetadata(
            branch=branch, path=str(path), created_at=now, last_accessed_at=now
        )
        project.set_worktree_state(name, metadata)
        self.write_project(project)
        return metadata

    def touch_worktree(self, project: ProjectConfig, name: str) -> Optional[WorktreeMetadata]:
        """Update last_accessed_at for a tracked worktree."""
        metadata = project.get_worktree_state(name)
        if metadata is None:
            return None
        metadata.last_accessed_at = datetime.now()
        self.write_project(project)
        return metadata

    def remove_worktree_state(self, project: ProjectConfig, name: str) -> bool:
        removed = project.remove_worktree_state(name)
        if removed:
            self.write_project(project)
        return removed

    def prune_orphaned_states(
        self, project: ProjectConfig, valid_names: list[str], dry_run: bool = False
    ) -> list[str]:
        """
        Remove metadata entries for worktrees that no longer exist.

        Args:
            project: Project whose metadata is pruned.
            valid_names: Names of worktrees currently in the git registry.
            dry_run: Only report what would be removed.

        Returns:
            Names of the removed (or removable) entries.
        """
        orphaned = [name for name in project.worktree_state if name not in valid_names]
        if orphaned and not dry_run:
            for name in orphaned:
                project.remove_worktree_state(name)
            self.write_project(project)
        return orphaned
