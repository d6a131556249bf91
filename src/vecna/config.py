"""
User settings for vecna.

Loads settings from TOML files in the following priority:
1. Path specified via --config flag
2. .vecnarc in current directory
3. .vecnarc.toml in current directory
4. <config dir>/settings.toml
5. ~/.vecnarc

The config dir defaults to ~/.config/vecna and can be moved with the
VECNA_CONFIG_DIR environment variable.
"""

import logging
import os
from pathlib import Path
from typing import Optional

import toml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

CONFIG_DIR_ENV = "VECNA_CONFIG_DIR"
SETTINGS_FILENAME = "settings.toml"


def get_config_dir() -> Path:
    """Get the per-user configuration directory."""
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "vecna"


class FetchSettings(BaseModel):
    """Configuration for background fetch throttling."""

    throttle_minutes: int = Field(
        default=15,
        ge=0,
        description="Minutes a fetch stays fresh before remote checks refetch",
    )


class TidySettings(BaseModel):
    """Configuration for bulk branch cleanup."""

    protected_branches: list[str] = Field(
        default_factory=lambda: ["main", "master", "develop", "staging"],
        description="Branches tidy never deletes",
    )


class WorktreeSettings(BaseModel):
    """Configuration for worktree operations."""

    default_base_directory: str = Field(
        default=".worktrees",
        description="Base directory written into new project configs",
    )
    enrichment_workers: int = Field(
        default=8,
        ge=1,
        description="Threads used to query worktree status in parallel",
    )


class GitSettings(BaseModel):
    """Configuration for git invocations."""

    timeout_seconds: int = Field(
        default=60,
        ge=1,
        description="Seconds before a git command is killed",
    )


class Settings(BaseModel):
    """Main settings model for vecna."""

    fetch: FetchSettings = Field(default_factory=FetchSettings)
    tidy: TidySettings = Field(default_factory=TidySettings)
    worktree: WorktreeSettings = Field(default_factory=WorktreeSettings)
    git: GitSettings = Field(default_factory=GitSettings)


def load_settings(
    config_path: Optional[str] = None, cwd: Optional[Path] = None
) -> Settings:
    """
    Load settings from file or use defaults.

    Args:
        config_path: Optional explicit path to a settings file.
        cwd: Directory searched for .vecnarc files. Defaults to the process cwd.

    Returns:
        Settings instance with loaded or default values.
    """
    base = cwd or Path.cwd()
    search_paths = [
        Path(config_path) if config_path else None,
        base / ".vecnarc",
        base / ".vecnarc.toml",
        get_config_dir() / SETTINGS_FILENAME,
        Path.home() / ".vecnarc",
    ]

    for path in search_paths:
        if path and path.exists():
            try:
                data = toml.load(path)
                return Settings(**data)
            except (toml.TomlDecodeError, OSError, ValueError) as e:
                logger.warning(f"Ignoring invalid settings file {path}: {e}")
                continue

    return Settings()


def save_settings(settings: Settings, path: Optional[Path] = None) -> Path:
    """
    Save settings to a TOML file.

    Args:
        settings: Settings to save.
        path: Destination. Defaults to <config dir>/settings.toml.

    Returns:
        The path written.
    """
    path = path or get_config_dir() / SETTINGS_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        toml.dump(settings.model_dump(), f)
    return path
