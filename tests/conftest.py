"""
Pytest configuration and shared fixtures for vecna tests.
"""

import json
import subprocess
import tempfile
from pathlib import Path
from typing import Callable, Generator
from unittest.mock import MagicMock

import pytest

from vecna.config import Settings
from vecna.core.fetch_throttle import FetchThrottle
from vecna.core.git import GitGateway
from vecna.core.project import ResolutionContext
from vecna.core.reconciler import WorktreeReconciler
from vecna.core.state import ProjectStateStore
from vecna.models.project_config import ProjectConfig
from vecna.models.worktree import WorktreeEntry


def _git(cwd: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout


@pytest.fixture
def run_git() -> Callable[..., str]:
    """Run a git command in a directory and return its stdout."""
    return _git


@pytest.fixture
def temp_directory() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir).resolve()


@pytest.fixture
def config_dir(temp_directory: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point vecna's global configuration at a temporary directory."""
    path = temp_directory / "vecna-config"
    monkeypatch.setenv("VECNA_CONFIG_DIR", str(path))
    return path


@pytest.fixture
def store(config_dir: Path) -> ProjectStateStore:
    return ProjectStateStore(config_dir)


@pytest.fixture
def git_repo(temp_directory: Path) -> Generator[Path, None, None]:
    """Create a temporary git repository on branch main with one commit."""
    repo_path = temp_directory / "test-repo"
    repo_path.mkdir()

    _git(repo_path, "init")
    _git(repo_path, "symbolic-ref", "HEAD", "refs/heads/main")
    _git(repo_path, "config", "user.email", "test@example.com")
    _git(repo_path, "config", "user.name", "Test User")
    _git(repo_path, "config", "commit.gpgsign", "false")

    (repo_path / "README.md").write_text("# Test Repository\n")
    _git(repo_path, "add", ".")
    _git(repo_path, "commit", "-m", "Initial commit")

    yield repo_path


@pytest.fixture
def origin_repo(git_repo: Path, temp_directory: Path) -> Path:
    """Add a bare "origin" remote to git_repo and push main to it."""
    origin_path = temp_directory / "origin.git"
    _git(temp_directory, "init", "--bare", str(origin_path))
    _git(git_repo, "remote", "add", "origin", str(origin_path))
    _git(git_repo, "push", "-u", "origin", "main")
    return origin_path


@pytest.fixture
def project_with_env(temp_directory: Path) -> Path:
    """Create a project with .env file."""
    project_dir = temp_directory / "project-with-env"
    project_dir.mkdir()

    (project_dir / "pyproject.toml").write_text("[project]\nname = 'test'\n")
    (project_dir / ".env").write_text("SECRET_KEY=test123\nDATABASE_URL=postgres://localhost/db\n")

    return project_dir


@pytest.fixture
def node_npm_project_dir(temp_directory: Path) -> Path:
    """Create a mock Node.js project with npm."""
    project_dir = temp_directory / "node-npm-project"
    project_dir.mkdir()

    package_json = {
        "name": "test-project",
        "version": "1.0.0",
        "dependencies": {}
    }
    (project_dir / "package.json").write_text(json.dumps(package_json, indent=2))
    (project_dir / "package-lock.json").write_text("{}")

    return project_dir


# Engine fixtures backed by a mocked gateway


@pytest.fixture
def project_root(temp_directory: Path) -> Path:
    """A directory that looks like a main checkout (it has a .git directory)."""
    root = temp_directory / "repo"
    (root / ".git").mkdir(parents=True)
    return root


@pytest.fixture
def main_entry(project_root: Path) -> WorktreeEntry:
    return WorktreeEntry(path=project_root, branch="main", head="a" * 40, is_main=True)


@pytest.fixture
def mock_gateway(project_root: Path, main_entry: WorktreeEntry) -> MagicMock:
    """Create a mock GitGateway with a registry holding only the main checkout."""
    gateway = MagicMock(spec=GitGateway)
    gateway.root = project_root
    gateway.list_worktrees.return_value = [main_entry]
    gateway.has_remotes.return_value = True
    gateway.local_branches.return_value = ["main"]
    gateway.remote_branch_set.return_value = frozenset({"main"})
    gateway.branch_exists.return_value = False
    gateway.current_branch.return_value = "main"
    gateway.has_uncommitted_changes.return_value = False
    gateway.ahead_behind.return_value = (0, 0)
    return gateway


@pytest.fixture
def project_config(project_root: Path) -> ProjectConfig:
    return ProjectConfig(name="repo", path=str(project_root))


@pytest.fixture
def reconciler(
    mock_gateway: MagicMock,
    store: ProjectStateStore,
    project_config: ProjectConfig,
    project_root: Path,
    temp_directory: Path,
) -> WorktreeReconciler:
    """A reconciler wired to the mock gateway, with the caller in the main checkout."""
    return WorktreeReconciler(
        mock_gateway,
        store,
        project_config,
        ResolutionContext(cwd=project_root),
        throttle=FetchThrottle(cache_dir=temp_directory / "cache"),
        settings=Settings(),
    )
