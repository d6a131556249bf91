"""Environment setup for new worktrees.

This module copies untracked config files from the main checkout, installs
dependencies and runs the project's post-create scripts. Each step is
best-effort: a failed step is reported, never allowed to undo the worktree.
"""

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Optional

from vecna.exceptions import VecnaError
from vecna.models.project_config import PackageManager, ProjectConfig
from vecna.models.worktree import EnvironmentReport

logger = logging.getLogger(__name__)


class EnvironmentSetupError(VecnaError):
    """Raised when environment setup fails."""


class DependencyInstallError(EnvironmentSetupError):
    """Raised when dependency installation fails."""


class PostCreateScriptError(EnvironmentSetupError):
    """Raised when a post-create script exits with a non-zero status."""


class EnvironmentSetup:
    """Prepares a freshly created worktree according to the project's policy.

    Example:
        >>> setup = EnvironmentSetup(project_config)
        >>> report = setup.prepare(Path("/repo/.worktrees/feature-login"))
        >>> report.dependencies_installed
        True
    """

    # Lock files checked in order; the first match decides the package manager
    LOCK_FILE_MARKERS = [
        ("uv.lock", PackageManager.UV),
        ("poetry.lock", PackageManager.POETRY),
        ("Pipfile.lock", PackageManager.PIPENV),
        ("bun.lockb", PackageManager.BUN),
        ("bun.lock", PackageManager.BUN),
        ("pnpm-lock.yaml", PackageManager.PNPM),
        ("yarn.lock", PackageManager.YARN),
        ("package-lock.json", PackageManager.NPM),
        ("Gemfile.lock", PackageManager.BUNDLER),
        ("Cargo.lock", PackageManager.CARGO),
        ("go.sum", PackageManager.GO),
    ]

    # Manifests used when no lock file is present
    MANIFEST_MARKERS = [
        ("package.json", PackageManager.NPM),
        ("requirements.txt", PackageManager.PIP),
        ("Pipfile", PackageManager.PIPENV),
        ("Gemfile", PackageManager.BUNDLER),
        ("Cargo.toml", PackageManager.CARGO),
        ("go.mod", PackageManager.GO),
    ]

    INSTALL_COMMANDS = {
        PackageManager.UV: ["uv", "sync"],
        PackageManager.PIP: ["pip", "install", "-r", "requirements.txt"],
        PackageManager.POETRY: ["poetry", "install"],
        PackageManager.PIPENV: ["pipenv", "install"],
        PackageManager.NPM: ["npm", "install"],
        PackageManager.YARN: ["yarn", "install"],
        PackageManager.PNPM: ["pnpm", "install"],
        PackageManager.BUN: ["bun", "install"],
        PackageManager.BUNDLER: ["bundle", "install"],
        PackageManager.CARGO: ["cargo", "build"],
        PackageManager.GO: ["go", "mod", "download"],
    }

    def __init__(self, project: ProjectConfig, timeout: int = 600) -> None:
        self.project = project
        self.policy = project.worktree_policy
        self.timeout = timeout

    def detect_package_manager(self, worktree_path: Path) -> PackageManager:
        """Pick the package manager from the override, lock files, then manifests."""
        if self.policy.package_manager_override is not None:
            return self.policy.package_manager_override

        for markers in (self.LOCK_FILE_MARKERS, self.MANIFEST_MARKERS):
            for filename, manager in markers:
                if (worktree_path / filename).exists():
                    logger.debug(f"Found marker file: {filename}")
                    return manager

        return PackageManager.UNKNOWN

    def copy_files(
        self,
        worktree_path: Path,
        source_path: Optional[Path] = None,
        files: Optional[list[str]] = None,
    ) -> list[Path]:
        """
        Copy untracked files such as .env from the main checkout.

        Files that are missing in the source or already present in the worktree
        are skipped.

        Returns:
            Paths of the copied files.
        """
        source_path = Path(source_path or self.project.path)
        files = self.policy.files_to_copy if files is None else files
        copied = []

        for relative in files:
            source_file = source_path / relative
            target_file = worktree_path / relative

            if not source_file.is_file() or target_file.exists():
                continue
            try:
                target_file.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source_file, target_file)
                copied.append(target_file)
                logger.debug(f"Copied config file: {relative}")
            except OSError as e:
                logger.warning(f"Could not copy {relative}: {e}")

        return copied

    def install_dependencies(
        self, worktree_path: Path, manager: PackageManager
    ) -> subprocess.CompletedProcess:
        """
        Install dependencies in the worktree.

        Raises:
            DependencyInstallError: If the manager is unknown, missing, or fails.
        """
        install_cmd = self.INSTALL_COMMANDS.get(manager)
        if not install_cmd:
            raise DependencyInstallError(f"Unknown package manager: {manager.value}")

        if shutil.which(install_cmd[0]) is None:
            raise DependencyInstallError(
                f"Command not found: {install_cmd[0]}. "
                f"Please ensure {manager.value} is installed."
            )

        logger.info(f"Installing dependencies with {manager.value}: {' '.join(install_cmd)}")

        try:
            result = subprocess.run(
                install_cmd,
                cwd=worktree_path,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=self._install_environment(),
            )
        except subprocess.TimeoutExpired as e:
            raise DependencyInstallError(
                f"Installation timed out after {self.timeout} seconds"
            ) from e
        except OSError as e:
            raise DependencyInstallError(f"Failed to run install command: {e}") from e

        if result.returncode != 0:
            raise DependencyInstallError(
                f"Installation failed with exit code {result.returncode}: {result.stderr}"
            )
        return result

    def run_post_create_script(self, worktree_path: Path, script: str) -> None:
        """
        Run one post-create shell command inside the worktree.

        Raises:
            PostCreateScriptError: If the command fails or times out.
        """
        logger.info(f"Running post-create script: {script}")
        try:
            result = subprocess.run(
                script,
                shell=True,
                cwd=worktree_path,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise PostCreateScriptError(f"'{script}' timed out") from e

        if result.returncode != 0:
            raise PostCreateScriptError(
                f"'{script}' exited with code {result.returncode}: {result.stderr.strip()}"
            )

    def prepare(self, worktree_path: Path, install: bool = True) -> EnvironmentReport:
        """
        Run every setup step for a new worktree and report the outcome.

        Args:
            worktree_path: The new worktree.
            install: Set False to skip dependency installation for this run.
        """
        worktree_path = Path(worktree_path)
        report = EnvironmentReport()

        report.copied_files = self.copy_files(worktree_path)

        if install and self.policy.auto_install_dependencies:
            manager = self.detect_package_manager(worktree_path)
            if manager != PackageManager.UNKNOWN:
                report.package_manager = manager.value
                try:
                    self.install_dependencies(worktree_path, manager)
                    report.dependencies_installed = True
                except DependencyInstallError as e:
                    logger.warning(f"Could not install dependencies: {e}")
                    report.warnings.append(str(e))

        for script in self.policy.post_create_scripts:
            try:
                self.run_post_create_script(worktree_path, script)
                report.scripts_run.append(script)
            except (PostCreateScriptError, OSError) as e:
                logger.warning(f"Post-create script failed: {e}")
                report.warnings.append(str(e))

        return report

    def _install_environment(self) -> dict[str, str]:
        env = os.environ.copy()
        # An activated virtualenv from the main checkout must not leak into the worktree
        env.pop("VIRTUAL_ENV", None)
        return env


__all__ = [
    "EnvironmentSetup",
    "EnvironmentSetupError",
    "DependencyInstallError",
    "PostCreateScriptError",
]
