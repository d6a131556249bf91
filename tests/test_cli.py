"""Tests for the vecna command line interface."""

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from vecna.cli import main


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def in_repo(git_repo: Path, config_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run commands from inside git_repo with an isolated config dir."""
    monkeypatch.chdir(git_repo)
    return git_repo


@pytest.fixture
def set_up(runner: CliRunner, in_repo: Path) -> Path:
    result = runner.invoke(main, ["setup"])
    assert result.exit_code == 0, result.output
    return in_repo


class TestSetup:
    def test_setup(self, runner: CliRunner, in_repo: Path):
        result = runner.invoke(main, ["setup", "--name", "demo"])

        assert result.exit_code == 0, result.output
        assert "Project 'demo' is set up!" in result.output
        assert (in_repo / ".vecna.json").exists()

    def test_outside_repository(
        self, runner: CliRunner, temp_directory: Path, config_dir: Path, monkeypatch
    ):
        elsewhere = temp_directory / "elsewhere"
        elsewhere.mkdir()
        monkeypatch.chdir(elsewhere)

        result = runner.invoke(main, ["setup"])

        assert result.exit_code == 1
        assert "Not a git repository" in result.output


class TestWorktreeCommands:
    def test_requires_setup(self, runner: CliRunner, in_repo: Path):
        result = runner.invoke(main, ["list"])

        assert result.exit_code == 1
        assert "vecna setup" in result.output

    def test_start_list_switch_remove(self, runner: CliRunner, set_up: Path):
        expected = set_up / ".worktrees" / "feature-login"

        result = runner.invoke(main, ["start", "feature/login", "--no-setup"])
        assert result.exit_code == 0, result.output
        assert expected.is_dir()

        result = runner.invoke(main, ["list", "--json", "--no-fetch"])
        assert result.exit_code == 0, result.output
        listed = json.loads(result.stdout)
        assert [w["branch"] for w in listed] == ["main", "feature/login"]
        assert listed[0]["is_current"] is True

        result = runner.invoke(main, ["switch", "feature-login"])
        assert result.exit_code == 0, result.output
        assert result.stdout.strip() == str(expected)

        result = runner.invoke(main, ["remove", "feature/login", "-y"])
        assert result.exit_code == 0, result.output
        assert "Worktree removed" in result.output
        assert "Deleted branch" in result.output
        assert not expected.exists()

    def test_start_twice_fails(self, runner: CliRunner, set_up: Path):
        runner.invoke(main, ["start", "topic", "--no-setup"])

        result = runner.invoke(main, ["start", "topic", "--no-setup"])

        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_list_table(self, runner: CliRunner, set_up: Path):
        runner.invoke(main, ["start", "topic", "--no-setup"])

        result = runner.invoke(main, ["list", "--no-fetch"])

        assert result.exit_code == 0, result.output
        assert "topic" in result.output

    def test_switch_unknown(self, runner: CliRunner, set_up: Path):
        result = runner.invoke(main, ["switch", "nope"])

        assert result.exit_code == 1
        assert "Worktree not found" in result.output

    def test_info(self, runner: CliRunner, set_up: Path):
        runner.invoke(main, ["start", "topic", "--no-setup"])

        result = runner.invoke(main, ["info", "topic"])

        assert result.exit_code == 0, result.output
        assert "Initial commit" in result.output
        assert "files" in result.output

    def test_remove_dirty_declined(self, runner: CliRunner, set_up: Path):
        runner.invoke(main, ["start", "topic", "--no-setup"])
        (set_up / ".worktrees" / "topic" / "scratch.txt").write_text("wip\n")

        result = runner.invoke(main, ["remove", "topic"], input="y\nn\n")

        assert result.exit_code == 1
        assert "uncommitted changes" in result.output
        assert (set_up / ".worktrees" / "topic").exists()

    def test_remove_dirty_confirmed(self, runner: CliRunner, set_up: Path):
        runner.invoke(main, ["start", "topic", "--no-setup"])
        (set_up / ".worktrees" / "topic" / "scratch.txt").write_text("wip\n")

        result = runner.invoke(main, ["remove", "topic"], input="y\ny\n")

        assert result.exit_code == 0, result.output
        assert not (set_up / ".worktrees" / "topic").exists()

    def test_clean_dry_run(self, runner: CliRunner, set_up: Path):
        runner.invoke(main, ["start", "topic", "--no-setup"])
        stray = set_up / ".worktrees" / "stray"
        stray.mkdir()
        (stray / ".git").write_text("gitdir: /nowhere\n")

        result = runner.invoke(main, ["clean", "--dry-run"])

        assert result.exit_code == 0, result.output
        assert "stray" in result.output
        assert "dry run" in result.output
        assert stray.exists()


class TestTidy:
    def test_dry_run_lists_gone_branch(
        self, runner: CliRunner, set_up: Path, origin_repo: Path, run_git
    ):
        run_git(set_up, "branch", "feature-a")
        run_git(set_up, "push", "origin", "feature-a")
        run_git(origin_repo, "branch", "-D", "feature-a")

        result = runner.invoke(main, ["tidy", "--dry-run"])

        assert result.exit_code == 0, result.output
        assert "feature-a" in result.output
        assert "dry run" in result.output
        assert "feature-a" in run_git(set_up, "branch", "--format=%(refname:short)")

    def test_force_deletes_gone_branch(
        self, runner: CliRunner, set_up: Path, origin_repo: Path, run_git
    ):
        run_git(set_up, "branch", "feature-a")
        run_git(set_up, "push", "origin", "feature-a")
        run_git(origin_repo, "branch", "-D", "feature-a")

        result = runner.invoke(main, ["tidy", "--force"])

        assert result.exit_code == 0, result.output
        assert "Tidy complete" in result.output
        assert "feature-a" not in run_git(set_up, "branch", "--format=%(refname:short)")

    def test_nothing_to_tidy(self, runner: CliRunner, set_up: Path, origin_repo: Path):
        result = runner.invoke(main, ["tidy"])

        assert result.exit_code == 0, result.output
        assert "Nothing to tidy" in result.output

    def test_without_remote(self, runner: CliRunner, set_up: Path, run_git):
        run_git(set_up, "branch", "feature-x")

        result = runner.invoke(main, ["tidy", "--dry-run"])

        assert result.exit_code == 0, result.output
        assert "Nothing to tidy" in result.output
        assert "feature-x" in run_git(set_up, "branch", "--format=%(refname:short)")


class TestDefaultAndReset:
    def test_default_set_show_clear(self, runner: CliRunner, set_up: Path):
        result = runner.invoke(main, ["default", "--set", "test-repo"])
        assert result.exit_code == 0, result.output

        result = runner.invoke(main, ["default"])
        assert "test-repo" in result.output

        result = runner.invoke(main, ["default", "--clear"])
        assert "cleared" in result.output

    def test_default_unknown_project(self, runner: CliRunner, in_repo: Path):
        result = runner.invoke(main, ["default", "--set", "nope"])

        assert result.exit_code == 1
        assert "not registered" in result.output

    def test_reset(self, runner: CliRunner, set_up: Path, config_dir: Path):
        result = runner.invoke(main, ["reset", "-y"])

        assert result.exit_code == 0, result.output
        assert not config_dir.exists()
