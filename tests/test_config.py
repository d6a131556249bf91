"""Tests for the TOML settings layer."""

from pathlib import Path

import pytest

from vecna.config import Settings, get_config_dir, load_settings, save_settings


class TestConfigDir:
    def test_env_override(self, monkeypatch: pytest.MonkeyPatch, temp_directory: Path):
        monkeypatch.setenv("VECNA_CONFIG_DIR", str(temp_directory / "custom"))

        assert get_config_dir() == temp_directory / "custom"

    def test_default(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("VECNA_CONFIG_DIR", raising=False)

        assert get_config_dir() == Path.home() / ".config" / "vecna"


class TestLoadSettings:
    def test_defaults(self, config_dir: Path, temp_directory: Path):
        settings = load_settings(cwd=temp_directory)

        assert settings.fetch.throttle_minutes == 15
        assert settings.tidy.protected_branches == ["main", "master", "develop", "staging"]
        assert settings.worktree.default_base_directory == ".worktrees"
        assert settings.worktree.enrichment_workers == 8
        assert settings.git.timeout_seconds == 60

    def test_vecnarc_in_cwd(self, config_dir: Path, temp_directory: Path):
        (temp_directory / ".vecnarc").write_text(
            '[fetch]\nthrottle_minutes = 5\n\n[tidy]\nprotected_branches = ["trunk"]\n'
        )

        settings = load_settings(cwd=temp_directory)

        assert settings.fetch.throttle_minutes == 5
        assert settings.tidy.protected_branches == ["trunk"]
        assert settings.git.timeout_seconds == 60

    def test_explicit_path_wins(self, config_dir: Path, temp_directory: Path):
        (temp_directory / ".vecnarc").write_text("[git]\ntimeout_seconds = 10\n")
        explicit = temp_directory / "explicit.toml"
        explicit.write_text("[git]\ntimeout_seconds = 99\n")

        settings = load_settings(str(explicit), cwd=temp_directory)

        assert settings.git.timeout_seconds == 99

    def test_config_dir_settings(self, config_dir: Path, temp_directory: Path):
        config_dir.mkdir(parents=True)
        (config_dir / "settings.toml").write_text("[worktree]\nenrichment_workers = 2\n")

        settings = load_settings(cwd=temp_directory)

        assert settings.worktree.enrichment_workers == 2

    def test_invalid_file_is_skipped(self, config_dir: Path, temp_directory: Path):
        (temp_directory / ".vecnarc").write_text("this is [not toml")
        (temp_directory / ".vecnarc.toml").write_text("[fetch]\nthrottle_minutes = 3\n")

        settings = load_settings(cwd=temp_directory)

        assert settings.fetch.throttle_minutes == 3

    def test_invalid_values_are_skipped(self, config_dir: Path, temp_directory: Path):
        (temp_directory / ".vecnarc").write_text("[worktree]\nenrichment_workers = 0\n")

        settings = load_settings(cwd=temp_directory)

        assert settings.worktree.enrichment_workers == 8


class TestSaveSettings:
    def test_round_trip(self, config_dir: Path, temp_directory: Path):
        settings = Settings()
        settings.fetch.throttle_minutes = 30

        path = save_settings(settings)

        assert path == config_dir / "settings.toml"
        assert load_settings(cwd=temp_directory).fetch.throttle_minutes == 30
