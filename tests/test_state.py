"""
Tests for ProjectStateStore.

Tests cover:
- Project document persistence with camelCase keys
- Global registry creation, upsert and default project
- Worktree metadata bookkeeping
"""

import json
from pathlib import Path

import pytest

from vecna.core.state import ProjectStateStore
from vecna.exceptions import ConfigNotFoundError, StateStoreError
from vecna.models.project_config import ProjectConfig


@pytest.fixture
def project(temp_directory: Path) -> ProjectConfig:
    root = temp_directory / "project"
    root.mkdir()
    return ProjectConfig(name="project", path=str(root))


class TestProjectDocument:
    def test_missing_document(self, store: ProjectStateStore, temp_directory: Path):
        assert store.read_project(temp_directory) is None

    def test_require_missing_document(self, store: ProjectStateStore, temp_directory: Path):
        with pytest.raises(ConfigNotFoundError, match="vecna setup"):
            store.require_project(temp_directory)

    def test_write_and_read(self, store: ProjectStateStore, project: ProjectConfig):
        project.main_branch = "develop"
        project.test_commands = {"unit": "pytest"}

        path = store.write_project(project)
        loaded = store.read_project(project.path)

        assert path == Path(project.path) / ".vecna.json"
        assert loaded == project

    def test_document_uses_camel_case(self, store: ProjectStateStore, project: ProjectConfig):
        store.write_project(project)

        raw = json.loads((Path(project.path) / ".vecna.json").read_text())

        assert raw["mainBranch"] == "main"
        assert raw["worktreePolicy"]["baseDirectory"] == ".worktrees"
        assert raw["worktreePolicy"]["filesToCopy"] == [".env", ".env.local"]
        assert "main_branch" not in raw

    def test_document_is_indented(self, store: ProjectStateStore, project: ProjectConfig):
        store.write_project(project)

        text = (Path(project.path) / ".vecna.json").read_text()

        assert text.startswith('{\n  "name"')
        assert text.endswith("}\n")

    def test_invalid_json(self, store: ProjectStateStore, project: ProjectConfig):
        (Path(project.path) / ".vecna.json").write_text("{broken")

        with pytest.raises(StateStoreError):
            store.read_project(project.path)

    def test_invalid_document(self, store: ProjectStateStore, project: ProjectConfig):
        (Path(project.path) / ".vecna.json").write_text('{"mainBranch": "main"}')

        with pytest.raises(StateStoreError, match="Invalid project config"):
            store.read_project(project.path)

    def test_unknown_keys_are_ignored(self, store: ProjectStateStore, project: ProjectConfig):
        (Path(project.path) / ".vecna.json").write_text(
            json.dumps({"name": "x", "path": project.path, "futureField": 1})
        )

        assert store.read_project(project.path).name == "x"


class TestRegistry:
    def test_created_on_first_read(self, store: ProjectStateStore, config_dir: Path):
        registry = store.read_registry()

        assert registry.projects == []
        assert json.loads((config_dir / "config.json").read_text()) == {"projects": []}

    def test_register_upserts_by_name(self, store: ProjectStateStore, project: ProjectConfig):
        store.register_project(project)
        project.main_branch = "trunk"
        store.register_project(project)

        registry = store.read_registry()

        assert len(registry.projects) == 1
        assert registry.projects[0].main_branch == "trunk"

    def test_registry_copy_has_no_worktree_state(
        self, store: ProjectStateStore, project: ProjectConfig
    ):
        store.record_worktree(project, "feature-a", "feature/a", Path(project.path) / "a")
        store.register_project(project)

        registered = store.read_registry().get_project("project")

        assert registered.worktree_state == {}
        assert "feature-a" in project.worktree_state

    def test_set_default_requires_registration(self, store: ProjectStateStore):
        with pytest.raises(ConfigNotFoundError, match="not registered"):
            store.set_default_project("unknown")

    def test_set_and_clear_default(self, store: ProjectStateStore, project: ProjectConfig):
        store.register_project(project)

        default = store.set_default_project("project")

        assert default.path == project.path
        assert store.read_registry().default_project.name == "project"
        assert store.clear_default_project() is True
        assert store.read_registry().default_project is None
        assert store.clear_default_project() is False

    def test_reset(self, store: ProjectStateStore, config_dir: Path):
        store.ensure_registry()

        assert store.reset() is True
        assert not config_dir.exists()
        assert store.reset() is False


class TestWorktreeMetadata:
    def test_record_and_touch(self, store: ProjectStateStore, project: ProjectConfig):
        metadata = store.record_worktree(
            project, "feature-a", "feature/a", Path(project.path) / ".worktrees" / "feature-a"
        )
        created = metadata.last_accessed_at

        touched = store.touch_worktree(project, "feature-a")

        assert touched.last_accessed_at >= created
        loaded = store.read_project(project.path)
        assert loaded.get_worktree_state("feature-a").branch == "feature/a"

    def test_touch_unknown(self, store: ProjectStateStore, project: ProjectConfig):
        assert store.touch_worktree(project, "nope") is None

    def test_remove_state(self, store: ProjectStateStore, project: ProjectConfig):
        store.record_worktree(project, "feature-a", "feature/a", Path(project.path) / "a")

        assert store.remove_worktree_state(project, "feature-a") is True
        assert store.remove_worktree_state(project, "feature-a") is False
        assert store.read_project(project.path).worktree_state == {}

    def test_prune_orphaned_states(self, store: ProjectStateStore, project: ProjectConfig):
        for name in ("keep", "gone-1", "gone-2"):
            store.record_worktree(project, name, name, Path(project.path) / name)

        preview = store.prune_orphaned_states(project, ["keep"], dry_run=True)
        assert sorted(preview) == ["gone-1", "gone-2"]
        assert len(project.worktree_state) == 3

        removed = store.prune_orphaned_states(project, ["keep"])
        assert sorted(removed) == ["gone-1", "gone-2"]
        assert list(store.read_project(project.path).worktree_state) == ["keep"]
