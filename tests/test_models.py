"""Unit tests for Pydantic models."""

import json
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from thingstm.colors import generate_color, initial_tags
from thingstm.models import (
    AppBackup, AppSettings, PartialBackup, Priority, Scope, Task, TaskTemplate,
    ThemeMode, ViewContext, ViewMode, generate_id,
)
from thingstm.version import APP_SCHEMA_VERSION


class TestTask:
    """Test Task model."""

    def test_defaults(self):
        """A task only needs an id and a title."""
        task = Task(id="t1", title="Write report")
        assert task.completed is False
        assert task.priority == Priority.MEDIUM
        assert task.tags == []
        assert task.subtask_ids == []
        assert task.time_spent == 0
        assert task.is_top_level
        assert not task.is_running
        assert task.created_at.tzinfo is not None

    def test_camel_case_wire_format(self):
        """Persisted keys are camelCase and absent optionals are omitted."""
        task = Task(id="t1", title="A", parent_id="p1", time_spent=5)
        data = task.to_dict()
        assert data["parentId"] == "p1"
        assert data["subtaskIds"] == []
        assert data["timeSpent"] == 5
        assert data["priority"] == "medium"
        assert "dueDate" not in data
        assert "timerStartedAt" not in data

    def test_accepts_aliases_and_field_names(self):
        """Both camelCase keys and snake_case names validate."""
        by_alias = Task.model_validate({"id": "t1", "title": "A", "subtaskIds": ["c"], "timeSpent": 3})
        by_name = Task(id="t1", title="A", subtask_ids=["c"], time_spent=3)
        assert by_alias.subtask_ids == by_name.subtask_ids == ["c"]

    def test_unknown_fields_ignored(self):
        """Fields written by newer versions are dropped."""
        task = Task.model_validate({"id": "t1", "title": "A", "color": "red"})
        assert not hasattr(task, "color")

    def test_time_spent_floored_and_non_negative(self):
        """Fractional seconds are floored; negative totals are rejected."""
        assert Task(id="t1", title="A", time_spent=12.9).time_spent == 12
        with pytest.raises(ValidationError):
            Task(id="t1", title="A", time_spent=-1)

    def test_naive_datetimes_read_as_utc(self):
        """Timestamps without an offset are taken as UTC."""
        task = Task.model_validate({"id": "t1", "title": "A", "dueDate": "2024-03-01T10:00:00"})
        assert task.due_date == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)

    def test_invalid_priority(self):
        """Unknown priorities are rejected."""
        with pytest.raises(ValidationError):
            Task.model_validate({"id": "t1", "title": "A", "priority": "urgent"})


class TestSnapshots:
    """Test AppBackup and PartialBackup models."""

    def test_backup_defaults(self):
        """An empty snapshot carries default settings and the current schema version."""
        backup = AppBackup()
        assert backup.version == APP_SCHEMA_VERSION
        assert backup.settings == AppSettings()

    def test_json_round_trip(self):
        """A snapshot survives serialization unchanged."""
        backup = AppBackup(
            tasks=[Task(id="t1", title="A", tags=["tag-1"], priority=Priority.HIGH)],
            tags=initial_tags(),
            templates=[TaskTemplate(id="tp", name="Weekly", subtasks=[{"title": "Plan"}])],
        )
        restored = AppBackup.from_json(backup.to_json())
        assert restored == backup

    def test_yaml_round_trip(self):
        """The YAML rendering loads back to the same snapshot."""
        backup = AppBackup(tasks=[Task(id="t1", title="A")])
        assert AppBackup.from_yaml(backup.to_yaml()) == backup

    def test_settings_wire_keys(self):
        """Settings use the camelCase keys of the snapshot format."""
        data = json.loads(AppBackup().to_json())
        assert set(data) == {"tasks", "tags", "projects", "templates", "settings", "version"}
        assert data["settings"] == {
            "userName": "User",
            "defaultPriority": "medium",
            "enableSounds": True,
            "autoArchive": False,
            "language": "zh",
            "theme": "light",
        }

    def test_partial_backup_keeps_absent_fields_none(self):
        """Only the fields present in a payload are set."""
        partial = PartialBackup.model_validate({"tasks": []})
        assert partial.tasks == []
        assert partial.projects is None
        assert partial.settings is None
        assert not partial.is_empty()

    def test_partial_backup_empty(self):
        """A payload without any collection counts as empty."""
        assert PartialBackup.model_validate({"version": "1.0.0"}).is_empty()


class TestViewContext:
    """Test the immutable view selection."""

    def test_frozen(self):
        """Views are replaced, never mutated."""
        view = ViewContext()
        with pytest.raises(ValidationError):
            view.scope = Scope.TODAY

    def test_scope_clears_selection(self):
        """Picking a scope drops tag and project selection and leaves the templates view."""
        view = ViewContext(selected_tag="tag-1", selected_project_id="p1", active_view=ViewMode.TEMPLATES)
        view = view.with_scope(Scope.TODAY)
        assert view.scope == Scope.TODAY
        assert view.selected_tag is None
        assert view.selected_project_id is None
        assert view.active_view == ViewMode.LIST

    def test_scope_keeps_board_views(self):
        """Kanban and calendar survive a scope change."""
        view = ViewContext(active_view=ViewMode.KANBAN).with_scope(Scope.LOGBOOK)
        assert view.active_view == ViewMode.KANBAN

    def test_tag_toggles(self):
        """Selecting the active tag again clears it."""
        view = ViewContext(scope=Scope.TODAY).with_tag("tag-1")
        assert view.selected_tag == "tag-1"
        assert view.scope == Scope.INBOX
        assert view.with_tag("tag-1").selected_tag is None

    def test_project_resets_scope_and_tag(self):
        """Selecting a project shows its inbox."""
        view = ViewContext(scope=Scope.LOGBOOK, selected_tag="tag-2").with_project("p1")
        assert view.selected_project_id == "p1"
        assert view.selected_tag is None
        assert view.scope == Scope.INBOX


class TestColors:
    """Test generated colors and the initial tag set."""

    def test_color_is_stable(self):
        """The same id always maps to the same color."""
        assert generate_color("abc") == generate_color("abc")

    def test_theme_changes_lightness(self):
        """Dark theme colors are lighter and more saturated."""
        light = generate_color("abc", ThemeMode.LIGHT)
        dark = generate_color("abc", ThemeMode.DARK)
        assert light.startswith("hsl(") and light.endswith(", 60%, 45%)")
        assert dark.endswith(", 70%, 65%)")
        assert light.split(",")[0] == dark.split(",")[0]

    def test_initial_tags(self):
        """Four starter tags with fixed ids."""
        tags = initial_tags()
        assert [t.id for t in tags] == ["tag-1", "tag-2", "tag-3", "tag-4"]
        assert [t.name for t in tags] == ["Work", "Personal", "Urgent", "Idea"]
        assert all(t.color for t in tags)

    def test_generated_ids_unique(self):
        """Ids are never reused."""
        assert len({generate_id() for _ in range(500)}) == 500
