"""Tests for the ``things`` command line interface."""

import json

import pytest
from click.testing import CliRunner

from thingstm.cli import main


@pytest.fixture()
def things(tmp_path, monkeypatch):
    """Invoke the CLI against a throwaway data directory."""
    for name in ("DATA_DIR", "LOCAL_DIR", "BACKUP_DIR", "STORAGE_FORMAT", "SAVE_DEBOUNCE", "BACKUP_KEEP"):
        monkeypatch.delenv(f"THINGSTM_{name}", raising=False)
    runner = CliRunner()
    data_dir = tmp_path / "data"

    def invoke(*args, input=None, ok=True):
        result = runner.invoke(main, ["--data-dir", str(data_dir), *args], input=input)
        if ok:
            assert result.exit_code == 0, result.output
        return result

    return invoke


def added_id(result) -> str:
    # "✅ Added task 1a2b3c4d: Title"
    return result.output.split()[3].rstrip(":")


class TestTasks:
    """Test task commands."""

    def test_add_and_list(self, things):
        things("add", "Buy milk", "--priority", "high", "-t", "Work")
        result = things("list")
        assert "Buy milk" in result.output
        assert "#Work" in result.output
        assert "[ ]" in result.output

    def test_empty_list(self, things):
        assert "No tasks" in things("list").output

    def test_subtasks_listed_under_parent(self, things):
        parent = added_id(things("add", "Plan trip"))
        things("add", "Book flight", "--parent", parent)
        lines = things("list").output.splitlines()
        assert lines[0].startswith("[ ]") and "Plan trip" in lines[0]
        assert lines[1].startswith("    [ ]") and "Book flight" in lines[1]
        assert len(things("list", "--no-subtasks").output.splitlines()) == 1

    def test_done_moves_task_to_logbook(self, things):
        task_id = added_id(things("add", "Finish"))
        assert "Completed: Finish" in things("done", task_id).output
        assert "Finish" not in things("list").output
        assert "[x]" in things("list", "--scope", "logbook").output
        assert "Reopened: Finish" in things("done", task_id).output

    def test_today_scope(self, things):
        things("add", "Today thing", "--due", "today")
        things("add", "Someday")
        output = things("list", "--scope", "today").output
        assert "Today thing" in output
        assert "Someday" not in output

    def test_bad_due_date(self, things):
        result = things("add", "Oops", "--due", "tomorrow-ish", ok=False)
        assert result.exit_code != 0

    def test_search_and_tag_filters(self, things):
        things("add", "Report", "-t", "Work")
        things("add", "Groceries", "-d", "milk and eggs")
        assert "Groceries" in things("list", "-q", "EGGS").output
        output = things("list", "-t", "work").output
        assert "Report" in output and "Groceries" not in output

    def test_edit(self, things):
        task_id = added_id(things("add", "Draft", "--due", "2030-01-02"))
        things("edit", task_id, "--title", "Final", "--priority", "low")
        output = things("list").output
        assert "Final" in output and "due 2030-01-02" in output
        things("edit", task_id, "--clear-due")
        assert "due" not in things("list").output

    def test_delete(self, things):
        parent = added_id(things("add", "Parent"))
        things("add", "Child", "--parent", parent)
        assert "Deleted 2 task(s)" in things("delete", parent).output
        assert "No tasks" in things("list").output

    def test_timer(self, things):
        task_id = added_id(things("add", "Focus"))
        assert "Timer started: Focus" in things("timer", task_id).output
        assert "Running: Focus" in things("status").output
        assert "Timer stopped: Focus" in things("timer", task_id).output

    def test_unknown_task(self, things):
        result = things("done", "doesnotexist", ok=False)
        assert result.exit_code == 1
        assert "No task matches 'doesnotexist'" in result.output


class TestCollections:
    """Test project, tag and template commands."""

    def test_projects(self, things):
        things("project", "add", "Home")
        task_id = added_id(things("add", "Fix tap", "--project", "home"))
        things("add", "Elsewhere")
        assert "Home" in things("project", "list").output
        assert "1 open" in things("project", "list").output
        output = things("list", "--project", "Home").output
        assert "Fix tap" in output and "Elsewhere" not in output

        assert "Removed 'Fix tap' from its project" in things("move", task_id).output
        assert "0 open" in things("project", "list").output
        assert "Moved 'Fix tap' to Home" in things("move", task_id, "Home").output

        things("project", "delete", "Home")
        assert "No projects" in things("project", "list").output
        assert "Fix tap" in things("list").output

    def test_move_subtask_rejected(self, things):
        things("project", "add", "Home")
        parent = added_id(things("add", "Parent"))
        child = added_id(things("add", "Child", "--parent", parent))
        assert things("move", child, "Home", ok=False).exit_code == 1

    def test_tags(self, things):
        assert "Work" in things("tag", "list").output
        things("tag", "add", "Errands")
        things("tag", "rename", "Errands", "Shopping")
        output = things("tag", "list").output
        assert "Shopping" in output and "Errands" not in output
        things("add", "Milk", "-t", "Shopping")
        things("tag", "delete", "Shopping")
        assert "Shopping" not in things("tag", "list").output
        assert "Milk" in things("list").output

    def test_templates(self, things):
        things("template", "add", "Trip", "--title", "Plan trip", "-s", "Book flight", "-s", "Book hotel")
        assert "'Plan trip', 2 subtasks" in things("template", "list").output
        things("template", "use", "Trip")
        output = things("list").output
        assert "Plan trip" in output and "Book flight" in output and "Book hotel" in output
        things("template", "delete", "Trip")
        assert "No templates" in things("template", "list").output


class TestData:
    """Test status, stats, export/import, backups, validation and reset."""

    def test_status(self, things, tmp_path):
        things("add", "One")
        output = things("status").output
        assert "Inbox: 1" in output
        assert str(tmp_path / "data") in output
        assert "Tags: 4" in output

    def test_stats(self, things):
        task_id = added_id(things("add", "One"))
        things("add", "Two")
        things("done", task_id)
        output = things("stats").output
        assert "1/2 done (50%)" in output

    def test_export_and_import(self, things, tmp_path):
        things("add", "Exported")
        target = tmp_path / "out.json"
        things("export", "-o", str(target))
        data = json.loads(target.read_text(encoding="utf-8"))
        assert data["tasks"][0]["title"] == "Exported"

        things("reset", "--yes")
        assert "No tasks" in things("list").output
        things("import", str(target))
        assert "Exported" in things("list").output

    def test_export_to_stdout(self, things):
        things("add", "Printed")
        data = json.loads(things("export", "--stdout").output)
        assert data["tasks"][0]["title"] == "Printed"

    def test_import_rejects_bad_file(self, things, tmp_path):
        things("add", "Survivor")
        bad = tmp_path / "bad.json"
        bad.write_text("[1, 2]", encoding="utf-8")
        assert things("import", str(bad), ok=False).exit_code == 1
        assert "Survivor" in things("list").output

    def test_backups(self, things, tmp_path):
        things("add", "Backed up")
        things("export")
        things("backup", "create")
        output = things("backup", "list").output
        assert output.count("things-pro-backup-") == 2
        assert "Tasks: 1" in output

        backup_id = sorted(p.name for p in (tmp_path / "data" / "backups").iterdir())[0]
        things("reset", "--yes")
        things("backup", "restore", backup_id, "--yes")
        assert "Backed up" in things("list").output

        assert "Removed 1 old backup(s)" in things("backup", "cleanup", "--keep", "1", "--yes").output
        assert len(list((tmp_path / "data" / "backups").iterdir())) == 1

    def test_backup_list_empty(self, things):
        assert "No backups found" in things("backup", "list").output

    def test_validate(self, things, tmp_path):
        target = tmp_path / "out.json"
        things("add", "Valid")
        things("export", "-o", str(target))
        assert "is valid" in things("validate", str(target)).output

        bad = tmp_path / "bad.json"
        bad.write_text(json.dumps({"tasks": [{"id": 1}]}), encoding="utf-8")
        result = things("validate", str(bad), ok=False)
        assert result.exit_code == 1
        assert "failed validation" in result.output

    def test_reset_needs_confirmation(self, things):
        things("add", "Precious")
        result = things("reset", input="n\n")
        assert "Reset cancelled" in result.output
        assert "Precious" in things("list").output

        things("reset", input="y\n")
        assert "No tasks" in things("list").output
        assert "Tags: 4" in things("status").output

    def test_reset_leaves_unrelated_files(self, things, tmp_path):
        things("add", "Scratch")
        invoice = tmp_path / "data" / "invoice.json"
        invoice.write_text('{"total": 3}', encoding="utf-8")
        things("reset", "--yes")
        assert invoice.read_text(encoding="utf-8") == '{"total": 3}'
        assert not (tmp_path / "data" / "things-pro-backup.json").exists()
