"""Tests for the MCP server implementation."""
import json
from unittest.mock import MagicMock, patch

import pytest

from noteplan_mcp.exceptions import NoteNotFoundError
from noteplan_mcp.models.db_models import init_db
from noteplan_mcp.server.mcp_server import NotePlanMcpServer, infer_error_meta

TWENTY_LINES = "\n".join(f"line {n}" for n in range(1, 21))


class TestMcpServer:
    """Tools are called directly after capturing them from the FastMCP decorator."""

    @pytest.fixture(autouse=True)
    def server(self, test_config):
        self.registered_tools = {}
        self.mock_mcp = MagicMock()

        def mock_tool_decorator(*args, **kwargs):
            def tool_wrapper(func):
                self.registered_tools[kwargs.get("name")] = func
                return func
            return tool_wrapper
        self.mock_mcp.tool = mock_tool_decorator

        self.engine = init_db(in_memory=True)
        with patch("noteplan_mcp.server.mcp_server.FastMCP", return_value=self.mock_mcp):
            self.server = NotePlanMcpServer(engine=self.engine, storage_root=test_config.storage_path)
        yield self.server
        self.engine.dispose()

    def call(self, name, **kwargs):
        return json.loads(self.registered_tools[name](**kwargs))

    def test_tools_are_registered(self):
        expected = {
            "noteplan_resolve_note",
            "noteplan_search",
            "noteplan_get_note",
            "noteplan_get_paragraphs",
            "noteplan_delete_lines",
            "noteplan_create_note",
            "noteplan_delete_folder",
            "noteplan_add_to_today",
            "noteplan_get_tasks",
            "noteplan_add_task",
            "noteplan_complete_task",
            "noteplan_status",
        }
        assert expected <= set(self.registered_tools)

    def test_create_then_get_note(self):
        """Created notes come back with a content hash and line count."""
        created = self.call("noteplan_create_note", title="Plan", content="body")
        assert created["success"] is True
        assert created["note"]["filename"] == "Notes/Plan.md"

        fetched = self.call("noteplan_get_note", filename="Notes/Plan.md")
        assert fetched["success"] is True
        assert fetched["note"]["content"] == "# Plan\n\nbody"
        assert fetched["note"]["lineCount"] == 3
        assert fetched["note"]["contentHash"] == created["contentHash"]

    def test_missing_note_error(self):
        result = self.call("noteplan_get_note", filename="Notes/Ghost.md")
        assert result["success"] is False
        assert result["code"] == "ERR_NOT_FOUND"
        assert result["suggestedTool"] == "noteplan_resolve_note"
        assert "hint" in result

    def test_missing_reference_is_invalid(self):
        result = self.call("noteplan_get_note")
        assert result["success"] is False
        assert result["code"] == "ERR_INVALID_ARGUMENT"

    def test_invalid_enum_value(self):
        result = self.call("noteplan_search", query="x", search_field="everywhere")
        assert result["success"] is False
        assert result["code"] == "ERR_INVALID_ARGUMENT"
        assert "title_or_filename" in result["error"]

    def test_title_search(self):
        self.call("noteplan_create_note", title="Meeting Notes")
        result = self.call("noteplan_search", query="meeting", search_field="title")
        assert result["success"] is True
        assert result["count"] == 1
        assert result["results"][0]["note"]["title"] == "Meeting Notes"

    def test_resolve_note(self):
        self.call("noteplan_create_note", title="Weekly Plan")
        result = self.call("noteplan_resolve_note", query="weekly plan")
        assert result["success"] is True
        assert result["resolved"]["filename"] == "Notes/Weekly Plan.md"

    def test_delete_lines_dry_run_flow(self):
        """A destructive edit needs a dry run and then the issued token."""
        self.call("noteplan_create_note", title="Long", content=TWENTY_LINES)
        filename = "Notes/Long.md"

        refused = self.call("noteplan_delete_lines", filename=filename, start_line=12, end_line=14)
        assert refused["success"] is False
        assert refused["code"] == "ERR_CONFIRMATION_REQUIRED"
        assert refused["suggestedTool"] == "noteplan_delete_lines"

        preview = self.call(
            "noteplan_delete_lines", filename=filename, start_line=12, end_line=14, dry_run=True
        )
        assert preview["dryRun"] is True
        assert preview["linesToDelete"] == ["line 10", "line 11", "line 12"]
        assert preview["lineCountAfter"] == 19

        done = self.call(
            "noteplan_delete_lines",
            filename=filename,
            start_line=12,
            end_line=14,
            confirmation_token=preview["confirmationToken"],
        )
        assert done["success"] is True
        assert done["lineDelta"] == -3
        assert "warnings" in done

        reused = self.call(
            "noteplan_delete_lines",
            filename=filename,
            start_line=12,
            end_line=14,
            confirmation_token=preview["confirmationToken"],
        )
        assert reused["code"] == "ERR_CONFIRMATION_INVALID"

    def test_stale_hash_is_a_conflict(self):
        self.call("noteplan_create_note", title="Plan")
        result = self.call(
            "noteplan_append_content", filename="Notes/Plan.md", content="more", expected_hash="stale"
        )
        assert result["success"] is False
        assert result["code"] == "ERR_CONFLICT"

    def test_get_paragraphs(self):
        self.call("noteplan_create_note", title="Plan", content="* [ ] task")
        result = self.call("noteplan_get_paragraphs", filename="Notes/Plan.md")
        assert result["success"] is True
        types = [line["type"] for line in result["lines"]]
        assert types == ["title", "empty", "task"]

    def test_calendar_tools(self):
        missing = self.call("noteplan_get_calendar_note", date="2024-01-15")
        assert missing["code"] == "ERR_NOT_FOUND"
        created = self.call("noteplan_get_calendar_note", date="2024-01-15", create_if_missing=True)
        assert created["created"] is True
        assert created["note"]["type"] == "calendar"

        added = self.call("noteplan_add_to_today", content="* [ ] review")
        assert added["success"] is True
        assert added["created"] is True

    def test_invalid_position(self):
        result = self.call("noteplan_add_to_today", content="x", position="sideways")
        assert result["code"] == "ERR_INVALID_ARGUMENT"

    def test_spaces_and_status(self):
        self.server.space_store.create_space("Team")
        spaces = self.call("noteplan_list_spaces")
        assert spaces["spaces"][0]["name"] == "Team"

        status = self.call("noteplan_status")
        assert status["success"] is True
        assert status["spaceCount"] == 1
        assert status["pendingConfirmations"] == 0
        assert "cache" in status

    def test_status_reports_shared_cache(self):
        """Listings go through the server's cache, so its counters move."""
        assert self.server.store.cache is self.server.cache
        self.call("noteplan_list_notes")
        self.call("noteplan_list_notes")
        status = self.call("noteplan_status")
        assert status["cache"]["entries"] >= 1
        assert status["cache"]["hits"] >= 1

    def test_task_tools(self):
        """Tasks are added, listed, completed and filtered by status."""
        self.call("noteplan_create_note", title="Plan", content="## Today")
        added = self.call(
            "noteplan_add_task",
            filename="Notes/Plan.md",
            content="write report",
            position="in-section",
            heading="Today",
            priority=1,
        )
        assert added["success"] is True
        assert added["task"] == "* write report !"

        listed = self.call("noteplan_get_tasks", filename="Notes/Plan.md")
        assert listed["taskCount"] == 1
        task = listed["tasks"][0]
        assert task["content"] == "write report"
        assert task["status"] == "open"

        done = self.call("noteplan_complete_task", filename="Notes/Plan.md", line=task["line"])
        assert done["success"] is True
        assert done["originalLine"] == "* write report !"
        assert done["updatedLine"] == "* [x] write report !"

        open_tasks = self.call("noteplan_get_tasks", filename="Notes/Plan.md", status="open")
        assert open_tasks["taskCount"] == 0

    def test_add_task_to_date(self):
        added = self.call("noteplan_add_task", date="2024-01-15", content="review")
        assert added["success"] is True
        assert added["created"] is True

    def test_add_task_missing_heading_hint(self):
        self.call("noteplan_create_note", title="Plan", content="## Today")
        result = self.call(
            "noteplan_add_task",
            filename="Notes/Plan.md",
            content="x",
            position="after-heading",
            heading="Tomorrow",
        )
        assert result["code"] == "ERR_INVALID_ARGUMENT"
        assert result["hint"] == "Available headings: Plan, Today"
        assert result["details"]["availableHeadings"] == ["Plan", "Today"]

    def test_list_folders_accepts_loose_booleans(self):
        self.server.local_store.create_folder("Projects")
        local_only = self.call("noteplan_list_folders", include_local="yes", include_spaces="no")
        assert [f["path"] for f in local_only["folders"]] == ["Projects"]
        none = self.call("noteplan_list_folders", include_local="0", include_spaces="false")
        assert none["count"] == 0

    def test_content_length_limit(self):
        result = self.call("noteplan_create_note", title="x" * 501)
        assert result["code"] == "ERR_INVALID_ARGUMENT"


class TestErrorResponses:
    """Formatting of errors at the tool boundary."""

    def setup_method(self):
        self.mcp_patcher = patch("noteplan_mcp.server.mcp_server.FastMCP", return_value=MagicMock())
        self.mcp_patcher.start()
        self.engine = init_db(in_memory=True)

    def teardown_method(self):
        self.mcp_patcher.stop()
        self.engine.dispose()

    def test_noteplan_error_marks_operation(self, tmp_path):
        server = NotePlanMcpServer(engine=self.engine, storage_root=tmp_path)
        op = {"success": True}
        payload = json.loads(server.format_error_response(NoteNotFoundError("Notes/X.md"), op))
        assert payload["success"] is False
        assert payload["code"] == "ERR_NOT_FOUND"
        assert op["success"] is False
        assert op["error_code"] == "ERR_NOT_FOUND"

    def test_os_error_hides_details(self, tmp_path):
        server = NotePlanMcpServer(engine=self.engine, storage_root=tmp_path)
        payload = json.loads(server.format_error_response(OSError("/secret/path: permission denied")))
        assert "/secret/path" not in payload["error"]
        assert payload["code"] == "ERR_STORAGE_FAILED"

    def test_value_error_is_invalid_argument(self, tmp_path):
        server = NotePlanMcpServer(engine=self.engine, storage_root=tmp_path)
        payload = json.loads(server.format_error_response(ValueError("bad")))
        assert payload["code"] == "ERR_INVALID_ARGUMENT"

    def test_infer_error_meta(self):
        assert infer_error_meta("File does not exist")["suggestedTool"] == "noteplan_resolve_note"
        timeout = infer_error_meta("operation timed out")
        assert timeout["code"] == "ERR_TIMEOUT"
        assert timeout["retryable"] is True
        assert infer_error_meta("database is locked")["retryable"] is True
        assert infer_error_meta("kaboom")["code"] == "ERR_TOOL_EXECUTION"
