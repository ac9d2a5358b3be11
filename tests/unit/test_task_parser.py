"""Unit tests for the task document parser."""

import pytest

from taskmux.core.models import TaskPriority, TaskStatus
from taskmux.core.task_parser import (
    TaskSpecParser,
    build_full_description,
    determine_priority,
    determine_status,
    split_task_line,
)
from taskmux.utils.logging import ValidationError

SAMPLE_DOCUMENT = """# Project Tasks

Refactor the billing service before the release.

## Session: [billing-refresh]

## Todo
- [ ] Fix bug
      Session name: fix-bug
      Description:
        Patch the null check

- [ ] Add invoice export: CSV export for invoices #export
      Technical: use the csv module
      Dependencies: Fix bug
      Acceptance:
        - exports all rows
        - handles unicode
      Estimated time: 2h

## In Progress
- [ ] Urgent: rotate credentials

## Blocked
- [ ] Migrate database

## Done
- [x] Set up repository
"""


class TestTaskSpecParser:
    """Test cases for TaskSpecParser."""

    @pytest.fixture
    def parser(self, context):
        return TaskSpecParser(context)

    def test_parse_single_task_block(self, parser):
        """A checkbox followed by labeled fields becomes one task."""
        content = (
            "- [ ] Fix bug\n"
            "      Session name: fix-bug\n"
            "      Description:\n"
            "        Patch the null check\n"
        )

        tasks = parser.parse_content(content)

        assert len(tasks) == 1
        task = tasks[0]
        assert task.name == "Fix bug"
        assert task.session_name == "fix-bug"
        assert task.description == "Patch the null check"
        assert task.status == TaskStatus.TODO

    def test_parse_content_sections_and_status(self, parser):
        tasks = parser.parse_content(SAMPLE_DOCUMENT)

        by_name = {task.name: task for task in tasks}
        assert by_name["Fix bug"].status == TaskStatus.TODO
        assert by_name["Urgent"].status == TaskStatus.IN_PROGRESS
        assert by_name["Migrate database"].status == TaskStatus.BLOCKED
        assert by_name["Set up repository"].status == TaskStatus.COMPLETED
        assert by_name["Urgent"].section == "In Progress"

    def test_parse_content_collects_fields(self, parser):
        tasks = parser.parse_content(SAMPLE_DOCUMENT)
        export = next(t for t in tasks if t.name == "Add invoice export")

        assert export.description == "CSV export for invoices #export"
        assert export.session_name == "add-invoice-export"
        assert export.context.technical_details == "use the csv module"
        assert export.context.dependencies == ("Fix bug",)
        assert export.context.acceptance_criteria == ("exports all rows", "handles unicode")
        assert export.metadata.estimated_time == "2h"
        assert export.metadata.tags == ("export",)
        assert "Acceptance Criteria:" in export.context.full_description

    def test_parse_content_ignores_empty_checkbox(self, parser):
        assert parser.parse_content("- [ ]\n- [ ]   \n") == []

    def test_parse_content_without_tasks(self, parser):
        assert parser.parse_content("# Notes\n\nJust prose.\n") == []

    def test_unindented_field_lines(self, parser):
        content = (
            "- [ ] Deploy\n"
            "Session name: ship-it\n"
            "Description: Roll out the release\n"
            "Notes: watch the logs\n"
        )

        [task] = parser.parse_content(content)

        assert task.session_name == "ship-it"
        assert task.description == "Roll out the release"
        assert task.context.notes == ("watch the logs",)

    def test_markers_before_any_task_are_ignored(self, parser):
        content = (
            "Session name: stray\n"
            "Dependencies: nothing\n"
            "- [ ] Real task\n"
        )

        [task] = parser.parse_content(content)

        assert task.session_name == "real-task"
        assert task.context.dependencies == ()

    def test_repeated_and_out_of_order_markers(self, parser):
        content = (
            "- [ ] Build\n"
            "  Acceptance: green build\n"
            "  Session name: first\n"
            "  Description: one\n"
            "  Dependencies: lint\n"
            "  Session name: second\n"
            "  Description: two\n"
            "  Dependencies: tests\n"
        )

        [task] = parser.parse_content(content)

        assert task.session_name == "second"
        assert task.description == "two"
        assert task.context.dependencies == ("lint", "tests")
        assert task.context.acceptance_criteria == ("green build",)

    def test_single_line_fields_take_no_continuation(self, parser):
        content = (
            "- [ ] Review\n"
            "  Time: 1h\n"
            "  stray text\n"
            "  Session name: review-it\n"
            "  more stray text\n"
        )

        [task] = parser.parse_content(content)

        assert task.metadata.estimated_time == "1h"
        assert task.session_name == "review-it"
        assert task.description == "Work on: Review"
        assert "stray" not in task.context.full_description

    def test_list_field_continues_until_next_marker(self, parser):
        content = (
            "- [ ] Ship\n"
            "  Notes: first note\n"
            "  second note\n"
            "  - third note\n"
            "  Technical: feature flag\n"
            "  behind the beta switch\n"
        )

        [task] = parser.parse_content(content)

        assert task.context.notes == ("first note", "second note", "third note")
        assert task.context.technical_details == "feature flag behind the beta switch"

    def test_malformed_content_never_raises(self, parser):
        content = (
            "   Description:\n"
            "- [ ]\n"
            ":::\n"
            "- [x]\n"
            "  Notes:\n"
            "\t- [ ] Tabbed task\n"
            "Acceptance:\n"
            "#\n"
        )

        tasks = parser.parse_content(content)

        assert [task.name for task in tasks] == ["Tabbed task"]
        assert tasks[0].context.acceptance_criteria == ()

    def test_ids_are_unique_and_use_line_numbers(self, parser):
        tasks = parser.parse_content("- [ ] Same\n- [ ] Same\n")

        assert [t.id for t in tasks] == ["same-1", "same-2"]
        assert [t.metadata.line_number for t in tasks] == [1, 2]

    def test_session_names_match_slug_alphabet(self, parser):
        content = "- [ ] Ünïcode & Symbols!! everywhere ___ here\n- [ ] !!!\n"

        tasks = parser.parse_content(content)

        for task in tasks:
            assert task.session_name
            assert "_" not in task.session_name
            assert task.session_name == task.session_name.lower()
            assert len(task.session_name) <= 30
        assert tasks[1].session_name == "task-2"

    def test_parse_returns_only_executable_tasks(self, parser, tmp_path):
        doc = tmp_path / "tasks.md"
        doc.write_text(SAMPLE_DOCUMENT)

        tasks, metadata = parser.parse(doc)

        assert [t.name for t in tasks] == ["Fix bug", "Add invoice export", "Urgent"]
        assert all(t.is_executable for t in tasks)
        assert metadata.total_tasks == 5
        assert metadata.executable_tasks == 3
        assert metadata.session_name == "billing-refresh"
        assert "Todo" in metadata.sections
        assert metadata.project_context.startswith("Refactor the billing service")

    def test_parse_deduplicates_session_names(self, parser, tmp_path):
        doc = tmp_path / "tasks.md"
        doc.write_text("- [ ] Deploy\n- [ ] Deploy\n- [ ] Deploy\n")

        tasks, _ = parser.parse(doc)

        assert [t.session_name for t in tasks] == ["deploy", "deploy-2", "deploy-3"]

    def test_parse_missing_file(self, parser, tmp_path):
        with pytest.raises(ValidationError, match="not found"):
            parser.parse(tmp_path / "missing.md")

    def test_parse_directory(self, parser, tmp_path):
        with pytest.raises(ValidationError, match="not a file"):
            parser.parse(tmp_path)

    def test_extract_session_name_plain(self):
        assert TaskSpecParser.extract_session_name("## Session: proj1\n") == "proj1"
        assert TaskSpecParser.extract_session_name("## Todo\n") is None


class TestParserHelpers:
    """Test the module-level parsing helpers."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("Critical outage", TaskPriority.HIGH),
            ("urgent fix", TaskPriority.HIGH),
            ("nice to have polish", TaskPriority.LOW),
            ("low effort cleanup", TaskPriority.LOW),
            ("regular work", TaskPriority.MEDIUM),
            ("highlight syntax", TaskPriority.MEDIUM),
        ],
    )
    def test_determine_priority(self, text, expected):
        assert determine_priority(text) == expected

    def test_determine_status_checked_wins(self):
        assert determine_status(True, "In Progress") == TaskStatus.COMPLETED

    def test_split_task_line(self):
        assert split_task_line("Name: the description") == ("Name", "the description")
        assert split_task_line("Just a name") == ("Just a name", None)

    def test_build_full_description_minimal(self):
        assert build_full_description("Task", None, None, [], [], []) == "Task: Task"
