"""Task document parsing.

A task document is line oriented. Header lines open sections, checkbox lines
(``- [ ] Name: description``) open task blocks, and the lines that follow a
task carry labeled fields such as ``Session name:`` or ``Acceptance:``.
The parser never raises on malformed content; only an unreadable document
is an error.
"""

import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path

from ..utils.logging import LogContext, ValidationError
from .context import RuntimeContext
from .models import (
    ParseMetadata,
    Task,
    TaskContext,
    TaskMetadata,
    TaskPriority,
    TaskStatus,
)
from .naming import slugify

TASK_PATTERN = re.compile(r"^\s*[-*]\s*\[\s*([xX]?)\s*\]\s*(.*)$")
HEADER_PATTERN = re.compile(r"^ {0,3}#{1,6}(?:\s+(.*?))?\s*#*\s*$")
SESSION_HEADER_PATTERN = re.compile(r"^session:\s*\[?(.*?)\]?\s*$", re.IGNORECASE)
TAG_PATTERN = re.compile(r"#([\w-]+)")
TASK_LINE_PATTERN = re.compile(r"^([^:]+):\s*(.+)$")
BULLET_PATTERN = re.compile(r"^[-*]\s+")

HIGH_PRIORITY_PATTERN = re.compile(r"\b(urgent|critical|high)\b")
LOW_PRIORITY_PATTERN = re.compile(r"\blow\b|nice to have")

TASK_ID_SLUG_LENGTH = 20
PROJECT_CONTEXT_LINES = 10

# (field, pattern) pairs, checked in order against the stripped line.
FIELD_MARKERS = (
    ("session_name", re.compile(r"^session\s*name\s*:\s*(.*)$", re.IGNORECASE)),
    ("description", re.compile(r"^description\s*:\s*(.*)$", re.IGNORECASE)),
    (
        "technical_details",
        re.compile(r"^technical(?:\s+details?)?\s*:\s*(.*)$", re.IGNORECASE),
    ),
    ("dependencies", re.compile(r"^dependencies\s*:\s*(.*)$", re.IGNORECASE)),
    (
        "acceptance_criteria",
        re.compile(r"^acceptance(?:\s+criteria)?\s*:\s*(.*)$", re.IGNORECASE),
    ),
    ("notes", re.compile(r"^notes?\s*:\s*(.*)$", re.IGNORECASE)),
    ("estimated_time", re.compile(r"^(?:estimated\s+)?time\s*:\s*(.*)$", re.IGNORECASE)),
)

TEXT_FIELDS = ("description", "technical_details")
LIST_FIELDS = ("dependencies", "acceptance_criteria", "notes")


@dataclass
class _TaskBlock:
    """Mutable accumulator for one task block while scanning."""

    line_number: int
    raw_text: str
    content: str
    checked: bool
    section: str
    session_name: str = ""
    description: str = ""
    technical_details: str = ""
    estimated_time: str = ""
    dependencies: list[str] = field(default_factory=list)
    acceptance_criteria: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    active_field: str | None = None

    def consume(self, text: str) -> None:
        """Feed one non-blank line that belongs to this block."""
        marker_text = BULLET_PATTERN.sub("", text, count=1)
        for name, pattern in FIELD_MARKERS:
            match = pattern.match(marker_text)
            if match:
                self._start_field(name, match.group(1).strip())
                return

        if self.active_field is None:
            return
        if self.active_field in LIST_FIELDS:
            getattr(self, self.active_field).append(BULLET_PATTERN.sub("", text))
        else:
            current = getattr(self, self.active_field)
            setattr(self, self.active_field, f"{current} {text}" if current else text)

    def _start_field(self, name: str, value: str) -> None:
        if name in LIST_FIELDS:
            if value:
                getattr(self, name).append(value)
            self.active_field = name
        elif name in TEXT_FIELDS:
            setattr(self, name, value)
            self.active_field = name
        else:
            # Single-line fields never take continuation lines.
            setattr(self, name, value)
            self.active_field = None


def determine_priority(text: str) -> TaskPriority:
    """Infer priority from keywords in the task text."""
    lowered = text.lower()
    if HIGH_PRIORITY_PATTERN.search(lowered):
        return TaskPriority.HIGH
    if LOW_PRIORITY_PATTERN.search(lowered):
        return TaskPriority.LOW
    return TaskPriority.MEDIUM


def determine_status(checked: bool, section: str) -> TaskStatus:
    """Checked boxes are completed; otherwise the enclosing section decides."""
    if checked:
        return TaskStatus.COMPLETED
    lowered = section.lower()
    if "in progress" in lowered:
        return TaskStatus.IN_PROGRESS
    if "blocked" in lowered:
        return TaskStatus.BLOCKED
    return TaskStatus.TODO


def split_task_line(content: str) -> tuple[str, str | None]:
    """Split ``Name: description`` at the first colon."""
    match = TASK_LINE_PATTERN.match(content)
    if match and match.group(1).strip():
        return match.group(1).strip(), match.group(2).strip()
    return content.strip(), None


def build_full_description(
    name: str,
    description: str | None,
    technical_details: str | None,
    dependencies: list[str],
    acceptance_criteria: list[str],
    notes: list[str],
) -> str:
    """Render the collected fields into one readable summary."""
    lines = [f"Task: {name}"]
    if description:
        lines.append(f"Description: {description}")
    if technical_details:
        lines.append(f"Technical Details: {technical_details}")
    if dependencies:
        lines.append(f"Dependencies: {', '.join(dependencies)}")
    if acceptance_criteria:
        lines.append("Acceptance Criteria:")
        lines.extend(f"- {item}" for item in acceptance_criteria)
    if notes:
        lines.append("Notes:")
        lines.extend(f"- {item}" for item in notes)
    return "\n".join(lines)


class TaskSpecParser:
    """Parses a task document into normalized task records."""

    def __init__(self, context: RuntimeContext):
        self.context = context
        self.logger = context.get_logger(__name__, LogContext.PARSER)
        self.session_name_max_length = context.config.session_name_max_length

    def parse(self, path: str | Path) -> tuple[list[Task], ParseMetadata]:
        """Parse a task document.

        Args:
            path: Path to the task document

        Returns:
            The executable tasks (todo and in progress) and document metadata

        Raises:
            ValidationError: If the document is missing or cannot be read
        """
        file_path = Path(path).expanduser()
        if not file_path.exists():
            raise ValidationError(
                f"Task document not found: {file_path}", {"file_path": str(file_path)}
            )
        if not file_path.is_file():
            raise ValidationError(
                f"Task document is not a file: {file_path}",
                {"file_path": str(file_path)},
            )

        try:
            content = file_path.read_text(encoding="utf-8")
            modified = file_path.stat().st_mtime
        except (OSError, UnicodeDecodeError) as e:
            self.logger.error(
                "Failed to read task document", exception=e, file_path=str(file_path)
            )
            raise ValidationError(
                f"Failed to read task document {file_path}: {e}",
                {"file_path": str(file_path)},
            ) from e

        all_tasks = self.parse_content(content)
        executable = self.deduplicate_session_names(
            [task for task in all_tasks if task.is_executable]
        )

        metadata = ParseMetadata(
            file_path=file_path.resolve(),
            last_modified=datetime.fromtimestamp(modified, tz=timezone.utc),
            total_tasks=len(all_tasks),
            executable_tasks=len(executable),
            sections=self.extract_sections(content),
            session_name=self.extract_session_name(content),
            project_context=self.extract_project_context(content),
        )

        self.logger.info(
            "Parsed task document",
            file_path=str(file_path),
            total_tasks=metadata.total_tasks,
            executable_tasks=metadata.executable_tasks,
            sections=metadata.sections,
        )
        return executable, metadata

    def parse_content(self, content: str) -> list[Task]:
        """Parse document text into every task it contains, in document order."""
        tasks: list[Task] = []
        section = ""
        block: _TaskBlock | None = None

        for line_number, line in enumerate(content.splitlines(), start=1):
            header = HEADER_PATTERN.match(line)
            if header:
                if block is not None:
                    tasks.append(self._build_task(block))
                    block = None
                section = (header.group(1) or "").strip()
                continue

            task_match = TASK_PATTERN.match(line)
            if task_match and task_match.group(2).strip():
                if block is not None:
                    tasks.append(self._build_task(block))
                block = _TaskBlock(
                    line_number=line_number,
                    raw_text=line,
                    content=task_match.group(2).strip(),
                    checked=bool(task_match.group(1)),
                    section=section,
                )
                continue

            if block is None:
                continue

            stripped = line.strip()
            if not stripped:
                tasks.append(self._build_task(block))
                block = None
                continue

            block.consume(stripped)

        if block is not None:
            tasks.append(self._build_task(block))

        self.logger.debug(
            "Scanned task document",
            total_tasks=len(tasks),
            executable_tasks=sum(1 for task in tasks if task.is_executable),
        )
        return tasks

    def _build_task(self, block: _TaskBlock) -> Task:
        name, inline_description = split_task_line(block.content)
        description = inline_description or block.description or f"Work on: {name}"

        session_name = slugify(
            block.session_name or name, self.session_name_max_length
        ) or f"task-{block.line_number}"
        id_slug = slugify(name, TASK_ID_SLUG_LENGTH) or "task"

        return Task(
            id=f"{id_slug}-{block.line_number}",
            name=name,
            description=description,
            session_name=session_name,
            section=block.section,
            priority=determine_priority(f"{block.content} {block.description}"),
            status=determine_status(block.checked, block.section),
            context=TaskContext(
                full_description=build_full_description(
                    name,
                    inline_description or block.description,
                    block.technical_details,
                    block.dependencies,
                    block.acceptance_criteria,
                    block.notes,
                ),
                technical_details=block.technical_details or None,
                dependencies=tuple(block.dependencies),
                acceptance_criteria=tuple(block.acceptance_criteria),
                notes=tuple(block.notes),
            ),
            metadata=TaskMetadata(
                line_number=block.line_number,
                raw_text=block.raw_text,
                estimated_time=block.estimated_time or None,
                tags=tuple(TAG_PATTERN.findall(block.content)),
            ),
        )

    def deduplicate_session_names(self, tasks: list[Task]) -> list[Task]:
        """Suffix repeated session names with ``-2``, ``-3`` and so on."""
        used: set[str] = set()
        result: list[Task] = []

        for task in tasks:
            candidate = task.session_name
            counter = 2
            while candidate in used:
                suffix = f"-{counter}"
                base = task.session_name[: self.session_name_max_length - len(suffix)]
                candidate = f"{base.rstrip('-')}{suffix}"
                counter += 1

            if candidate != task.session_name:
                self.logger.warning(
                    "Duplicate session name renamed",
                    task_id=task.id,
                    session_name=task.session_name,
                    renamed_to=candidate,
                )
                task = replace(task, session_name=candidate)

            used.add(candidate)
            result.append(task)

        return result

    @staticmethod
    def extract_sections(content: str) -> list[str]:
        sections = []
        for line in content.splitlines():
            header = HEADER_PATTERN.match(line)
            if header and header.group(1):
                sections.append(header.group(1).strip())
        return sections

    @staticmethod
    def extract_session_name(content: str) -> str | None:
        """Session name from a ``## Session: [name]`` header."""
        for line in content.splitlines():
            header = HEADER_PATTERN.match(line)
            if not header or not header.group(1):
                continue
            match = SESSION_HEADER_PATTERN.match(header.group(1).strip())
            if match and match.group(1).strip():
                return match.group(1).strip()
        return None

    @staticmethod
    def extract_project_context(content: str) -> str | None:
        """Plain prose from the first lines of the document."""
        parts = []
        for line in content.splitlines()[:PROJECT_CONTEXT_LINES]:
            stripped = line.strip()
            if stripped and not stripped.startswith(("#", "-", "*")):
                parts.append(stripped)
        return " ".join(parts) or None
