"""Naming conventions for batches, branches and multiplexer sessions.

Batch ids and task session names are restricted to an alphabet that never
contains the session separator, so a multiplexer name can be decoded back
into exactly the parts it was built from.
"""

import re

from ..config import SESSION_NAME_SEPARATOR
from ..utils.logging import ValidationError

TICKET_ID_PATTERN = re.compile(r"^[A-Z][A-Z0-9]*-\d+$")
SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")

BATCH_ID_MAX_LENGTH = 50
DEFAULT_SLUG_LENGTH = 30

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]+")


def slugify(text: str, max_length: int = DEFAULT_SLUG_LENGTH) -> str:
    """Lowercase, collapse non-alphanumeric runs to '-', trim and cap."""
    slug = _NON_ALPHANUMERIC.sub("-", text.lower()).strip("-")
    return slug[:max_length].strip("-")


def is_ticket_id(value: str) -> bool:
    """True for ids like ``PROJ-123``."""
    return bool(TICKET_ID_PATTERN.match(value))


def sanitize_batch_id(raw_id: str, max_length: int = BATCH_ID_MAX_LENGTH) -> str:
    """Map a user-supplied id onto the workspace-id alphabet.

    Raises:
        ValidationError: If nothing usable is left after sanitizing.
    """
    candidate = raw_id.strip()
    if is_ticket_id(candidate):
        return candidate

    batch_id = slugify(candidate, max_length)
    if not batch_id:
        raise ValidationError(f"Invalid batch id: {raw_id!r}", {"id": raw_id})
    return batch_id


def branch_name_for(batch_id: str, branch_prefix: str) -> str:
    """Branch used by the workspace of ``batch_id``."""
    return f"{branch_prefix}/{sanitize_batch_id(batch_id)}"


def _is_name_component(value: str) -> bool:
    return bool(SLUG_PATTERN.match(value) or TICKET_ID_PATTERN.match(value))


class SessionNameCodec:
    """Reversible mapping between (batch, task) pairs and session names."""

    def __init__(self, prefix: str, separator: str = SESSION_NAME_SEPARATOR):
        if not prefix or separator in prefix:
            raise ValidationError(
                f"Session prefix {prefix!r} must be non-empty and free of {separator!r}"
            )
        self.prefix = prefix
        self.separator = separator

    def _check(self, component: str, label: str) -> None:
        if not _is_name_component(component):
            raise ValidationError(
                f"Invalid {label} for a session name: {component!r}",
                {label: component},
            )

    def session_id(self, batch_id: str, task_session_name: str | None = None) -> str:
        """Registry/CLI id: ``<batch>`` or ``<batch>_<task>``."""
        self._check(batch_id, "batch_id")
        if task_session_name is None:
            return batch_id
        self._check(task_session_name, "task_session_name")
        return f"{batch_id}{self.separator}{task_session_name}"

    def parse_session_id(self, session_id: str) -> tuple[str, str | None] | None:
        """Split a session id into its batch and optional task part."""
        parts = session_id.split(self.separator)
        if len(parts) > 2 or not all(_is_name_component(p) for p in parts):
            return None
        if len(parts) == 1:
            return parts[0], None
        return parts[0], parts[1]

    def encode(self, batch_id: str, task_session_name: str | None = None) -> str:
        """Multiplexer name: ``<prefix>_<batch>[_<task>]``."""
        return f"{self.prefix}{self.separator}{self.session_id(batch_id, task_session_name)}"

    def encode_id(self, session_id: str) -> str:
        """Multiplexer name for an already composed session id."""
        parsed = self.parse_session_id(session_id)
        if parsed is None:
            raise ValidationError(f"Invalid session id: {session_id!r}", {"id": session_id})
        return self.encode(*parsed)

    def decode(self, name: str) -> tuple[str, str | None] | None:
        """Reverse :meth:`encode`; None for names this codec did not produce."""
        head = f"{self.prefix}{self.separator}"
        if not name.startswith(head):
            return None
        return self.parse_session_id(name[len(head) :])

    def decode_id(self, name: str) -> str | None:
        """Session id for a multiplexer name, or None for foreign names."""
        parsed = self.decode(name)
        if parsed is None:
            return None
        return self.session_id(*parsed)
