"""JSON-backed session registry."""

import asyncio
import json
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from ..core.context import RuntimeContext
from ..utils.logging import LogContext, RegistryError
from .models import RegistryDocument, SessionRecord, utc_now


class SessionRegistry:
    """Durable store of session records keyed by id.

    Every mutation rewrites the whole document through a temporary file and
    an atomic rename. Concurrent writers in different processes are not
    coordinated; the last writer wins.
    """

    def __init__(self, context: RuntimeContext, path: Path | None = None):
        self.context = context
        self.path = path or context.registry_path
        self.logger = context.get_logger(__name__, LogContext.REGISTRY)

    async def get_all(self) -> list[SessionRecord]:
        """Return every registered record, or an empty list if none exist."""
        document = await asyncio.to_thread(self._read)
        return document.sessions

    async def get(self, session_id: str) -> SessionRecord | None:
        for record in await self.get_all():
            if record.id == session_id:
                return record
        return None

    async def save(self, record: SessionRecord) -> None:
        """Insert or replace the record with the same id."""
        await asyncio.to_thread(self._save, record)
        self.logger.debug("Session record saved", session_id=record.id)

    async def remove(self, session_id: str) -> bool:
        """Remove a record. Returns False when it was not registered."""
        removed = await asyncio.to_thread(self._remove, session_id)
        if removed:
            self.logger.info("Session record removed", session_id=session_id)
        return removed

    def _save(self, record: SessionRecord) -> None:
        document = self._read()
        for index, existing in enumerate(document.sessions):
            if existing.id == record.id:
                document.sessions[index] = record
                break
        else:
            document.sessions.append(record)
        self._write(document, record.id)

    def _remove(self, session_id: str) -> bool:
        document = self._read()
        remaining = [r for r in document.sessions if r.id != session_id]
        if len(remaining) == len(document.sessions):
            return False
        document.sessions = remaining
        self._write(document, session_id)
        return True

    def _read(self) -> RegistryDocument:
        if not self.path.exists():
            return RegistryDocument()

        try:
            raw = self.path.read_text(encoding="utf-8")
            return RegistryDocument.model_validate(json.loads(raw))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            self.logger.error("Failed to read registry", exception=e, path=str(self.path))
            raise RegistryError(
                f"Failed to read sessions file {self.path}: {e}", {"path": str(self.path)}
            ) from e
        except PydanticValidationError as e:
            self.logger.error("Malformed registry", exception=e, path=str(self.path))
            raise RegistryError(
                f"Malformed sessions file {self.path}: {e}", {"path": str(self.path)}
            ) from e

    def _write(self, document: RegistryDocument, session_id: str) -> None:
        document.last_updated = utc_now()
        payload = document.model_dump_json(by_alias=True, indent=2)

        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=".sessions-", suffix=".json", dir=self.path.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            self.logger.error(
                "Failed to write registry",
                exception=e,
                path=str(self.path),
                session_id=session_id,
            )
            raise RegistryError(
                f"Failed to write sessions file {self.path}: {e}",
                {"path": str(self.path), "session_id": session_id},
            ) from e
