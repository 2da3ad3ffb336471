from __future__ import annotations

import logging
from typing import Any, Optional

from pymongo.errors import DuplicateKeyError

from .audit import AuditLog, audit_log
from .db import db
from .errors import ConflictError, NotFoundError, ValidationFailedError
from .event_lifecycle import EventController, controller as event_controller
from .models import Event, EventParticipant, EventStatus, Principal
from .schemas import EventOut
from .utils import utcnow

logger = logging.getLogger(__name__)


class ParticipantRegistry:
    """Join-code enrollment: at most one row per (event, user)."""

    def __init__(self, database: Any = None, audit: Optional[AuditLog] = None,
                 events: Optional[EventController] = None):
        self.db = database if database is not None else db
        self.audit = audit if audit is not None else audit_log
        self.events = events if events is not None else EventController(self.db, self.audit)

    async def find_participant(self, event_id: str, user_id: str) -> Optional[EventParticipant]:
        doc = await self.db.participants.find_one({"event_id": event_id, "user_id": user_id})
        return EventParticipant(**doc) if doc else None

    async def join(self, join_code: Optional[str], caller: Principal) -> EventOut:
        if join_code is None or not join_code.strip():
            raise ValidationFailedError("joinCode is required")

        found = await self.events.find_by_join_code(join_code.strip().upper())
        if found is None:
            raise NotFoundError("Invalid join code")

        async with self.events.lock(found.id):
            # re-read under the lock; the event may have moved on since the lookup
            event = await self.events.load_event(found.id)
            self._require_joinable(event)

            participant = EventParticipant(event_id=event.id, user_id=caller.user_id)
            try:
                await self.db.participants.insert_one(participant.model_dump())
            except DuplicateKeyError as exc:
                raise ConflictError("Already joined") from exc

        logger.info("User %s joined event %s", caller.user_id, event.id)
        self.audit.record("join_event", caller.user_id, "event", event.id)
        return EventOut.from_event(event)

    async def leave(self, event_id: str, caller: Principal) -> None:
        async with self.events.lock(event_id):
            event = await self.events.load_event(event_id)
            if event.status != EventStatus.OPEN:
                raise ConflictError("You can only leave before the event starts")

            deleted = await self.db.participants.delete_one(
                {"event_id": event.id, "user_id": caller.user_id}
            )
            if not deleted:
                raise NotFoundError("Not joined")

        logger.info("User %s left event %s", caller.user_id, event_id)
        self.audit.record("leave_event", caller.user_id, "event", event_id)

    @staticmethod
    def _require_joinable(event: Event) -> None:
        if event.status != EventStatus.OPEN:
            raise ConflictError("Event is not open for joining")
        now = utcnow()
        if event.join_closes_at is not None and now >= event.join_closes_at:
            raise ConflictError("Joining is closed")
        if event.starts_at is not None and now >= event.starts_at:
            raise ConflictError("Event already started")


registry = ParticipantRegistry(events=event_controller)
