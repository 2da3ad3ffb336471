from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, List, Optional

from pymongo.errors import DuplicateKeyError

from .audit import AuditLog, audit_log
from .db import db, settings
from .errors import ConflictError, ForbiddenError, NotFoundError, ValidationFailedError
from .models import Event, EventStatus, Principal
from .quizzes import QuizCatalog, quiz_catalog
from .schemas import EventOut
from .utils import as_utc, generate_join_code, utcnow

logger = logging.getLogger(__name__)


class EventController:
    """Owns event state: OPEN -> RUNNING -> CLOSED, or OPEN -> CANCELLED."""

    def __init__(self, database: Any = None, audit: Optional[AuditLog] = None,
                 quizzes: Optional[QuizCatalog] = None):
        self.db = database if database is not None else db
        self.audit = audit if audit is not None else audit_log
        self.quizzes = quizzes if quizzes is not None else QuizCatalog(self.db, self.audit)

    def lock(self, event_id: str):
        return self.db.lock(f"event:{event_id}")

    async def load_event(self, event_id: str) -> Event:
        doc = await self.db.events.find_one({"id": event_id})
        if not doc:
            raise NotFoundError("Event not found")
        return Event(**doc)

    async def find_by_join_code(self, join_code: str) -> Optional[Event]:
        doc = await self.db.events.find_one({"join_code": join_code})
        return Event(**doc) if doc else None

    async def save_event(self, event: Event) -> None:
        await self.db.events.update_one({"id": event.id}, {"$set": event.model_dump()}, upsert=True)

    async def create_event(
        self,
        quiz_id: str,
        name: Optional[str],
        duration_seconds: Optional[int],
        join_closes_at: Optional[datetime],
        caller: Principal,
    ) -> EventOut:
        if name is None or not name.strip():
            raise ValidationFailedError("name is required")
        duration = settings.DEFAULT_EVENT_DURATION_SECONDS if duration_seconds is None else duration_seconds
        if duration <= 0:
            raise ValidationFailedError("durationSeconds must be > 0")
        join_closes_at = as_utc(join_closes_at)
        if join_closes_at is not None and join_closes_at < utcnow():
            raise ValidationFailedError("joinClosesAt must be in the future")

        quiz = await self.quizzes.get_quiz(quiz_id)
        if quiz.owner_id != caller.user_id and not caller.is_admin:
            raise ForbiddenError("Only the quiz owner or an admin can create events")

        event = await self._insert_with_unique_code(
            quiz_id=quiz.id,
            host_id=caller.user_id,
            name=name.strip(),
            duration_seconds=duration,
            join_closes_at=join_closes_at,
        )

        logger.info("Event %s created for quiz %s with code %s", event.id, quiz.id, event.join_code)
        self.audit.record("create_event", caller.user_id, "event", event.id, f"quiz={quiz.id}")
        return EventOut.from_event(event)

    async def _insert_with_unique_code(self, **fields) -> Event:
        for _ in range(settings.JOIN_CODE_MAX_ATTEMPTS):
            event = Event(join_code=generate_join_code(), **fields)
            try:
                await self.db.events.insert_one(event.model_dump())
            except DuplicateKeyError:
                logger.info("Join code %s already taken, drawing again", event.join_code)
                continue
            return event
        raise RuntimeError("Could not allocate a unique join code")

    async def start_event(self, event_id: str, caller: Principal) -> None:
        async with self.lock(event_id):
            event = await self.load_event(event_id)
            self._require_host(event, caller, "start")

            if event.status != EventStatus.OPEN:
                raise ConflictError("Event is not open")
            now = utcnow()
            if event.join_closes_at is not None and now >= event.join_closes_at:
                raise ConflictError("Joining period has ended")

            event.status = EventStatus.RUNNING
            event.starts_at = now
            event.ends_at = now + timedelta(seconds=event.duration_seconds)
            event.join_closes_at = now
            await self.save_event(event)

        logger.info("Event %s started, ends at %s", event_id, event.ends_at.isoformat())
        self.audit.record("start_event", caller.user_id, "event", event_id)

    async def close_event(self, event_id: str, caller: Principal) -> None:
        async with self.lock(event_id):
            event = await self.load_event(event_id)
            self._require_host(event, caller, "close")

            if event.is_terminal:
                detail = f"noop status={event.status.value}"
            else:
                now = utcnow()
                event.status = EventStatus.CLOSED
                event.ends_at = now
                event.join_closes_at = now
                await self.save_event(event)
                logger.info("Event %s closed by %s", event_id, caller.user_id)
                detail = ""

        self.audit.record("close_event", caller.user_id, "event", event_id, detail)

    async def cancel_event(self, event_id: str, caller: Principal) -> None:
        async with self.lock(event_id):
            event = await self.load_event(event_id)
            self._require_host(event, caller, "cancel")

            if event.status == EventStatus.RUNNING:
                raise ConflictError("Cannot cancel a running event")
            if event.status == EventStatus.CLOSED:
                raise ConflictError("Cannot cancel a closed event")

            if event.status == EventStatus.CANCELLED:
                detail = "noop status=CANCELLED"
            else:
                now = utcnow()
                event.status = EventStatus.CANCELLED
                event.ends_at = now
                event.join_closes_at = now
                await self.save_event(event)
                logger.info("Event %s cancelled by %s", event_id, caller.user_id)
                detail = ""

        self.audit.record("cancel_event", caller.user_id, "event", event_id, detail)

    async def ensure_accepting_submissions(self, event: Event) -> None:
        """Reject attempt changes unless the event is RUNNING inside its window.

        A RUNNING event whose ``ends_at`` has passed is closed here and the
        change is persisted. Callers must hold the event lock.
        """
        if event.status == EventStatus.CANCELLED:
            raise ConflictError("Event was cancelled")

        await self.auto_close_if_expired(event)

        if event.status != EventStatus.RUNNING:
            raise ConflictError("Event is not running")
        if event.starts_at is None or event.ends_at is None:
            raise ConflictError("Event timing is not initialized")

        now = utcnow()
        if now < event.starts_at:
            raise ConflictError("Event has not started yet")
        if now >= event.ends_at:
            raise ConflictError("Event has ended")

    async def auto_close_if_expired(self, event: Event) -> bool:
        if (
            event.status == EventStatus.RUNNING
            and event.ends_at is not None
            and utcnow() >= event.ends_at
        ):
            event.status = EventStatus.CLOSED
            await self.save_event(event)
            logger.info("Event %s auto-closed, ended at %s", event.id, event.ends_at.isoformat())
            return True
        return False

    async def get_event(self, event_id: str) -> EventOut:
        async with self.lock(event_id):
            event = await self.load_event(event_id)
            await self.auto_close_if_expired(event)
        return EventOut.from_event(event)

    async def list_events(self, caller: Principal, quiz_id: Optional[str] = None) -> List[EventOut]:
        if quiz_id is None:
            if not caller.is_admin:
                raise ForbiddenError("Only admins can list all events")
            query = {}
        else:
            quiz = await self.quizzes.get_quiz(quiz_id)
            if quiz.owner_id != caller.user_id and not caller.is_admin:
                raise ForbiddenError("Only the quiz owner or an admin can list its events")
            query = {"quiz_id": quiz_id}

        docs = await self.db.events.find(query).sort("created_at", 1).to_list()
        return [EventOut.from_event(Event(**doc)) for doc in docs]

    @staticmethod
    def _require_host(event: Event, caller: Principal, verb: str) -> None:
        if event.host_id != caller.user_id and not caller.is_admin:
            raise ForbiddenError(f"Only the host or admin can {verb} event")


controller = EventController(quizzes=quiz_catalog)
