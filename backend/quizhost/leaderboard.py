from __future__ import annotations

from typing import Any, List, Optional

from .db import db, settings
from .errors import NotFoundError, ValidationFailedError
from .models import AttemptStatus
from .schemas import LeaderboardEntryOut


class Leaderboard:
    def __init__(self, database: Any = None):
        self.db = database if database is not None else db

    async def top_for_event(self, event_id: str, limit: Optional[int] = None) -> List[LeaderboardEntryOut]:
        """Best submitted attempts: highest score first, earliest submission breaks ties."""
        limit = settings.LEADERBOARD_DEFAULT_LIMIT if limit is None else limit
        if limit < 1:
            raise ValidationFailedError("limit must be >= 1")
        if not await self.db.events.find_one({"id": event_id}):
            raise NotFoundError("Event not found")

        cursor = (
            self.db.attempts.find({"event_id": event_id, "status": AttemptStatus.SUBMITTED})
            .sort([("score", -1), ("submitted_at", 1)])
            .limit(limit)
        )
        return [
            LeaderboardEntryOut(
                user_id=doc["user_id"],
                score=doc["score"],
                max_score=doc["max_score"],
                submitted_at=doc.get("submitted_at"),
            )
            async for doc in cursor
        ]


leaderboard = Leaderboard()
