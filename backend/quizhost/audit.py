from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, Set

from pymongo import ReturnDocument

from .db import db
from .models import AuditEntry
from .utils import utcnow

logger = logging.getLogger(__name__)


class AuditLog:
    """Fire-and-forget audit trail of successful lifecycle operations."""

    def __init__(self, database: Any = None):
        database = database if database is not None else db
        self.counters_collection = database.audit_counters
        self.entries_collection = database.audit_entries
        self._pending: Set[asyncio.Task] = set()

    def record(
        self,
        action: str,
        actor_id: Optional[str],
        resource_type: str,
        resource_id: Optional[str],
        detail: str = "",
    ) -> None:
        """Schedule an audit write and return immediately.

        Must be called from inside a running event loop. The write happens on
        its own task; a failure there is logged and dropped.
        """
        write = self._write(action, actor_id, resource_type, resource_id, detail)
        try:
            task = asyncio.create_task(write)
        except RuntimeError:
            write.close()
            logger.exception("Could not schedule audit entry %s for %s", action, resource_id)
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for every scheduled write; used on shutdown and in tests."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def _write(
        self,
        action: str,
        actor_id: Optional[str],
        resource_type: str,
        resource_id: Optional[str],
        detail: str,
    ) -> None:
        try:
            seq = await self._next_seq()
            entry = AuditEntry(
                seq=seq,
                timestamp=utcnow(),
                action=action,
                actor_id=actor_id,
                resource_type=resource_type,
                resource_id=resource_id,
                detail=detail,
            )
            await self.entries_collection.insert_one(entry.model_dump())
        except Exception:
            logger.exception("Failed to save audit entry %s for %s %s", action, resource_type, resource_id)

    async def _next_seq(self) -> int:
        counter_doc = await self.counters_collection.find_one_and_update(
            {"_id": "audit"},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

        if not counter_doc:
            # Some Mongo-compatible providers complete the upsert but return
            # ``None``; fall back to a direct lookup.
            counter_doc = await self.counters_collection.find_one({"_id": "audit"})

        return int((counter_doc or {}).get("seq", 1))

    async def list(self, after: int | None = None, limit: int = 200) -> List[AuditEntry]:
        """Return audit entries recorded after the given sequence number."""

        query: dict[str, Any] = {}
        if after is not None:
            query["seq"] = {"$gt": after}

        cursor = self.entries_collection.find(query).sort("seq", 1).limit(limit)

        entries: List[AuditEntry] = []
        async for doc in cursor:
            entries.append(AuditEntry(**doc))
        return entries


audit_log = AuditLog()
