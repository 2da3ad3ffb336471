from __future__ import annotations

import asyncio
import copy
from functools import lru_cache
from typing import Any, Dict, Iterator, List, Optional, Sequence, Set, Tuple, Union

from pydantic_settings import BaseSettings, SettingsConfigDict
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:8080"
    CORS_ORIGIN_REGEX: Optional[str] = None
    LOG_LEVEL: str = "INFO"
    DEFAULT_EVENT_DURATION_SECONDS: int = 600
    MAX_QUESTIONS_PER_QUIZ: int = 50
    JOIN_CODE_MAX_ATTEMPTS: int = 20
    LEADERBOARD_DEFAULT_LIMIT: int = 3


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()


SortSpec = Union[str, Sequence[Tuple[str, int]]]


class InMemoryCursor:
    def __init__(self, collection: "InMemoryCollection", query: Dict[str, Any]):
        self._collection = collection
        self._query = query or {}
        self._sort: List[Tuple[str, int]] = []
        self._limit: Optional[int] = None
        self._materialised: Optional[Iterator[Dict[str, Any]]] = None

    def sort(self, key_or_list: SortSpec, direction: int = 1):
        if isinstance(key_or_list, str):
            self._sort = [(key_or_list, direction)]
        else:
            self._sort = list(key_or_list)
        return self

    def limit(self, limit: int):
        self._limit = limit
        return self

    async def _ensure_materialised(self):
        if self._materialised is not None:
            return

        docs = await self._collection._find_all(self._query)

        # Stable sorts applied from the least significant key, as Mongo does for compound sorts.
        for key, direction in reversed(self._sort):
            docs.sort(key=lambda d: d.get(key), reverse=direction < 0)

        if self._limit is not None:
            docs = docs[: self._limit]

        self._materialised = iter(docs)

    async def to_list(self) -> List[Dict[str, Any]]:
        return [doc async for doc in self]

    def __aiter__(self):
        return self

    async def __anext__(self):
        await self._ensure_materialised()
        assert self._materialised is not None
        try:
            return next(self._materialised)
        except StopIteration as exc:
            raise StopAsyncIteration from exc


class _UniqueIndex:
    """Set of key tuples currently present for a unique index."""

    def __init__(self, keys: Tuple[str, ...]):
        self.keys = keys
        self.values: Set[Tuple[Any, ...]] = set()

    def key_for(self, doc: Dict[str, Any]) -> Optional[Tuple[Any, ...]]:
        key = tuple(doc.get(k) for k in self.keys)
        # sparse: documents missing a key component are not indexed
        if any(part is None for part in key):
            return None
        return key


class InMemoryCollection:
    def __init__(self, name: str = ""):
        self.name = name
        self._docs: List[Dict[str, Any]] = []
        self._indexes: List[_UniqueIndex] = []
        self._lock = asyncio.Lock()

    def create_index(self, keys: Union[str, Sequence[str]], unique: bool = False) -> None:
        if not unique:
            return
        key_tuple = (keys,) if isinstance(keys, str) else tuple(keys)
        index = _UniqueIndex(key_tuple)
        for doc in self._docs:
            key = index.key_for(doc)
            if key is not None:
                if key in index.values:
                    raise DuplicateKeyError(f"E11000 duplicate key on {self.name} {key_tuple}: {key}", 11000)
                index.values.add(key)
        self._indexes.append(index)

    async def _find_all(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        async with self._lock:
            return [copy.deepcopy(doc) for doc in self._docs if self._matches(doc, query)]

    async def find_one(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        async with self._lock:
            for doc in self._docs:
                if self._matches(doc, query):
                    return copy.deepcopy(doc)
        return None

    def find(self, query: Optional[Dict[str, Any]] = None):
        return InMemoryCursor(self, query or {})

    async def count_documents(self, query: Dict[str, Any]) -> int:
        async with self._lock:
            return sum(1 for doc in self._docs if self._matches(doc, query))

    async def update_one(self, query: Dict[str, Any], update: Dict[str, Any], upsert: bool = False):
        async with self._lock:
            for idx, doc in enumerate(self._docs):
                if self._matches(doc, query):
                    updated = self._apply_update(copy.deepcopy(doc), update)
                    self._reindex(doc, updated)
                    self._docs[idx] = updated
                    return

            if upsert:
                new_doc = copy.deepcopy(query)
                new_doc = self._apply_update(new_doc, update)
                self._reindex(None, new_doc)
                self._docs.append(new_doc)

    async def insert_one(self, document: Dict[str, Any]):
        async with self._lock:
            new_doc = copy.deepcopy(document)
            self._reindex(None, new_doc)
            self._docs.append(new_doc)

    async def delete_one(self, query: Dict[str, Any]) -> int:
        async with self._lock:
            for idx, doc in enumerate(self._docs):
                if self._matches(doc, query):
                    self._reindex(doc, None)
                    del self._docs[idx]
                    return 1
        return 0

    async def find_one_and_update(
        self,
        query: Dict[str, Any],
        update: Dict[str, Any],
        *,
        upsert: bool = False,
        return_document: bool = ReturnDocument.BEFORE,
    ) -> Optional[Dict[str, Any]]:
        async with self._lock:
            for idx, doc in enumerate(self._docs):
                if self._matches(doc, query):
                    original = copy.deepcopy(doc)
                    updated = self._apply_update(copy.deepcopy(doc), update)
                    self._reindex(doc, updated)
                    self._docs[idx] = updated
                    return copy.deepcopy(updated if return_document == ReturnDocument.AFTER else original)

            if upsert:
                new_doc = copy.deepcopy(query)
                new_doc = self._apply_update(new_doc, update)
                self._reindex(None, new_doc)
                self._docs.append(new_doc)
                if return_document == ReturnDocument.AFTER:
                    return copy.deepcopy(new_doc)
                return None

        return None

    def _reindex(self, old: Optional[Dict[str, Any]], new: Optional[Dict[str, Any]]) -> None:
        # Check every index before touching any of them so a violation leaves the collection unchanged.
        changes = []
        for index in self._indexes:
            old_key = index.key_for(old) if old is not None else None
            new_key = index.key_for(new) if new is not None else None
            if old_key == new_key:
                continue
            if new_key is not None and new_key in index.values:
                raise DuplicateKeyError(
                    f"E11000 duplicate key on {self.name} {index.keys}: {new_key}", 11000
                )
            changes.append((index, old_key, new_key))

        for index, old_key, new_key in changes:
            if old_key is not None:
                index.values.discard(old_key)
            if new_key is not None:
                index.values.add(new_key)

    def _apply_update(self, doc: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        for op, payload in update.items():
            if op == "$set":
                for key, value in payload.items():
                    doc[key] = copy.deepcopy(value)
            elif op == "$inc":
                for key, value in payload.items():
                    current = doc.get(key, 0)
                    doc[key] = current + value
            else:  # pragma: no cover - only the above operators are used today
                raise ValueError(f"Unsupported update operator: {op}")
        return doc

    def _matches(self, doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
        for key, expected in (query or {}).items():
            actual = doc.get(key)
            if isinstance(expected, dict):
                for op, operand in expected.items():
                    if op == "$gt":
                        if actual is None or actual <= operand:
                            return False
                    else:  # pragma: no cover - extend as new operators are required
                        raise ValueError(f"Unsupported query operator(s): {expected}")
            else:
                if actual != expected:
                    return False
        return True


class InMemoryDatabase:
    def __init__(self):
        self.quizzes = InMemoryCollection("quizzes")
        self.events = InMemoryCollection("events")
        self.participants = InMemoryCollection("participants")
        self.attempts = InMemoryCollection("attempts")
        self.audit_counters = InMemoryCollection("audit_counters")
        self.audit_entries = InMemoryCollection("audit_entries")

        self.events.create_index("join_code", unique=True)
        self.participants.create_index(["event_id", "user_id"], unique=True)
        self.attempts.create_index("participant_id", unique=True)

        self._locks: Dict[str, asyncio.Lock] = {}

    def lock(self, key: str) -> asyncio.Lock:
        """Serialization point for every mutation touching one aggregate.

        Entries are never evicted: a lock for a closed or cancelled event is
        still taken by later reads and rejected writes, and replacing a lock
        while a task waits on it would let two holders run at once. Memory
        grows by one lock per event for the life of the process.
        """
        self._locks.setdefault(key, asyncio.Lock())
        return self._locks[key]


db: Any = InMemoryDatabase()
