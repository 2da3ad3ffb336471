from __future__ import annotations

from unittest import IsolatedAsyncioTestCase

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from .db import InMemoryCollection, InMemoryDatabase


class UniqueIndexTests(IsolatedAsyncioTestCase):
    async def test_insert_with_taken_key_is_rejected(self):
        collection = InMemoryCollection("events")
        collection.create_index("join_code", unique=True)
        await collection.insert_one({"id": "1", "join_code": "ABCD1234"})

        with self.assertRaises(DuplicateKeyError):
            await collection.insert_one({"id": "2", "join_code": "ABCD1234"})

        self.assertEqual(await collection.count_documents({}), 1)

    async def test_compound_key(self):
        collection = InMemoryCollection("participants")
        collection.create_index(["event_id", "user_id"], unique=True)
        await collection.insert_one({"event_id": "e1", "user_id": "u1"})
        await collection.insert_one({"event_id": "e1", "user_id": "u2"})
        await collection.insert_one({"event_id": "e2", "user_id": "u1"})

        with self.assertRaises(DuplicateKeyError):
            await collection.insert_one({"event_id": "e1", "user_id": "u1"})

    async def test_delete_releases_the_key(self):
        collection = InMemoryCollection()
        collection.create_index("code", unique=True)
        await collection.insert_one({"code": "X"})

        self.assertEqual(await collection.delete_one({"code": "X"}), 1)
        await collection.insert_one({"code": "X"})
        self.assertEqual(await collection.delete_one({"code": "nope"}), 0)

    async def test_conflicting_update_leaves_document_untouched(self):
        collection = InMemoryCollection()
        collection.create_index("code", unique=True)
        await collection.insert_one({"id": 1, "code": "A"})
        await collection.insert_one({"id": 2, "code": "B"})

        with self.assertRaises(DuplicateKeyError):
            await collection.update_one({"id": 2}, {"$set": {"code": "A"}})

        self.assertEqual((await collection.find_one({"id": 2}))["code"], "B")
        # the key of a document can be rewritten to itself
        await collection.update_one({"id": 2}, {"$set": {"code": "B", "extra": True}})

    async def test_documents_missing_the_key_are_not_indexed(self):
        collection = InMemoryCollection()
        collection.create_index("code", unique=True)
        await collection.insert_one({"id": 1})
        await collection.insert_one({"id": 2})

        self.assertEqual(await collection.count_documents({}), 2)


class CollectionQueryTests(IsolatedAsyncioTestCase):
    async def test_find_one_and_update_returns_document_after(self):
        collection = InMemoryCollection()

        first = await collection.find_one_and_update(
            {"_id": "audit"}, {"$inc": {"seq": 1}}, upsert=True, return_document=ReturnDocument.AFTER
        )
        second = await collection.find_one_and_update(
            {"_id": "audit"}, {"$inc": {"seq": 1}}, upsert=True, return_document=ReturnDocument.AFTER
        )

        self.assertEqual(first["seq"], 1)
        self.assertEqual(second["seq"], 2)

    async def test_compound_sort_and_limit(self):
        collection = InMemoryCollection()
        for name, score, at in [("a", 5, 3), ("b", 9, 2), ("c", 5, 1), ("d", 1, 0)]:
            await collection.insert_one({"name": name, "score": score, "at": at})

        docs = await collection.find({}).sort([("score", -1), ("at", 1)]).limit(3).to_list()

        self.assertEqual([d["name"] for d in docs], ["b", "c", "a"])

    async def test_greater_than_query(self):
        collection = InMemoryCollection()
        for seq in range(5):
            await collection.insert_one({"seq": seq})

        after = [d["seq"] async for d in collection.find({"seq": {"$gt": 2}}).sort("seq", 1)]

        self.assertEqual(after, [3, 4])

    async def test_returned_documents_are_copies(self):
        collection = InMemoryCollection()
        await collection.insert_one({"id": 1, "tags": ["a"]})

        doc = await collection.find_one({"id": 1})
        doc["tags"].append("b")

        self.assertEqual((await collection.find_one({"id": 1}))["tags"], ["a"])


class DatabaseLockTests(IsolatedAsyncioTestCase):
    async def test_same_key_gives_same_lock(self):
        database = InMemoryDatabase()

        self.assertIs(database.lock("event:1"), database.lock("event:1"))
        self.assertIsNot(database.lock("event:1"), database.lock("event:2"))

    async def test_lock_survives_release(self):
        database = InMemoryDatabase()
        lock = database.lock("event:1")

        async with lock:
            self.assertTrue(database.lock("event:1").locked())

        self.assertIs(database.lock("event:1"), lock)
        self.assertFalse(lock.locked())
