from __future__ import annotations

from datetime import timedelta
from unittest import IsolatedAsyncioTestCase

from ._testkit import HOST, make_services, open_event
from .errors import ConflictError, NotFoundError, ValidationFailedError
from .models import Principal
from .utils import utcnow

ALICE = Principal(user_id="alice")


class JoinTests(IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.services = make_services()
        self.quiz, self.event = await open_event(self.services)

    async def test_join_by_code(self):
        view = await self.services.registry.join(self.event.join_code, ALICE)

        self.assertEqual(view.id, self.event.id)
        participant = await self.services.registry.find_participant(self.event.id, ALICE.user_id)
        self.assertIsNotNone(participant)

    async def test_code_is_normalised(self):
        await self.services.registry.join(f"  {self.event.join_code.lower()} ", ALICE)

        self.assertIsNotNone(await self.services.registry.find_participant(self.event.id, ALICE.user_id))

    async def test_blank_or_unknown_code(self):
        with self.assertRaises(ValidationFailedError):
            await self.services.registry.join("  ", ALICE)
        with self.assertRaises(NotFoundError):
            await self.services.registry.join("NOPE0000", ALICE)

    async def test_second_join_conflicts(self):
        await self.services.registry.join(self.event.join_code, ALICE)

        with self.assertRaisesRegex(ConflictError, "Already joined"):
            await self.services.registry.join(self.event.join_code, ALICE)

        self.assertEqual(await self.services.db.participants.count_documents({"event_id": self.event.id}), 1)

    async def test_cannot_join_started_event(self):
        await self.services.events.start_event(self.event.id, HOST)

        with self.assertRaises(ConflictError):
            await self.services.registry.join(self.event.join_code, ALICE)

    async def test_cannot_join_after_join_window(self):
        await self.services.db.events.update_one(
            {"id": self.event.id}, {"$set": {"join_closes_at": utcnow() - timedelta(seconds=1)}}
        )

        with self.assertRaisesRegex(ConflictError, "Joining is closed"):
            await self.services.registry.join(self.event.join_code, ALICE)

    async def test_cannot_join_cancelled_event(self):
        await self.services.events.cancel_event(self.event.id, HOST)

        with self.assertRaises(ConflictError):
            await self.services.registry.join(self.event.join_code, ALICE)


class LeaveTests(IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.services = make_services()
        self.quiz, self.event = await open_event(self.services)
        await self.services.registry.join(self.event.join_code, ALICE)

    async def test_leave_then_rejoin(self):
        await self.services.registry.leave(self.event.id, ALICE)

        self.assertIsNone(await self.services.registry.find_participant(self.event.id, ALICE.user_id))
        await self.services.registry.join(self.event.join_code, ALICE)

    async def test_leave_without_joining(self):
        with self.assertRaisesRegex(NotFoundError, "Not joined"):
            await self.services.registry.leave(self.event.id, Principal(user_id="bob"))

    async def test_leave_missing_event(self):
        with self.assertRaises(NotFoundError):
            await self.services.registry.leave("missing", ALICE)

    async def test_cannot_leave_once_started(self):
        await self.services.events.start_event(self.event.id, HOST)

        with self.assertRaises(ConflictError):
            await self.services.registry.leave(self.event.id, ALICE)

        self.assertIsNotNone(await self.services.registry.find_participant(self.event.id, ALICE.user_id))
