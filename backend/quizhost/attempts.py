from __future__ import annotations

import logging
from typing import Any, Dict, List, NamedTuple, Optional

from pymongo.errors import DuplicateKeyError

from .audit import AuditLog, audit_log
from .db import db
from .errors import ConflictError, NotFoundError, ValidationFailedError
from .event_lifecycle import EventController, controller as event_controller
from .grading import grade
from .models import Attempt, AttemptStatus, Event, EventParticipant, Principal, Quiz
from .schemas import AnswerResultOut, AnswerSubmission, AttemptResultOut, AttemptStartOut
from .utils import utcnow

logger = logging.getLogger(__name__)


class AttemptContext(NamedTuple):
    event: Event
    participant: EventParticipant


class AttemptController:
    """One attempt per participant: IN_PROGRESS -> SUBMITTED | ABANDONED."""

    def __init__(self, database: Any = None, audit: Optional[AuditLog] = None,
                 events: Optional[EventController] = None):
        self.db = database if database is not None else db
        self.audit = audit if audit is not None else audit_log
        self.events = events if events is not None else EventController(self.db, self.audit)

    async def get_attempt(self, participant_id: str) -> Optional[Attempt]:
        doc = await self.db.attempts.find_one({"participant_id": participant_id})
        return Attempt(**doc) if doc else None

    async def save_attempt(self, attempt: Attempt) -> None:
        await self.db.attempts.update_one({"id": attempt.id}, {"$set": attempt.model_dump()}, upsert=True)

    async def _load_context(self, event_id: str, caller: Principal) -> AttemptContext:
        # must be called with the event lock held
        event = await self.events.load_event(event_id)
        await self.events.ensure_accepting_submissions(event)

        doc = await self.db.participants.find_one({"event_id": event.id, "user_id": caller.user_id})
        if not doc:
            raise NotFoundError("Participant not found for this user and event")
        return AttemptContext(event, EventParticipant(**doc))

    async def start_attempt(self, event_id: str, caller: Principal) -> AttemptStartOut:
        async with self.events.lock(event_id):
            ctx = await self._load_context(event_id, caller)

            if await self.db.attempts.count_documents({"participant_id": ctx.participant.id}):
                raise ConflictError("Attempt already exists for this event")

            attempt = Attempt(
                event_id=ctx.event.id,
                participant_id=ctx.participant.id,
                user_id=caller.user_id,
                started_at=utcnow(),
            )
            try:
                await self.db.attempts.insert_one(attempt.model_dump())
            except DuplicateKeyError as exc:
                raise ConflictError("Attempt already exists for this event") from exc

        logger.info("Attempt %s started by %s in event %s", attempt.id, caller.user_id, event_id)
        self.audit.record("start_attempt", caller.user_id, "attempt", attempt.id, f"event={event_id}")
        return AttemptStartOut(attempt_id=attempt.id, status=attempt.status, deadline=ctx.event.ends_at)

    async def submit_attempt(
        self,
        event_id: str,
        caller: Principal,
        answers: Optional[List[Optional[AnswerSubmission]]],
    ) -> AttemptResultOut:
        async with self.events.lock(event_id):
            ctx = await self._load_context(event_id, caller)
            quiz = await self._load_quiz(ctx.event)

            if not answers:
                raise ValidationFailedError("At least one answer is required")

            attempt = await self.get_attempt(ctx.participant.id)
            if attempt is None:
                raise ConflictError("Attempt not started")
            if attempt.status == AttemptStatus.SUBMITTED:
                raise ConflictError("Attempt already submitted")
            if attempt.status == AttemptStatus.ABANDONED:
                raise ConflictError("Attempt was abandoned")
            if attempt.status != AttemptStatus.IN_PROGRESS:
                raise ConflictError("Attempt is not in progress")

            by_question = self._submissions_by_question(quiz, answers)

            score = 0
            max_score = 0
            graded = []
            results: List[AnswerResultOut] = []
            for question in quiz.ordered_questions():
                outcome = grade(question, by_question.get(question.id), attempt.id)
                max_score += question.points
                score += outcome.points_awarded
                graded.append(outcome.answer)
                results.append(
                    AnswerResultOut(
                        question_id=question.id,
                        correct=outcome.correct,
                        points_awarded=outcome.points_awarded,
                    )
                )

            now = utcnow()
            attempt.status = AttemptStatus.SUBMITTED
            attempt.started_at = now
            attempt.submitted_at = now
            attempt.score = score
            attempt.max_score = max_score
            attempt.answers = graded
            await self.save_attempt(attempt)

        logger.info("Attempt %s submitted by %s: %d/%d", attempt.id, caller.user_id, score, max_score)
        self.audit.record(
            "submit_attempt", caller.user_id, "attempt", attempt.id, f"score={score}/{max_score}"
        )
        return AttemptResultOut(
            attempt_id=attempt.id,
            score=score,
            max_score=max_score,
            status=attempt.status,
            results=results,
        )

    async def cancel_attempt(self, event_id: str, caller: Principal) -> None:
        async with self.events.lock(event_id):
            ctx = await self._load_context(event_id, caller)

            attempt = await self.get_attempt(ctx.participant.id)
            if attempt is None:
                raise ConflictError("Attempt not started")
            if attempt.status == AttemptStatus.SUBMITTED:
                raise ConflictError("Attempt already submitted")

            if attempt.status == AttemptStatus.ABANDONED:
                detail = "noop status=ABANDONED"
            else:
                attempt.status = AttemptStatus.ABANDONED
                attempt.abandoned_at = utcnow()
                await self.save_attempt(attempt)
                logger.info("Attempt %s abandoned by %s", attempt.id, caller.user_id)
                detail = ""

        self.audit.record("cancel_attempt", caller.user_id, "attempt", attempt.id, detail)

    async def _load_quiz(self, event: Event) -> Quiz:
        doc = await self.db.quizzes.find_one({"id": event.quiz_id})
        if not doc:
            raise NotFoundError("Quiz not found")
        return Quiz(**doc)

    @staticmethod
    def _submissions_by_question(
        quiz: Quiz, answers: List[Optional[AnswerSubmission]]
    ) -> Dict[str, AnswerSubmission]:
        question_ids = {q.id for q in quiz.questions}
        by_question: Dict[str, AnswerSubmission] = {}
        for answer in answers:
            if answer is None or answer.question_id is None:
                continue
            if answer.question_id not in question_ids:
                raise ValidationFailedError(f"Invalid questionId: {answer.question_id}")
            if answer.question_id in by_question:
                raise ValidationFailedError(f"Duplicate answer for questionId: {answer.question_id}")
            by_question[answer.question_id] = answer
        return by_question


attempt_controller = AttemptController(events=event_controller)
