"""Shared builders for the test modules in this package."""

from __future__ import annotations

from datetime import timedelta
from types import SimpleNamespace
from typing import Iterable

from .attempts import AttemptController
from .audit import AuditLog
from .db import InMemoryDatabase
from .event_lifecycle import EventController
from .leaderboard import Leaderboard
from .models import Principal, Quiz
from .participants import ParticipantRegistry
from .quizzes import QuizCatalog
from .schemas import AnswerSubmission, CreateOptionIn, CreateQuestionIn, CreateQuizIn
from .utils import utcnow

HOST = Principal(user_id="host-1")
ADMIN = Principal(user_id="admin-1", role="admin")
STRANGER = Principal(user_id="stranger-1")


def make_services() -> SimpleNamespace:
    database = InMemoryDatabase()
    audit = AuditLog(database)
    quizzes = QuizCatalog(database, audit)
    events = EventController(database, audit, quizzes)
    return SimpleNamespace(
        db=database,
        audit=audit,
        quizzes=quizzes,
        events=events,
        registry=ParticipantRegistry(database, audit, events),
        attempts=AttemptController(database, audit, events),
        leaderboard=Leaderboard(database),
    )


def capital_quiz_payload() -> CreateQuizIn:
    """Free text (2 pts, "Paris"), single choice (3 pts, A), multiple choice (4 pts, X+Y, Z wrong)."""
    return CreateQuizIn(
        title="Capitals",
        description="warm-up round",
        questions=[
            CreateQuestionIn(
                type="free_text",
                prompt="Capital of France?",
                points=2,
                correct_answer="Paris",
            ),
            CreateQuestionIn(
                type="single_choice",
                prompt="Pick A",
                points=3,
                options=[CreateOptionIn(text="A", correct=True), CreateOptionIn(text="B")],
            ),
            CreateQuestionIn(
                type="multiple_choice",
                prompt="Pick X and Y",
                points=4,
                options=[
                    CreateOptionIn(text="X", correct=True),
                    CreateOptionIn(text="Y", correct=True),
                    CreateOptionIn(text="Z"),
                ],
            ),
        ],
    )


def option_id(quiz: Quiz, position: int, text: str) -> str:
    question = quiz.ordered_questions()[position]
    return next(o.id for o in question.options if o.text == text)


def perfect_answers(quiz: Quiz) -> list:
    free, single, multi = quiz.ordered_questions()
    return [
        AnswerSubmission(question_id=free.id, text_answer="Paris"),
        AnswerSubmission(question_id=single.id, selected_option_ids=[option_id(quiz, 1, "A")]),
        AnswerSubmission(
            question_id=multi.id,
            selected_option_ids=[option_id(quiz, 2, "X"), option_id(quiz, 2, "Y")],
        ),
    ]


async def open_event(services, duration_seconds: int = 600):
    quiz = await services.quizzes.create_quiz(capital_quiz_payload(), HOST)
    event = await services.events.create_event(quiz.id, "Friday round", duration_seconds, None, HOST)
    return quiz, event


async def running_event(services, users: Iterable[str] = ("alice",)):
    quiz, event = await open_event(services)
    for user_id in users:
        await services.registry.join(event.join_code, Principal(user_id=user_id))
    await services.events.start_event(event.id, HOST)
    return quiz, event


async def expire_event(services, event_id: str) -> None:
    await services.db.events.update_one(
        {"id": event_id}, {"$set": {"ends_at": utcnow() - timedelta(seconds=1)}}
    )
