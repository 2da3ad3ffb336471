from __future__ import annotations

import logging
from typing import Any, List, Optional

from .audit import AuditLog, audit_log
from .db import db, settings
from .errors import NotFoundError, ValidationFailedError
from .models import (
    FreeTextQuestion,
    MultipleChoiceQuestion,
    Option,
    Principal,
    Question,
    Quiz,
    SingleChoiceQuestion,
)
from .schemas import CreateOptionIn, CreateQuestionIn, CreateQuizIn
from .utils import new_id

logger = logging.getLogger(__name__)


class QuizCatalog:
    """Stores quizzes. A quiz is never changed once written."""

    def __init__(self, database: Any = None, audit: Optional[AuditLog] = None):
        self.db = database if database is not None else db
        self.audit = audit if audit is not None else audit_log

    async def get_quiz(self, quiz_id: str) -> Quiz:
        doc = await self.db.quizzes.find_one({"id": quiz_id})
        if not doc:
            raise NotFoundError("Quiz not found")
        return Quiz(**doc)

    async def create_quiz(self, payload: CreateQuizIn, caller: Principal) -> Quiz:
        if payload.title is None or not payload.title.strip():
            raise ValidationFailedError("Title is required")
        if not payload.questions:
            raise ValidationFailedError("A quiz must contain at least one question")
        if len(payload.questions) > settings.MAX_QUESTIONS_PER_QUIZ:
            raise ValidationFailedError("Too many questions")

        quiz_id = new_id()
        questions = [
            self._build_question(quiz_id, q, position)
            for position, q in enumerate(payload.questions)
        ]
        quiz = Quiz(
            id=quiz_id,
            owner_id=caller.user_id,
            title=payload.title.strip(),
            description=payload.description,
            questions=questions,
        )
        await self.db.quizzes.insert_one(quiz.model_dump())

        logger.info("Quiz %s created by %s with %d questions", quiz.id, caller.user_id, len(questions))
        self.audit.record("create_quiz", caller.user_id, "quiz", quiz.id, f"questions={len(questions)}")
        return quiz

    def _build_question(self, quiz_id: str, q: Optional[CreateQuestionIn], position: int) -> Question:
        if q is None:
            raise ValidationFailedError("Question is required")
        if q.type is None:
            raise ValidationFailedError("Question type is required")
        if q.prompt is None or not q.prompt.strip():
            raise ValidationFailedError("Question prompt is required")

        points = 1 if q.points == 0 else q.points
        if points <= 0:
            raise ValidationFailedError("Question points must be > 0")

        common = dict(quiz_id=quiz_id, prompt=q.prompt.strip(), points=points, position=position)

        if q.type == "free_text":
            if q.correct_answer is None or not q.correct_answer.strip():
                raise ValidationFailedError("Free text questions need a correct answer")
            return FreeTextQuestion(
                correct_answer=q.correct_answer.strip(),
                case_sensitive=q.case_sensitive,
                **common,
            )

        single = q.type == "single_choice"
        options = self._build_options(q.options, single)
        if single:
            return SingleChoiceQuestion(options=options, **common)
        return MultipleChoiceQuestion(options=options, **common)

    @staticmethod
    def _build_options(options: Optional[List[Optional[CreateOptionIn]]], single: bool) -> List[Option]:
        if options is None or len(options) < 2:
            raise ValidationFailedError("Choice questions must have at least 2 options")

        built: List[Option] = []
        for position, opt in enumerate(options):
            if opt is None:
                raise ValidationFailedError("Option is required")
            if opt.text is None or not opt.text.strip():
                raise ValidationFailedError("Option text is required")
            built.append(Option(text=opt.text.strip(), is_correct=opt.correct, position=position))

        correct_count = sum(1 for o in built if o.is_correct)
        if single and correct_count != 1:
            raise ValidationFailedError("Single choice must have exactly 1 correct option")
        if not single and correct_count < 1:
            raise ValidationFailedError("Multiple choice must have at least 1 correct option")
        return built


quiz_catalog = QuizCatalog()
