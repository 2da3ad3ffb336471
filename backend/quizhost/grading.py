"""Per-question grading. Pure functions only: no store access, no clock."""

from __future__ import annotations

import math
from typing import Callable, Dict, List, NamedTuple, Optional

from .models import (
    Answer,
    ChoiceAnswer,
    FreeTextQuestion,
    MultipleChoiceQuestion,
    Option,
    Question,
    SingleChoiceQuestion,
    TextAnswer,
)
from .schemas import AnswerSubmission


class GradeOutcome(NamedTuple):
    correct: bool
    points_awarded: int
    answer: Answer


def grade(question: Question, submission: Optional[AnswerSubmission], attempt_id: str) -> GradeOutcome:
    """Grade one question; ``submission`` is ``None`` when it was left unanswered."""
    grader = _GRADERS.get(question.type)
    if grader is None:
        raise ValueError(f"Unknown question type: {question.type}")
    return grader(question, submission, attempt_id)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _grade_free_text(question: FreeTextQuestion, submission: Optional[AnswerSubmission], attempt_id: str) -> GradeOutcome:
    answer_text = submission.text_answer if submission is not None else None

    correct = False
    if answer_text is not None and question.correct_answer is not None:
        trimmed = answer_text.strip()
        if question.case_sensitive:
            correct = trimmed == question.correct_answer
        else:
            correct = trimmed.casefold() == question.correct_answer.casefold()

    awarded = question.points if correct else 0
    answer = TextAnswer(
        attempt_id=attempt_id,
        question_id=question.id,
        answer_text=answer_text,
        correct=correct,
        points_awarded=awarded,
    )
    return GradeOutcome(correct, awarded, answer)


def _selected_ids(submission: Optional[AnswerSubmission]) -> List[str]:
    if submission is None or not submission.selected_option_ids:
        return []
    # de-duplicate, keeping the order the participant picked them in
    return list(dict.fromkeys(submission.selected_option_ids))


def _choice_answer(question, selected: List[str], options: Dict[str, Option], attempt_id: str,
                   correct: bool, awarded: int) -> ChoiceAnswer:
    return ChoiceAnswer(
        attempt_id=attempt_id,
        question_id=question.id,
        correct=correct,
        points_awarded=awarded,
        selected_option_ids=[option_id for option_id in selected if option_id in options],
    )


def _grade_single_choice(question: SingleChoiceQuestion, submission: Optional[AnswerSubmission], attempt_id: str) -> GradeOutcome:
    options = {o.id: o for o in question.options}
    selected = _selected_ids(submission)

    correct = False
    if len(selected) == 1:
        chosen = options.get(selected[0])
        correct = chosen is not None and chosen.is_correct

    awarded = question.points if correct else 0
    answer = _choice_answer(question, selected, options, attempt_id, correct, awarded)
    return GradeOutcome(correct, awarded, answer)


def _grade_multiple_choice(question: MultipleChoiceQuestion, submission: Optional[AnswerSubmission], attempt_id: str) -> GradeOutcome:
    options = {o.id: o for o in question.options}
    selected = _selected_ids(submission)

    correct_count = sum(1 for o in question.options if o.is_correct)
    correct_selected = 0
    incorrect_selected = 0
    for option_id in selected:
        option = options.get(option_id)
        if option is None:
            continue
        if option.is_correct:
            correct_selected += 1
        else:
            incorrect_selected += 1

    raw = max(0, correct_selected - incorrect_selected)
    awarded = 0
    if correct_count > 0:
        awarded = round_half_up(raw / correct_count * question.points)

    # partial credit never sets the correct flag
    correct = awarded == question.points
    answer = _choice_answer(question, selected, options, attempt_id, correct, awarded)
    return GradeOutcome(correct, awarded, answer)


_GRADERS: Dict[str, Callable[..., GradeOutcome]] = {
    "free_text": _grade_free_text,
    "single_choice": _grade_single_choice,
    "multiple_choice": _grade_multiple_choice,
}
