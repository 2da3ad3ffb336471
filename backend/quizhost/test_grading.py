from __future__ import annotations

from unittest import TestCase

from . import grading
from .models import ChoiceAnswer, FreeTextQuestion, MultipleChoiceQuestion, Option, SingleChoiceQuestion, TextAnswer
from .schemas import AnswerSubmission


def _free_text(answer: str = "Paris", case_sensitive: bool = False, points: int = 2) -> FreeTextQuestion:
    return FreeTextQuestion(
        id="q-free", quiz_id="quiz", prompt="Capital?", points=points, position=0,
        correct_answer=answer, case_sensitive=case_sensitive,
    )


def _options(*flags: bool):
    return [Option(id=f"o{i}", text=f"option {i}", is_correct=flag, position=i) for i, flag in enumerate(flags)]


def _single(points: int = 3) -> SingleChoiceQuestion:
    return SingleChoiceQuestion(
        id="q-single", quiz_id="quiz", prompt="Pick one", points=points, position=1,
        options=_options(True, False, False),
    )


def _multi(*flags: bool, points: int = 4) -> MultipleChoiceQuestion:
    return MultipleChoiceQuestion(
        id="q-multi", quiz_id="quiz", prompt="Pick all", points=points, position=2,
        options=_options(*flags),
    )


def _text(value):
    return AnswerSubmission(question_id="q-free", text_answer=value)


def _picks(*ids):
    return AnswerSubmission(question_id="q", selected_option_ids=list(ids))


class FreeTextGradingTests(TestCase):
    def test_case_insensitive_match_after_trimming(self):
        outcome = grading.grade(_free_text(), _text("  paris \n"), "attempt")

        self.assertTrue(outcome.correct)
        self.assertEqual(outcome.points_awarded, 2)
        self.assertIsInstance(outcome.answer, TextAnswer)
        self.assertEqual(outcome.answer.answer_text, "  paris \n")
        self.assertEqual(outcome.answer.attempt_id, "attempt")

    def test_case_sensitive_requires_exact_case(self):
        question = _free_text(case_sensitive=True)

        self.assertFalse(grading.grade(question, _text("paris"), "a").correct)
        self.assertTrue(grading.grade(question, _text(" Paris"), "a").correct)

    def test_missing_submission_or_text_scores_zero(self):
        for submission in (None, _text(None)):
            outcome = grading.grade(_free_text(), submission, "a")
            self.assertFalse(outcome.correct)
            self.assertEqual(outcome.points_awarded, 0)

    def test_wrong_text_gets_no_partial_credit(self):
        outcome = grading.grade(_free_text(points=5), _text("Pari"), "a")

        self.assertEqual((outcome.correct, outcome.points_awarded), (False, 0))

    def test_grading_is_repeatable(self):
        question = _free_text()
        first = grading.grade(question, _text("PARIS"), "a")
        second = grading.grade(question, _text("PARIS"), "a")

        self.assertEqual((first.correct, first.points_awarded), (second.correct, second.points_awarded))


class SingleChoiceGradingTests(TestCase):
    def test_single_correct_pick_gets_full_points(self):
        outcome = grading.grade(_single(), _picks("o0"), "a")

        self.assertEqual((outcome.correct, outcome.points_awarded), (True, 3))
        self.assertIsInstance(outcome.answer, ChoiceAnswer)
        self.assertEqual(outcome.answer.selected_option_ids, ["o0"])

    def test_wrong_pick_scores_zero(self):
        outcome = grading.grade(_single(), _picks("o1"), "a")

        self.assertEqual((outcome.correct, outcome.points_awarded), (False, 0))

    def test_zero_or_several_picks_never_score(self):
        for picks in ([], ["o0", "o1"], ["o0", "o1", "o2"], ["o0", "missing"]):
            outcome = grading.grade(_single(), _picks(*picks), "a")
            self.assertEqual(outcome.points_awarded, 0, picks)
            self.assertFalse(outcome.correct, picks)

    def test_repeated_id_counts_once(self):
        outcome = grading.grade(_single(), _picks("o0", "o0"), "a")

        self.assertTrue(outcome.correct)
        self.assertEqual(outcome.answer.selected_option_ids, ["o0"])

    def test_unknown_ids_are_dropped_from_the_record(self):
        outcome = grading.grade(_single(), _picks("missing"), "a")

        self.assertEqual(outcome.points_awarded, 0)
        self.assertEqual(outcome.answer.selected_option_ids, [])

    def test_unanswered(self):
        outcome = grading.grade(_single(), None, "a")

        self.assertEqual(outcome.points_awarded, 0)
        self.assertEqual(outcome.answer.selected_option_ids, [])


class MultipleChoiceGradingTests(TestCase):
    def test_exact_correct_set_gets_full_points(self):
        outcome = grading.grade(_multi(True, True, False), _picks("o0", "o1"), "a")

        self.assertEqual((outcome.correct, outcome.points_awarded), (True, 4))

    def test_one_wrong_pick_costs_one_correct_pick(self):
        # n = 3 correct options, all picked plus one wrong: round(2/3 * 6) = 4
        question = _multi(True, True, True, False, points=6)
        outcome = grading.grade(question, _picks("o0", "o1", "o2", "o3"), "a")

        self.assertEqual(outcome.points_awarded, grading.round_half_up((3 - 1) / 3 * 6))
        self.assertEqual(outcome.points_awarded, 4)
        self.assertFalse(outcome.correct)

    def test_partial_credit_rounds_half_up(self):
        # 1 of 2 correct picked: 0.5 * 3 = 1.5 -> 2
        outcome = grading.grade(_multi(True, True, False, points=3), _picks("o0"), "a")

        self.assertEqual(outcome.points_awarded, 2)
        self.assertFalse(outcome.correct)

    def test_more_wrong_than_right_floors_at_zero(self):
        outcome = grading.grade(_multi(True, False, False), _picks("o0", "o1", "o2"), "a")

        self.assertEqual(outcome.points_awarded, 0)

    def test_unknown_ids_are_ignored(self):
        outcome = grading.grade(_multi(True, True, False), _picks("o0", "o1", "ghost"), "a")

        self.assertEqual((outcome.correct, outcome.points_awarded), (True, 4))
        self.assertEqual(outcome.answer.selected_option_ids, ["o0", "o1"])

    def test_no_correct_options_awards_nothing(self):
        outcome = grading.grade(_multi(False, False), _picks("o0"), "a")

        self.assertEqual(outcome.points_awarded, 0)
        self.assertFalse(outcome.correct)


class RoundHalfUpTests(TestCase):
    def test_halves_round_up(self):
        self.assertEqual(grading.round_half_up(0.5), 1)
        self.assertEqual(grading.round_half_up(2.5), 3)
        self.assertEqual(grading.round_half_up(2.49), 2)
        self.assertEqual(grading.round_half_up(0.0), 0)
