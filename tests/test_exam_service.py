"""
점수 집계 / 면접 지표 테스트.
"""

from conftest import make_questions
from cbt_session.models.question_model import Question
from cbt_session.services.exam_service import (
    ResponseTimeTracker,
    build_interview_metrics,
    calculate_score,
    completion_rate,
    get_incorrect_questions,
)


class FakeClock:
    def __init__(self, *times):
        self._times = list(times)

    def __call__(self):
        return self._times.pop(0)


class TestScore:
    def test_percentage_of_correct_answers(self):
        questions = make_questions(4)
        answers = {1: "A", 2: "A", 3: "B"}
        assert calculate_score(questions, answers) == 50.0

    def test_no_questions(self):
        assert calculate_score([], {}) == 0.0

    def test_weighted_by_points(self):
        questions = [
            Question(id=1, text="쉬움", options=["A", "B"], correct_answer="A", points=1),
            Question(id=2, text="어려움", options=["A", "B"], correct_answer="B", points=3),
        ]
        assert calculate_score(questions, {2: "B"}) == 75.0
        assert calculate_score(questions, {1: "A"}) == 25.0

    def test_ungraded_questions_leave_denominator(self):
        questions = make_questions(2) + [Question(id=3, text="서술형", type="essay", points=5)]
        assert calculate_score(questions, {1: " A ", 2: "A", 3: "긴 답변"}) == 100.0
        assert calculate_score(questions[2:], {3: "긴 답변"}) == 0.0

    def test_incorrect_includes_unanswered_and_skips_ungraded(self):
        questions = make_questions(3) + [Question(id=4, text="서술형", type="essay")]
        incorrect = get_incorrect_questions(questions, {1: "A", 2: "C"})
        assert [q.id for q in incorrect] == [2, 3]


class TestCompletionRate:
    def test_counts_non_empty_answers_only(self):
        questions = make_questions(4)
        assert completion_rate(questions, {1: "A", 2: "", 99: "A"}) == 25.0

    def test_empty_exam(self):
        assert completion_rate([], {1: "A"}) == 0.0


class TestResponseTimeTracker:
    def test_lap_records_milliseconds(self):
        tracker = ResponseTimeTracker(clock=FakeClock(10.0, 12.5, 13.0))
        tracker.begin()
        assert tracker.lap() == 2500.0
        assert tracker.lap() == 500.0
        assert tracker.response_times == [2500.0, 500.0]
        assert tracker.average() == 1500.0

    def test_lap_without_begin_starts_measuring(self):
        tracker = ResponseTimeTracker(clock=FakeClock(1.0))
        assert tracker.lap() is None
        assert tracker.response_times == []
        assert tracker.average() == 0.0

    def test_build_interview_metrics(self):
        tracker = ResponseTimeTracker(clock=FakeClock(0.0, 3.0))
        tracker.begin()
        tracker.lap()

        metrics = build_interview_metrics(make_questions(2), {1: "A"}, tracker, 600, 450)

        assert metrics.completion_rate == 50.0
        assert metrics.average_response_time == 3000.0
        assert metrics.total_time_spent == 150
        assert metrics.response_time == [3000.0]
