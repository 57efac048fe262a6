"""
services/exam_service.py

점수 집계와 면접 지표 계산.
순수 Python 함수/클래스로 구성 — UI 코드, 네트워크 호출 없음.
최종 채점은 백엔드 몫이고, 여기서는 연습 모드 검토(showCorrectAnswers)용 단순 집계만 한다.
"""

import time
from typing import Any, Callable, Dict, List, Optional

from cbt_session.models.question_model import Question
from cbt_session.models.submission_model import InterviewMetrics


def is_correct(question: Question, answer: Any) -> Optional[bool]:
    """
    객관식 정답 판정. 정답 정보가 없거나 서술형/코드 문제면 None (채점 제외).
    선택지 앞뒤 공백은 무시한다.
    """
    if question.type != "multiple_choice" or not question.correct_answer:
        return None
    if answer is None or answer == "":
        return False
    return str(answer).strip() == question.correct_answer.strip()


def calculate_score(questions: List[Question], answers: Dict[int, Any]) -> float:
    """
    배점(points) 가중 환산 점수 (100점 만점, 소수점 둘째 자리 반올림).

    채점 제외 문제는 분모에서도 빠진다. 채점 대상 배점 합이 0이면 0.0.
    """
    earned = total = 0
    for q in questions:
        verdict = is_correct(q, answers.get(q.id))
        if verdict is None:
            continue
        total += q.points
        if verdict:
            earned += q.points
    if total == 0:
        return 0.0
    return round(earned / total * 100, 2)


def get_incorrect_questions(questions: List[Question], answers: Dict[int, Any]) -> List[Question]:
    """검토 화면용 오답 목록. 미응답 포함, 채점 제외 문제는 빠진다. 출제 순서 유지."""
    return [q for q in questions if is_correct(q, answers.get(q.id)) is False]


def completion_rate(questions: List[Question], answers: Dict[int, Any]) -> float:
    """응답률 (%). 문제가 없으면 0."""
    if not questions:
        return 0.0
    ids = {q.id for q in questions}
    answered = sum(1 for qid, value in answers.items() if qid in ids and value not in (None, ""))
    return round(answered / len(questions) * 100, 2)


class ResponseTimeTracker:
    """
    문제별 응답 시간 측정 (면접 모드).
    문제 이동 시점마다 직전 문제에 머문 시간을 ms 단위로 누적한다.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._question_started: Optional[float] = None
        self._response_times: List[float] = []

    def begin(self) -> None:
        self._question_started = self._clock()

    def lap(self) -> Optional[float]:
        """직전 문제 응답 시간을 기록하고 새 문제 측정을 시작한다."""
        if self._question_started is None:
            self.begin()
            return None
        now = self._clock()
        elapsed_ms = (now - self._question_started) * 1000
        self._response_times.append(elapsed_ms)
        self._question_started = now
        return elapsed_ms

    @property
    def response_times(self) -> List[float]:
        return list(self._response_times)

    def average(self) -> float:
        if not self._response_times:
            return 0.0
        return sum(self._response_times) / len(self._response_times)


def build_interview_metrics(
    questions: List[Question],
    answers: Dict[int, Any],
    tracker: ResponseTimeTracker,
    duration_seconds: int,
    remaining_seconds: int,
) -> InterviewMetrics:
    return InterviewMetrics(
        completion_rate=completion_rate(questions, answers),
        average_response_time=round(tracker.average(), 2),
        total_time_spent=max(0, duration_seconds - remaining_seconds),
        response_time=tracker.response_times,
    )
