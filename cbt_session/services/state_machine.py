"""
services/state_machine.py

시험 세션 상태 기계. 세션 진행 상태의 단일 진실 공급원(single source of truth).

상태 전이:
    NotStarted → InProgress → {Completed, Abandoned}
    Submitting 은 InProgress 의 일시적 하위 상태 — 답안 입력은 계속 받되 (마지막 순간 입력 보존)
    두 번째 동시 제출은 제출 파이프라인의 single-flight 로 막는다.

UI 코드, 네트워크 호출 없음. 이벤트 발행은 EventBus 로만 한다.
"""

import logging
import time
from typing import Any, List, Optional

from cbt_session.errors import AlreadySubmitted, InvalidTransition
from cbt_session.models.question_model import Question
from cbt_session.models.session_state import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    ExamSession,
    SessionStatus,
    Violation,
)
from cbt_session.services.events import EventBus, SessionStatusChanged, TimeExpired

logger = logging.getLogger(__name__)


class SessionStateMachine:
    def __init__(self, exam_id: str, bus: Optional[EventBus] = None):
        self._session = ExamSession(exam_id=exam_id)
        self._bus = bus
        self._expiry_fired = False

    # ── 조회 ─────────────────────────────────────────────────────────────────

    @property
    def status(self) -> SessionStatus:
        return self._session.status

    @property
    def session_id(self) -> Optional[str]:
        return self._session.session_id

    @property
    def exam_id(self) -> str:
        return self._session.exam_id

    @property
    def questions(self) -> List[Question]:
        return list(self._session.questions)

    @property
    def current_index(self) -> int:
        return self._session.current_index

    @property
    def remaining_seconds(self) -> int:
        return self._session.remaining_seconds

    @property
    def answered_count(self) -> int:
        return len(self._session.answers)

    @property
    def flagged_count(self) -> int:
        return len(self._session.flagged_question_ids)

    @property
    def violation_count(self) -> int:
        return len(self._session.violations)

    def question_status(self, index: int) -> str:
        """문제 번호판 표시용: answered > flagged > current > unanswered 우선순위."""
        q = self._session.questions[index]
        if self._session.answers.get(q.id):
            return "answered"
        if q.id in self._session.flagged_question_ids:
            return "flagged"
        if index == self._session.current_index:
            return "current"
        return "unanswered"

    def snapshot(self) -> ExamSession:
        """렌더링/제출용 깊은 복사본. 원본에 대한 쓰기 참조를 내주지 않는다."""
        return self._session.model_copy(deep=True)

    # ── 전이 ─────────────────────────────────────────────────────────────────

    def start(self, session_id: str, questions: List[Question], duration_seconds: int) -> None:
        """
        NotStarted → InProgress.

        Raises:
            InvalidTransition: 이미 시작된 세션에 다시 호출한 경우 (상태는 변경되지 않음).
            ValueError:        문제가 없거나 제한 시간이 음수인 경우.
        """
        if self._session.status != SessionStatus.NOT_STARTED:
            raise InvalidTransition("start", self._session.status.value)
        if not questions:
            raise ValueError("문제가 없는 시험은 시작할 수 없습니다.")
        if duration_seconds < 0:
            raise ValueError(f"제한 시간은 0 이상이어야 합니다: {duration_seconds}")

        self._session.session_id = session_id
        self._session.questions = list(questions)
        self._session.duration_seconds = duration_seconds
        self._session.remaining_seconds = duration_seconds
        self._session.current_index = 0
        self._session.started_at = time.time()
        self._transition(SessionStatus.IN_PROGRESS)

    def record_answer(self, question_id: int, value: Any) -> None:
        """답안 upsert (last write wins). 빈 값이면 해당 문제의 답안을 지운다."""
        self._require_active("record_answer")
        if self._session.answers_locked:
            raise InvalidTransition("record_answer", "AnswersLocked")
        self._require_question(question_id)

        if value is None or value == "":
            self._session.answers.pop(question_id, None)
        else:
            self._session.answers[question_id] = value

    def toggle_flag(self, question_id: int) -> bool:
        """검토 표시 토글. 토글 후 표시 여부를 반환."""
        self._require_active("toggle_flag")
        self._require_question(question_id)

        flagged = self._session.flagged_question_ids
        if question_id in flagged:
            flagged.discard(question_id)
            return False
        flagged.add(question_id)
        return True

    def navigate(self, index: int) -> int:
        """
        지정 인덱스로 이동. 범위를 벗어나면 아무것도 하지 않는다 (순환 없음).

        Returns:
            이동 후 current_index.
        """
        self._require_active("navigate")
        if 0 <= index < len(self._session.questions):
            self._session.current_index = index
        return self._session.current_index

    def next_question(self) -> int:
        return self.navigate(self._session.current_index + 1)

    def previous_question(self) -> int:
        return self.navigate(self._session.current_index - 1)

    def tick(self, seconds_elapsed: int = 1) -> bool:
        """
        남은 시간 차감 (0에서 하한). 진행 중이 아니면 무시.
        tick(0) 은 차감 없이 만료 여부만 확인한다 (남은 시간 0으로 시작한 세션).

        Returns:
            이번 호출로 시간이 종료되었으면 True. 세션당 한 번만 True (edge-triggered).
        """
        if seconds_elapsed < 0:
            raise ValueError(f"경과 시간은 음수일 수 없습니다: {seconds_elapsed}")
        if self._session.status not in ACTIVE_STATUSES:
            return False

        self._session.remaining_seconds = max(0, self._session.remaining_seconds - seconds_elapsed)
        if self._session.remaining_seconds > 0 or self._expiry_fired:
            return False

        self._expiry_fired = True
        self._session.time_expired = True
        logger.info(f"시험 시간 종료: session={self._session.session_id}")
        if self._bus:
            self._bus.publish(TimeExpired(session_id=self._session.session_id))
        return True

    def record_violation(self, violation: Violation) -> bool:
        """위반 기록 추가. 종료 상태(Completed/Abandoned)에서는 기록하지 않고 False."""
        if self._session.status in TERMINAL_STATUSES:
            logger.warning(
                f"종료된 세션의 위반 무시: {violation.type} ({self._session.status.value})"
            )
            return False
        self._session.violations.append(violation)
        return True

    def lock_answers(self) -> None:
        self._session.answers_locked = True

    def begin_submission(self) -> None:
        """
        InProgress → Submitting. 이미 Submitting 이면 그대로 둔다 (재시도).

        Raises:
            AlreadySubmitted:  Completed 세션.
            InvalidTransition: 시작 전이거나 Abandoned.
        """
        if self._session.status == SessionStatus.COMPLETED:
            raise AlreadySubmitted(self._session.session_id, self._session.ack)
        if self._session.status not in ACTIVE_STATUSES:
            raise InvalidTransition("submit", self._session.status.value)
        if self._session.status == SessionStatus.IN_PROGRESS:
            self._transition(SessionStatus.SUBMITTING)

    def fail_submission(self) -> None:
        """제출 실패: Submitting 유지, 답안 잠금 (재시도는 같은 스냅샷으로)."""
        if self._session.status == SessionStatus.SUBMITTING:
            self._session.answers_locked = True

    def complete(self, ack: dict) -> None:
        if self._session.status != SessionStatus.SUBMITTING:
            raise InvalidTransition("complete", self._session.status.value)
        self._session.ack = dict(ack)
        self._session.answers_locked = True
        self._transition(SessionStatus.COMPLETED)

    def abandon(self) -> bool:
        """진행 중인 세션을 Abandoned 로. 이미 종료되었으면 False."""
        if self._session.status in TERMINAL_STATUSES:
            return False
        if self._session.status not in ACTIVE_STATUSES:
            raise InvalidTransition("abandon", self._session.status.value)
        self._transition(SessionStatus.ABANDONED)
        return True

    # ── 내부 ─────────────────────────────────────────────────────────────────

    def _transition(self, new_status: SessionStatus) -> None:
        previous = self._session.status
        self._session.status = new_status
        logger.info(
            f"세션 상태 전이: {previous.value} → {new_status.value} "
            f"(session={self._session.session_id})"
        )
        if self._bus:
            self._bus.publish(SessionStatusChanged(status=new_status, previous=previous))

    def _require_active(self, operation: str) -> None:
        if self._session.status not in ACTIVE_STATUSES:
            raise InvalidTransition(operation, self._session.status.value)

    def _require_question(self, question_id: int) -> None:
        if not any(q.id == question_id for q in self._session.questions):
            raise KeyError(f"존재하지 않는 문제입니다: {question_id}")
