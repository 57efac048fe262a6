"""
세션 상태 기계 테스트.

- 시작/중복 시작
- 답안 upsert, 검토 표시 토글, 이동 범위
- tick 단조 감소와 시간 종료 1회 발행
- 위반 기록 영구성
- 제출/포기 전이
"""

import pytest

from conftest import make_questions
from cbt_session.errors import AlreadySubmitted, InvalidTransition
from cbt_session.models.session_state import SessionStatus, Severity, Violation
from cbt_session.services.events import EventBus, SessionStatusChanged, TimeExpired
from cbt_session.services.state_machine import SessionStateMachine


def started(duration: int = 120, count: int = 3, bus: EventBus = None) -> SessionStateMachine:
    machine = SessionStateMachine("exam-1", bus)
    machine.start("sess-1", make_questions(count), duration)
    return machine


class TestStart:
    def test_start_moves_to_in_progress(self):
        machine = started()
        assert machine.status == SessionStatus.IN_PROGRESS
        assert machine.session_id == "sess-1"
        assert machine.remaining_seconds == 120
        assert machine.current_index == 0

    def test_second_start_fails_and_leaves_state_unchanged(self):
        machine = started()
        machine.record_answer(1, "B")
        before = machine.snapshot()

        with pytest.raises(InvalidTransition):
            machine.start("sess-2", make_questions(5), 999)

        after = machine.snapshot()
        assert after.model_dump() == before.model_dump()

    def test_start_requires_questions(self):
        machine = SessionStateMachine("exam-1")
        with pytest.raises(ValueError):
            machine.start("sess-1", [], 60)
        assert machine.status == SessionStatus.NOT_STARTED

    def test_start_rejects_negative_duration(self):
        machine = SessionStateMachine("exam-1")
        with pytest.raises(ValueError):
            machine.start("sess-1", make_questions(), -1)

    def test_status_change_is_published(self):
        bus = EventBus()
        seen = []
        bus.subscribe(SessionStatusChanged, seen.append)
        started(bus=bus)
        assert seen == [SessionStatusChanged(status=SessionStatus.IN_PROGRESS, previous=SessionStatus.NOT_STARTED)]


class TestAnswers:
    def test_last_write_wins(self):
        machine = started(count=5)
        machine.record_answer(5, "B")
        machine.record_answer(5, "C")
        answers = machine.snapshot().answers
        assert answers[5] == "C"
        assert list(answers).count(5) == 1

    def test_empty_value_clears_answer(self):
        machine = started()
        machine.record_answer(1, "A")
        machine.record_answer(1, "")
        assert 1 not in machine.snapshot().answers

    def test_unknown_question_raises_key_error(self):
        machine = started()
        with pytest.raises(KeyError):
            machine.record_answer(99, "A")

    def test_answer_before_start_is_invalid(self):
        machine = SessionStateMachine("exam-1")
        with pytest.raises(InvalidTransition):
            machine.record_answer(1, "A")

    def test_locked_answers_reject_edits(self):
        machine = started()
        machine.lock_answers()
        with pytest.raises(InvalidTransition):
            machine.record_answer(1, "A")

    def test_structured_answer_is_kept(self):
        machine = started()
        machine.record_answer(2, {"code": "print(1)", "language": "python"})
        assert machine.snapshot().answers[2]["language"] == "python"

    def test_snapshot_is_detached(self):
        machine = started()
        snap = machine.snapshot()
        snap.answers[1] = "D"
        assert machine.snapshot().answers == {}


class TestFlags:
    def test_toggle_twice_restores_set(self):
        machine = started()
        assert machine.toggle_flag(2) is True
        assert machine.toggle_flag(2) is False
        assert machine.snapshot().flagged_question_ids == set()

    def test_question_status_priority(self):
        machine = started(count=4)
        machine.record_answer(1, "A")
        machine.toggle_flag(1)
        machine.toggle_flag(2)
        machine.navigate(2)
        assert [machine.question_status(i) for i in range(4)] == [
            "answered", "flagged", "current", "unanswered",
        ]


class TestNavigation:
    def test_out_of_range_is_noop(self):
        machine = started(count=3)
        assert machine.navigate(-1) == 0
        assert machine.navigate(3) == 0
        assert machine.navigate(2) == 2

    def test_next_and_previous_do_not_wrap(self):
        machine = started(count=2)
        assert machine.previous_question() == 0
        assert machine.next_question() == 1
        assert machine.next_question() == 1


class TestTick:
    def test_remaining_never_increases_and_floors_at_zero(self):
        machine = started(duration=3)
        values = []
        for _ in range(5):
            machine.tick(1)
            values.append(machine.remaining_seconds)
        assert values == [2, 1, 0, 0, 0]

    def test_expiry_published_exactly_once(self):
        bus = EventBus()
        expired = []
        bus.subscribe(TimeExpired, expired.append)
        machine = started(duration=2, bus=bus)

        results = [machine.tick(1) for _ in range(4)]

        assert results == [False, True, False, False]
        assert expired == [TimeExpired(session_id="sess-1")]
        assert machine.snapshot().time_expired is True

    def test_zero_duration_expires_on_first_tick(self):
        machine = started(duration=0)
        assert machine.tick(1) is True

    def test_zero_tick_only_checks_expiry(self):
        assert started(duration=5).tick(0) is False
        machine = started(duration=0)
        assert machine.tick(0) is True
        assert machine.tick(0) is False

    def test_negative_tick_rejected(self):
        machine = started()
        with pytest.raises(ValueError):
            machine.tick(-1)

    def test_tick_ignored_when_not_in_progress(self):
        machine = SessionStateMachine("exam-1")
        assert machine.tick(1) is False
        assert machine.remaining_seconds == 0


class TestViolations:
    def test_violations_are_append_only(self):
        machine = started()
        v1 = Violation(type="tab_switch", severity=Severity.MEDIUM)
        v2 = Violation(type="window_blur", severity=Severity.LOW)
        machine.record_violation(v1)
        machine.record_violation(v2)
        assert machine.snapshot().violations == [v1, v2]

    def test_violation_is_frozen(self):
        v = Violation(type="tab_switch", severity=Severity.MEDIUM)
        with pytest.raises(Exception):
            v.type = "other"

    def test_terminal_session_rejects_violations(self):
        machine = started()
        machine.abandon()
        assert machine.record_violation(Violation(type="x", severity=Severity.LOW)) is False
        assert machine.violation_count == 0


class TestSubmissionTransitions:
    def test_begin_and_complete(self):
        machine = started()
        machine.begin_submission()
        assert machine.status == SessionStatus.SUBMITTING
        machine.record_answer(1, "B")   # 전송 중 마지막 입력은 받는다
        machine.complete({"score": 80})
        assert machine.status == SessionStatus.COMPLETED
        assert machine.snapshot().ack == {"score": 80}

    def test_completed_session_is_immutable(self):
        machine = started()
        machine.begin_submission()
        machine.complete({"score": 80})

        with pytest.raises(InvalidTransition):
            machine.record_answer(1, "B")
        with pytest.raises(InvalidTransition):
            machine.toggle_flag(1)
        with pytest.raises(InvalidTransition):
            machine.navigate(1)
        remaining = machine.remaining_seconds
        machine.tick(5)
        assert machine.remaining_seconds == remaining

    def test_begin_after_completion_raises_already_submitted(self):
        machine = started()
        machine.begin_submission()
        machine.complete({"score": 70})
        with pytest.raises(AlreadySubmitted) as exc:
            machine.begin_submission()
        assert exc.value.ack == {"score": 70}

    def test_failed_submission_locks_answers(self):
        machine = started()
        machine.begin_submission()
        machine.fail_submission()
        assert machine.status == SessionStatus.SUBMITTING
        assert machine.snapshot().answers_locked is True

    def test_complete_requires_submitting(self):
        machine = started()
        with pytest.raises(InvalidTransition):
            machine.complete({})


class TestAbandon:
    def test_abandon_in_progress(self):
        machine = started()
        assert machine.abandon() is True
        assert machine.status == SessionStatus.ABANDONED
        assert machine.abandon() is False

    def test_abandon_before_start_is_invalid(self):
        with pytest.raises(InvalidTransition):
            SessionStateMachine("exam-1").abandon()

    def test_submit_after_abandon_is_invalid(self):
        machine = started()
        machine.abandon()
        with pytest.raises(InvalidTransition):
            machine.begin_submission()
