"""
services/controller.py

시험 세션 컨트롤러. 시험 한 건당 하나씩 생성되어 상태 기계, 이벤트 채널, 타이머,
감독 모니터, 제출 파이프라인, 백엔드 클라이언트를 소유한다.

- 타이머/모니터는 이벤트만 발행하고, 세션 상태 변경은 여기서 구독한 핸들러가 한다.
- close() 한 번으로 타이머, 주기 작업, 미디어 스트림, HTTP 클라이언트를 모두 해제한다.
  성공/오류/이탈 어느 경로든 close() 를 부르거나 async with 로 사용한다.
"""

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from cbt_session.errors import AlreadySubmitted, InvalidTransition, SubmissionError
from cbt_session.models.question_model import Question
from cbt_session.models.session_state import ACTIVE_STATUSES, ExamSession, SessionStatus, Violation
from cbt_session.models.settings_model import ExamSettings
from cbt_session.models.submission_model import InterviewMetrics, ServerAck
from cbt_session.services.artifacts import ArtifactUploader
from cbt_session.services.backend_client import ExamBackendClient
from cbt_session.services.events import (
    EventBus,
    MonitorStatusChanged,
    Tick,
    TimeExpired,
    TimeWarning,
    ViolationDetected,
)
from cbt_session.services.exam_service import (
    ResponseTimeTracker,
    build_interview_metrics,
    calculate_score,
    get_incorrect_questions,
)
from cbt_session.services.integrity.detectors import Signal
from cbt_session.services.integrity.media import MediaProvider
from cbt_session.services.integrity.monitor import IntegrityMonitor, SystemCheckResult
from cbt_session.services.state_machine import SessionStateMachine
from cbt_session.services.submission import SubmissionPipeline
from cbt_session.services.timer import CountdownTimer, format_time, is_low_time

logger = logging.getLogger(__name__)


class ExamSessionController:
    def __init__(
        self,
        exam_id: str,
        client: Optional[ExamBackendClient] = None,
        *,
        media: Optional[MediaProvider] = None,
        network_probe: Optional[Callable[[], bool]] = None,
        face_check: Optional[Callable[[Any], bool]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
        owns_client: Optional[bool] = None,
    ):
        self.exam_id = str(exam_id)
        self._client = client or ExamBackendClient()
        self._owns_client = client is None if owns_client is None else owns_client
        self._media = media
        self._network_probe = network_probe
        self._face_check = face_check
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()

        self._bus = EventBus()
        self._machine = SessionStateMachine(self.exam_id, self._bus)
        self._uploader = ArtifactUploader(self._client, self.exam_id)
        self._tracker = ResponseTimeTracker(clock)

        self._exam: Dict[str, Any] = {}
        self._settings = ExamSettings()
        self._questions: List[Question] = []
        self._monitor: Optional[IntegrityMonitor] = None
        self._pipeline: Optional[SubmissionPipeline] = None
        self._timer: Optional[CountdownTimer] = None
        self._auto_submit_task: Optional[asyncio.Task] = None
        self._warnings: List[int] = []
        self._monitor_status = "checking"
        self._fullscreen = False
        self._last_error: Optional[str] = None
        self._closed = False
        self.auto_submit_count = 0

        self._bus.subscribe(Tick, self._on_tick)
        self._bus.subscribe(ViolationDetected, self._on_violation)
        self._bus.subscribe(TimeExpired, self._on_time_expired)
        self._bus.subscribe(TimeWarning, self._on_time_warning)
        self._bus.subscribe(MonitorStatusChanged, self._on_monitor_status)

    async def __aenter__(self) -> "ExamSessionController":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ── 조회 ─────────────────────────────────────────────────────────────────

    @property
    def status(self) -> SessionStatus:
        return self._machine.status

    @property
    def settings(self) -> ExamSettings:
        return self._settings

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def monitor(self) -> Optional[IntegrityMonitor]:
        return self._monitor

    @property
    def pipeline(self) -> Optional[SubmissionPipeline]:
        return self._pipeline

    @property
    def timer(self) -> Optional[CountdownTimer]:
        return self._timer

    @property
    def session(self) -> ExamSession:
        return self._machine.snapshot()

    @property
    def closed(self) -> bool:
        return self._closed

    # ── 준비 ─────────────────────────────────────────────────────────────────

    async def prepare(self) -> SystemCheckResult:
        """시험 정의와 문제를 불러오고 시스템 점검을 수행한다."""
        self._require_open()
        if self._machine.status != SessionStatus.NOT_STARTED:
            raise InvalidTransition("prepare", self._machine.status.value)

        self._exam = await self._client.get_exam(self.exam_id)
        self._settings = ExamSettings.model_validate(self._exam.get("settings") or {})
        raw_questions = await self._client.get_questions(self.exam_id)
        questions = [Question.model_validate(q) for q in raw_questions]
        if self._settings.exam.randomize_questions:
            self._rng.shuffle(questions)
        self._questions = questions
        logger.info(f"시험 로드: exam={self.exam_id}, 문제 {len(questions)}개")

        if self._monitor is not None:
            await self._monitor.stop()
        self._monitor = IntegrityMonitor(
            self._settings,
            self._bus,
            self._media,
            self._uploader,
            network_probe=self._network_probe,
            face_check=self._face_check,
            sleep=self._sleep,
            clock=self._clock,
        )
        if self._fullscreen:
            # 모니터 생성 전에 보고된 전체화면 상태
            self._monitor.handle_signal(Signal.FULLSCREEN_ENTER)
        self._pipeline = SubmissionPipeline(
            self._client,
            self._settings,
            timeout=self._client.timeout,
            metrics_provider=self._interview_metrics,
        )
        return await self._monitor.system_check()

    async def system_check(self) -> SystemCheckResult:
        if self._monitor is None:
            return await self.prepare()
        return await self._monitor.system_check()

    # ── 시작 ─────────────────────────────────────────────────────────────────

    async def start(self) -> ExamSession:
        """
        Raises:
            InvalidTransition:     이미 시작된 세션.
            CapabilityUnavailable: 필수 감독 장치 점검 실패.
            httpx.HTTPError:       백엔드 start 호출 실패.
        """
        self._require_open()
        if self._machine.status != SessionStatus.NOT_STARTED:
            raise InvalidTransition("start", self._machine.status.value)
        if self._monitor is None:
            await self.prepare()

        self._monitor.require_ready()
        await self._monitor.start()

        try:
            data = await self._client.start_exam(self.exam_id)
            duration = data.get("timeRemaining")
            if duration is None:
                duration = int(self._exam.get("duration") or 0) * 60
            self._machine.start(str(data["sessionId"]), self._questions, int(duration))
        except Exception:
            # 시작 실패: 장치 해제. 다음 start() 는 prepare() 부터 다시 수행한다
            logger.warning(f"시험 시작 실패 — 감시 해제: exam={self.exam_id}")
            await self._monitor.stop()
            self._monitor = None
            self._pipeline = None
            raise

        self._timer = CountdownTimer(
            self._bus,
            self._machine.remaining_seconds,
            warnings=self._settings.exam.time_warnings,
            sleep=self._sleep,
        )
        self._timer.start()
        self._tracker.begin()
        if self._machine.remaining_seconds == 0:
            # 남은 시간 없이 재개된 세션: 타이머는 tick 하지 않으므로 여기서 만료시킨다
            self._machine.tick(0)
        return self._machine.snapshot()

    # ── 응시 조작 ────────────────────────────────────────────────────────────

    def record_answer(self, question_id: int, value: Any) -> None:
        self._machine.record_answer(question_id, value)

    def toggle_flag(self, question_id: int) -> bool:
        return self._machine.toggle_flag(question_id)

    def navigate(self, index: int, screenshot: Optional[bytes] = None) -> int:
        """문제 이동. 면접 모드에서는 응답 시간을 기록하고 스크린샷을 업로드한다."""
        before = self._machine.current_index
        after = self._machine.navigate(index)
        if after != before:
            self._on_question_left(before, screenshot)
        return after

    def next_question(self, screenshot: Optional[bytes] = None) -> int:
        return self.navigate(self._machine.current_index + 1, screenshot)

    def previous_question(self) -> int:
        return self.navigate(self._machine.current_index - 1)

    def _on_question_left(self, index: int, screenshot: Optional[bytes]) -> None:
        if not self._settings.exam.interview_mode:
            return
        self._tracker.lap()
        if screenshot and self._settings.interview.save_screenshots:
            question_id = self._machine.questions[index].id
            self._uploader.fire_and_forget(self._uploader.upload_screenshot(question_id, screenshot))

    def handle_signal(self, signal: Signal, detail: Optional[Dict[str, Any]] = None) -> Optional[Violation]:
        if signal in (Signal.FULLSCREEN_ENTER, Signal.FULLSCREEN_EXIT):
            self._fullscreen = signal == Signal.FULLSCREEN_ENTER
        if self._monitor is None:
            return None
        return self._monitor.handle_signal(signal, detail)

    def record_violation(self, violation: Violation) -> bool:
        return self._machine.record_violation(violation)

    def acknowledge_violation(self) -> None:
        if self._monitor is not None:
            self._monitor.acknowledge()

    # ── 제출 ─────────────────────────────────────────────────────────────────

    async def submit(self) -> ServerAck:
        """
        수동 제출 (재시도 포함). Completed 이후 호출은 기존 응답을 그대로 돌려준다.

        Raises:
            SubmissionError:   전송 실패. 같은 스냅샷으로 다시 호출하면 된다.
            InvalidTransition: 시작 전이거나 Abandoned.
        """
        if self._pipeline is None:
            raise InvalidTransition("submit", self._machine.status.value)
        try:
            ack = await self._pipeline.submit(self._machine)
        except AlreadySubmitted as e:
            return ServerAck.model_validate(e.ack or {})
        except SubmissionError as e:
            self._last_error = str(e)
            raise
        self._last_error = None
        await self._finish()
        return ack

    async def _auto_submit(self) -> None:
        try:
            await self._pipeline.submit_with_retry(self._machine, sleep=self._sleep)
        except AlreadySubmitted:
            return
        except SubmissionError as e:
            self._last_error = str(e)
            logger.error(f"자동 제출 실패 — 수동 재시도 필요: {e}")
            return
        self._last_error = None
        await self._finish()

    async def _finish(self) -> None:
        """제출 완료 후 감시/타이머 정리. HTTP 클라이언트는 close() 에서 닫는다."""
        if self._timer is not None:
            await self._timer.stop()
        if self._monitor is not None:
            await self._monitor.stop(self._recording_metrics())

    # ── 이벤트 핸들러 ────────────────────────────────────────────────────────

    def _on_tick(self, event: Tick) -> None:
        self._machine.tick(event.seconds)

    def _on_violation(self, event: ViolationDetected) -> None:
        self._machine.record_violation(event.violation)

    def _on_time_warning(self, event: TimeWarning) -> None:
        self._warnings.append(event.threshold)

    def _on_monitor_status(self, event: MonitorStatusChanged) -> None:
        self._monitor_status = event.status

    def _on_time_expired(self, event: TimeExpired) -> None:
        if self._machine.status not in ACTIVE_STATUSES:
            return
        if not self._settings.exam.auto_submit:
            # 자동 제출 안 함: 답안만 잠그고 제출은 응시자에게 맡긴다
            self._machine.lock_answers()
            logger.info(f"시간 종료 — 자동 제출 비활성, 답안 잠금: session={event.session_id}")
            return
        if self._auto_submit_task is not None:
            return
        self.auto_submit_count += 1
        logger.info(f"시간 종료 — 자동 제출: session={event.session_id}")
        self._auto_submit_task = asyncio.create_task(self._auto_submit(), name="auto-submit")

    # ── 지표 ─────────────────────────────────────────────────────────────────

    def _interview_metrics(self, session: ExamSession) -> InterviewMetrics:
        return build_interview_metrics(
            session.questions,
            session.answers,
            self._tracker,
            session.duration_seconds,
            session.remaining_seconds,
        )

    def _recording_metrics(self) -> Optional[Dict[str, Any]]:
        if not self._settings.exam.interview_mode:
            return None
        return self._interview_metrics(self._machine.snapshot()).model_dump(by_alias=True, mode="json")

    # ── 렌더링용 스냅샷 ──────────────────────────────────────────────────────

    def snapshot(self) -> Dict[str, Any]:
        session = self._machine.snapshot()
        reveal = session.status == SessionStatus.COMPLETED and self._settings.exam.show_correct_answers

        current = None
        if session.questions:
            q = session.questions[session.current_index]
            current = q.model_dump(by_alias=True, exclude=None if reveal else {"correct_answer", "explanation"})

        check = self._monitor.system_check_result if self._monitor else None
        return {
            "examId": session.exam_id,
            "sessionId": session.session_id,
            "status": session.status.value,
            "currentIndex": session.current_index,
            "total": len(session.questions),
            "question": current,
            "savedAnswer": session.answers.get(current["id"]) if current else None,
            "remainingSeconds": session.remaining_seconds,
            "timeDisplay": format_time(session.remaining_seconds),
            "lowTime": is_low_time(session.remaining_seconds),
            "timeExpired": session.time_expired,
            "answersLocked": session.answers_locked,
            "answeredCount": len(session.answers),
            "flaggedCount": len(session.flagged_question_ids),
            "flagged": sorted(session.flagged_question_ids),
            "questionStatuses": [
                self._machine.question_status(i) for i in range(len(session.questions))
            ],
            "violationCount": len(session.violations),
            "monitorStatus": self._monitor_status,
            "systemCheck": check.summary() if check else {},
            "canStart": bool(check and check.can_start),
            "timeWarnings": list(self._warnings),
            "lastError": self._last_error,
        }

    def results(self) -> Dict[str, Any]:
        session = self._machine.snapshot()
        if session.status != SessionStatus.COMPLETED:
            raise InvalidTransition("results", session.status.value)

        result: Dict[str, Any] = {
            "sessionId": session.session_id,
            "ack": session.ack,
            "total": len(session.questions),
            "answeredCount": len(session.answers),
            "violationCount": len(session.violations),
        }
        if self._settings.exam.show_correct_answers:
            incorrect = get_incorrect_questions(session.questions, session.answers)
            result["localScore"] = calculate_score(session.questions, session.answers)
            result["incorrectQuestions"] = [
                {**q.model_dump(by_alias=True), "userAnswer": session.answers.get(q.id)}
                for q in incorrect
            ]
        return result

    # ── 정리 ─────────────────────────────────────────────────────────────────

    async def close(self) -> None:
        """
        모든 자원 해제. 제출되지 않은 진행 중 세션은 Abandoned 로 종료한다.
        진행 중인 제출 요청은 타임아웃 범위 안에서 끝나기를 기다린다.
        """
        if self._closed:
            return
        self._closed = True

        if self._auto_submit_task is not None and not self._auto_submit_task.done():
            self._auto_submit_task.cancel()
            await asyncio.gather(self._auto_submit_task, return_exceptions=True)

        inflight = self._pipeline.in_flight(self._machine.session_id) if self._pipeline else None
        if inflight is not None:
            await asyncio.wait({inflight}, timeout=self._client.timeout)

        try:
            if self._timer is not None:
                await self._timer.stop()
            if self._machine.status in ACTIVE_STATUSES:
                self._machine.abandon()
            if self._monitor is not None:
                await self._monitor.stop(self._recording_metrics())
            await self._uploader.drain()
        finally:
            if self._owns_client:
                await self._client.close()
            self._bus.clear()
        logger.info(f"세션 정리 완료: exam={self.exam_id}, status={self._machine.status.value}")

    def _require_open(self) -> None:
        if self._closed:
            raise InvalidTransition("use", "Closed")
