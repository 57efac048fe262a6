"""
services/integrity/monitor.py

부정행위 감시 모니터.

상태 전이:
    Checking → Ready → Monitoring ⇄ Violation
    Checking → Error   (필수 장치 확보 실패 — 시험 시작 불가)

- low 위반:         3초 후 자동으로 Monitoring 복귀 (기록은 영구 보존, 표시만 복귀)
- medium/high 위반: acknowledge() 또는 다음 정상 신호(포커스 복귀 등)까지 Violation 유지
- 위반 때문에 시험을 강제 종료하지 않는다. 기록하고 노출만 한다.

모니터는 세션 상태를 읽거나 바꾸지 않는다. ViolationDetected 이벤트를 발행할 뿐.
미디어 스트림, 주기 작업은 모두 이 객체가 소유하고 stop() 한 번으로 전부 해제한다.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from pydantic import BaseModel, Field

from config import LOW_SEVERITY_COOLDOWN, VIOLATION_RATE_WINDOW
from cbt_session.errors import CapabilityUnavailable, InvalidTransition
from cbt_session.models.session_state import Severity, Violation
from cbt_session.models.settings_model import ExamSettings
from cbt_session.services.artifacts import ArtifactUploader
from cbt_session.services.events import EventBus, MonitorStatusChanged, ViolationDetected
from cbt_session.services.integrity.detectors import (
    AIFrameAnalysisDetector,
    AudioLevelDetector,
    ClipboardDetector,
    Detection,
    FaceDetectionDetector,
    FullscreenDetector,
    NetworkStatusDetector,
    PeriodicDetector,
    RightClickDetector,
    Signal,
    SignalDetector,
    TabVisibilityDetector,
    WindowFocusDetector,
)
from cbt_session.services.integrity.media import (
    CAMERA,
    MICROPHONE,
    SCREEN,
    MediaProvider,
    MediaScope,
    NullMediaProvider,
    probe,
)

logger = logging.getLogger(__name__)

NETWORK = "network"
FULLSCREEN = "fullscreen"


class MonitorStatus(str, Enum):
    CHECKING = "checking"
    READY = "ready"
    MONITORING = "monitoring"
    VIOLATION = "violation"
    ERROR = "error"


class CapabilityCheck(BaseModel):
    name: str
    mandatory: bool = False
    available: bool = False


class SystemCheckResult(BaseModel):
    """시스템 점검 요약. 점검 대상이 아닌 장치는 checks 에 없다."""

    checks: Dict[str, CapabilityCheck] = Field(default_factory=dict)

    @property
    def failed_mandatory(self) -> List[str]:
        return [c.name for c in self.checks.values() if c.mandatory and not c.available]

    @property
    def unavailable(self) -> List[str]:
        return [c.name for c in self.checks.values() if not c.available]

    @property
    def can_start(self) -> bool:
        return not self.failed_mandatory

    def summary(self) -> Dict[str, str]:
        return {
            name: ("ok" if c.available else "unavailable")
            for name, c in self.checks.items()
        }


class IntegrityMonitor:
    """
    Args:
        settings:      시험 설정. 감지기 활성화 여부를 결정.
        bus:           이벤트 채널.
        media:         장치 제공자. 없으면 모든 장치를 사용할 수 없는 것으로 본다.
        uploader:      AI 분석/녹화 업로드 (best-effort).
        network_probe: 네트워크 점검 함수. 없으면 점검 통과로 본다.
        face_check:    얼굴 판정 함수 (프레임 → bool).
        sleep, clock:  테스트에서 교체 가능한 시간 함수.
    """

    def __init__(
        self,
        settings: ExamSettings,
        bus: EventBus,
        media: Optional[MediaProvider] = None,
        uploader: Optional[ArtifactUploader] = None,
        *,
        network_probe: Optional[Callable[[], bool]] = None,
        face_check: Optional[Callable[[Any], bool]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rate_window: float = VIOLATION_RATE_WINDOW,
        cooldown: float = LOW_SEVERITY_COOLDOWN,
    ):
        self._settings = settings
        self._bus = bus
        self._media = media or NullMediaProvider()
        self._uploader = uploader
        self._network_probe = network_probe
        self._sleep = sleep
        self._clock = clock
        self._rate_window = rate_window
        self._cooldown = cooldown

        self._status = MonitorStatus.CHECKING
        self._check: Optional[SystemCheckResult] = None
        self._signal_detectors = self._build_signal_detectors()
        self._periodic_detectors = self._build_periodic_detectors(face_check)
        self._recorders = self._build_recorders()

        self._scope: Optional[MediaScope] = None
        self._tasks: Set[asyncio.Task] = set()
        self._cooldown_task: Optional[asyncio.Task] = None
        self._last_emitted: Dict[Tuple[str, str], float] = {}
        self._sticky = False
        self._fullscreen_active = False
        self._active = False
        self._stopped = False

    # ── 구성 ─────────────────────────────────────────────────────────────────

    def _build_signal_detectors(self) -> List[SignalDetector]:
        p, exam = self._settings.proctoring, self._settings.exam
        if not p.enabled:
            return []

        detectors: List[SignalDetector] = []
        if p.tab_switch_detection:
            detectors += [TabVisibilityDetector(), WindowFocusDetector()]
        if exam.prevent_copy_paste:
            detectors.append(ClipboardDetector())
        if exam.disable_right_click:
            detectors.append(RightClickDetector())
        if exam.fullscreen_required:
            detectors.append(FullscreenDetector())
        detectors.append(NetworkStatusDetector())
        return detectors

    def _build_periodic_detectors(self, face_check) -> List[PeriodicDetector]:
        p = self._settings.proctoring
        if not p.enabled:
            return []

        detectors: List[PeriodicDetector] = []
        if p.face_detection:
            detectors.append(FaceDetectionDetector(face_check))
        if p.microphone_monitoring and p.voice_analysis:
            detectors.append(AudioLevelDetector())
        if p.ai_monitoring and self._uploader is not None:
            detectors.append(AIFrameAnalysisDetector(self._uploader.analyze_chunk))
        return detectors

    def _build_recorders(self) -> List[Tuple[str, bool]]:
        """(장치, 면접 녹화 여부). 중지 시 녹화본을 업로드한다."""
        recorders = []
        if self._settings.proctoring.enabled and self._settings.proctoring.screen_recording:
            recorders.append((SCREEN, False))
        if self._settings.exam.interview_mode and self._settings.interview.record_video:
            recorders.append((CAMERA, True))
        return recorders

    def _required_capabilities(self) -> Dict[str, bool]:
        """점검 대상 장치 → 필수 여부."""
        p, exam = self._settings.proctoring, self._settings.exam
        required: Dict[str, bool] = {}
        if p.enabled:
            if p.webcam_required or p.face_detection or p.ai_monitoring:
                required[CAMERA] = p.webcam_required
            if p.microphone_monitoring:
                required[MICROPHONE] = True
            if p.screen_recording:
                required[SCREEN] = True
            required[NETWORK] = False
            if exam.fullscreen_required:
                required[FULLSCREEN] = True
        if exam.interview_mode and self._settings.interview.record_video:
            required.setdefault(CAMERA, False)
        return required

    # ── 조회 ─────────────────────────────────────────────────────────────────

    @property
    def status(self) -> MonitorStatus:
        return self._status

    @property
    def active(self) -> bool:
        return self._active

    @property
    def system_check_result(self) -> Optional[SystemCheckResult]:
        return self._check

    @property
    def can_start(self) -> bool:
        return self._check is not None and self._check.can_start

    @property
    def detector_names(self) -> List[str]:
        return [d.name for d in self._signal_detectors] + [d.name for d in self._periodic_detectors]

    # ── 시스템 점검 ──────────────────────────────────────────────────────────

    async def system_check(self) -> SystemCheckResult:
        """
        시작 전 1회 점검. 선택 장치 실패는 unavailable 로 보고만 하고,
        필수 장치 실패면 Error 상태가 되어 시험을 시작할 수 없다.
        """
        if self._active:
            raise InvalidTransition("system_check", self._status.value)
        self._set_status(MonitorStatus.CHECKING)

        result = SystemCheckResult()
        for name, mandatory in self._required_capabilities().items():
            if name == NETWORK:
                available = self._network_probe() if self._network_probe else True
            elif name == FULLSCREEN:
                available = self._fullscreen_active
            else:
                available = await probe(self._media, name)
            result.checks[name] = CapabilityCheck(name=name, mandatory=mandatory, available=available)

        self._check = result
        if result.unavailable:
            logger.warning(f"시스템 점검 — 사용 불가: {result.unavailable}")
        self._set_status(MonitorStatus.READY if result.can_start else MonitorStatus.ERROR)
        return result

    def require_ready(self) -> None:
        """시험 시작 가능 여부 확인. 필수 장치 실패 시 CapabilityUnavailable."""
        if self._check is None:
            raise InvalidTransition("start", self._status.value)
        failed = self._check.failed_mandatory
        if failed:
            raise CapabilityUnavailable(", ".join(failed), "시스템 점검 실패")

    # ── 시작/중지 ────────────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._active:
            return
        if self._stopped:
            raise InvalidTransition("start", "stopped")
        if self._check is None:
            await self.system_check()
        self.require_ready()

        self._scope = MediaScope(self._media)
        try:
            await self._acquire_streams()
        except CapabilityUnavailable:
            await self._scope.close()
            self._scope = None
            self._set_status(MonitorStatus.ERROR)
            raise

        self._active = True
        for detector in self._periodic_detectors:
            if detector.stream is None:
                continue
            task = asyncio.create_task(self._run_periodic(detector), name=f"proctor-{detector.name}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        self._set_status(MonitorStatus.MONITORING)
        logger.info(f"감시 시작: {self.detector_names}")

    async def _acquire_streams(self) -> None:
        checks = self._check.checks if self._check else {}

        for detector in self._periodic_detectors:
            check = checks.get(detector.requires)
            if check is None or not check.available:
                logger.warning(f"{detector.name}: {detector.requires} 사용 불가 — 감지기 비활성")
                continue
            try:
                detector.attach(await self._scope.acquire(detector.requires))
            except CapabilityUnavailable:
                if check.mandatory:
                    raise
                logger.warning(f"{detector.name}: {detector.requires} 획득 실패 — 감지기 비활성")

        for kind, _interview in self._recorders:
            check = checks.get(kind)
            if check is None or not check.available:
                continue
            try:
                await self._scope.acquire(kind, key=f"recording:{kind}")
            except CapabilityUnavailable:
                if check.mandatory:
                    raise
                logger.warning(f"녹화 장치 획득 실패: {kind}")

    async def stop(self, recording_metrics: Optional[Dict[str, Any]] = None) -> None:
        """
        모든 주기 작업 취소, 녹화본 업로드 예약, 미디어 해제. 여러 번 호출해도 안전.
        """
        if self._stopped:
            return
        self._stopped = True
        self._active = False

        tasks = list(self._tasks)
        if self._cooldown_task is not None:
            tasks.append(self._cooldown_task)
            self._cooldown_task = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if self._scope is not None:
            try:
                await self._flush_recordings(recording_metrics)
            finally:
                await self._scope.close()
                self._scope = None
        logger.info("감시 중지, 미디어 해제 완료")

    async def _flush_recordings(self, metrics: Optional[Dict[str, Any]]) -> None:
        if self._uploader is None:
            return
        for kind, interview in self._recorders:
            stream = self._scope.get(f"recording:{kind}")
            if stream is None:
                continue
            data = await stream.read()
            if not data:
                continue
            self._uploader.fire_and_forget(
                self._uploader.upload_recording(
                    data, interview=interview, metrics=metrics if interview else None
                )
            )

    # ── 신호 처리 ────────────────────────────────────────────────────────────

    def handle_signal(self, signal: Signal, detail: Optional[Dict[str, Any]] = None) -> Optional[Violation]:
        """브라우저 신호 처리. 감시 중이 아니면 전체화면 상태만 갱신한다."""
        if signal == Signal.FULLSCREEN_ENTER:
            self._fullscreen_active = True
        elif signal == Signal.FULLSCREEN_EXIT:
            self._fullscreen_active = False

        if not self._active:
            return None

        recorded = None
        for detector in self._signal_detectors:
            if signal in detector.recoveries:
                self._recover(detector.name)
                continue
            detection = detector.on_signal(signal, detail)
            if detection is not None:
                recorded = self._report(detector.name, detection) or recorded
        return recorded

    def acknowledge(self) -> None:
        """감독자/응시자가 위반 경고를 확인. 기록은 그대로."""
        if self._status == MonitorStatus.VIOLATION:
            self._sticky = False
            self._set_status(MonitorStatus.MONITORING)

    def _recover(self, detector_name: str) -> None:
        if self._status == MonitorStatus.VIOLATION:
            logger.info(f"정상 신호 수신 ({detector_name}) — 감시 상태 복귀")
            self._sticky = False
            self._set_status(MonitorStatus.MONITORING)

    def _report(self, detector_name: str, detection: Detection) -> Optional[Violation]:
        key = (detector_name, detection.type)
        now = self._clock()
        last = self._last_emitted.get(key)
        if last is not None and now - last < self._rate_window:
            logger.debug(f"위반 rate limit: {key}")
            return None
        self._last_emitted[key] = now

        violation = Violation(
            type=detection.type,
            severity=detection.severity,
            source=detector_name,
            metadata=detection.metadata,
        )
        logger.warning(f"위반 감지: {violation.type} ({violation.severity.value})")
        self._bus.publish(ViolationDetected(violation=violation))

        if detection.severity == Severity.LOW:
            if not self._sticky:
                self._schedule_cooldown()
        else:
            self._sticky = True
            self._cancel_cooldown()
        self._set_status(MonitorStatus.VIOLATION)
        return violation

    def _schedule_cooldown(self) -> None:
        self._cancel_cooldown()
        self._cooldown_task = asyncio.create_task(self._cooldown_reset(), name="proctor-cooldown")

    def _cancel_cooldown(self) -> None:
        if self._cooldown_task is not None:
            self._cooldown_task.cancel()
            self._cooldown_task = None

    async def _cooldown_reset(self) -> None:
        await self._sleep(self._cooldown)
        if self._active and not self._sticky and self._status == MonitorStatus.VIOLATION:
            self._set_status(MonitorStatus.MONITORING)

    async def _run_periodic(self, detector: PeriodicDetector) -> None:
        while self._active:
            await self._sleep(detector.interval)
            if not self._active:
                break
            try:
                detections = await detector.sample()
            except Exception as e:
                # 감시 산출물 오류는 시험 진행에 영향 없음
                logger.warning(f"{detector.name} 샘플링 실패: {e}")
                continue
            for detection in detections:
                self._report(detector.name, detection)

    def _set_status(self, new_status: MonitorStatus) -> None:
        if new_status == self._status:
            return
        previous, self._status = self._status, new_status
        self._bus.publish(MonitorStatusChanged(status=new_status.value, previous=previous.value))
