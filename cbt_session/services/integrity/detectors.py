"""
services/integrity/detectors.py

부정행위 감지기 모음.

- 신호 감지기 (edge-triggered): 브라우저 이벤트(탭 전환, 포커스, 클립보드, 우클릭,
  전체화면, 네트워크)를 받아 즉시 판정한다. 심각도는 감지 유형별로 고정.
- 주기 감지기 (sampled): 얼굴 감지, 오디오 레벨, AI 프레임 분석.
  일정 간격으로 샘플링하므로 같은 상태가 계속되면 위반도 반복 기록된다 (연속 감시).
  폭주 방지는 모니터의 rate limit 이 담당.

감지 정확도는 다루지 않는다. 얼굴 판정 함수는 주입 가능.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from config import (
    AI_CHUNK_INTERVAL,
    AUDIO_CHECK_INTERVAL,
    AUDIO_LEVEL_THRESHOLD,
    FACE_CHECK_INTERVAL,
)
from cbt_session.models.session_state import Severity
from cbt_session.services.integrity.media import CAMERA, MICROPHONE, MediaStream

logger = logging.getLogger(__name__)


class Signal(str, Enum):
    """브라우저에서 전달되는 환경 신호."""

    VISIBILITY_HIDDEN = "visibility_hidden"
    VISIBILITY_VISIBLE = "visibility_visible"
    BEFORE_UNLOAD = "before_unload"
    KEY_SHORTCUT = "key_shortcut"
    WINDOW_BLUR = "window_blur"
    WINDOW_FOCUS = "window_focus"
    COPY = "copy"
    CUT = "cut"
    PASTE = "paste"
    CONTEXT_MENU = "context_menu"
    FULLSCREEN_EXIT = "fullscreen_exit"
    FULLSCREEN_ENTER = "fullscreen_enter"
    OFFLINE = "offline"
    ONLINE = "online"


@dataclass(frozen=True)
class Detection:
    type: str
    severity: Severity
    metadata: Dict[str, Any] = field(default_factory=dict)


# ── 신호 감지기 ──────────────────────────────────────────────────────────────

class SignalDetector:
    name: str = ""
    triggers: FrozenSet[Signal] = frozenset()
    # 위반 상태에서 Monitoring 으로 돌아가는 정상 신호
    recoveries: FrozenSet[Signal] = frozenset()
    violation_type: str = ""
    severity: Severity = Severity.MEDIUM

    def on_signal(self, signal: Signal, detail: Optional[Dict[str, Any]] = None) -> Optional[Detection]:
        if signal in self.triggers:
            return Detection(self.violation_type, self.severity, dict(detail or {}))
        return None


class TabVisibilityDetector(SignalDetector):
    name = "tab_visibility"
    triggers = frozenset({Signal.VISIBILITY_HIDDEN, Signal.BEFORE_UNLOAD})
    recoveries = frozenset({Signal.VISIBILITY_VISIBLE})
    violation_type = "tab_switch"
    severity = Severity.MEDIUM

    def __init__(self):
        self.switch_count = 0

    def on_signal(self, signal: Signal, detail: Optional[Dict[str, Any]] = None) -> Optional[Detection]:
        if signal == Signal.KEY_SHORTCUT:
            # Ctrl/Cmd+Tab/W/R/T, F12 등 이탈/개발자도구 단축키
            return Detection("suspicious_activity", Severity.HIGH, dict(detail or {}))
        if signal in self.triggers:
            self.switch_count += 1
            meta = dict(detail or {})
            meta["count"] = self.switch_count
            return Detection(self.violation_type, self.severity, meta)
        return None


class WindowFocusDetector(SignalDetector):
    name = "window_focus"
    triggers = frozenset({Signal.WINDOW_BLUR})
    recoveries = frozenset({Signal.WINDOW_FOCUS})
    violation_type = "window_blur"
    severity = Severity.LOW


class ClipboardDetector(SignalDetector):
    name = "clipboard"
    triggers = frozenset({Signal.COPY, Signal.CUT, Signal.PASTE})
    violation_type = "copy_paste_attempt"
    severity = Severity.HIGH


class RightClickDetector(SignalDetector):
    name = "right_click"
    triggers = frozenset({Signal.CONTEXT_MENU})
    violation_type = "right_click_attempt"
    severity = Severity.LOW


class FullscreenDetector(SignalDetector):
    name = "fullscreen"
    triggers = frozenset({Signal.FULLSCREEN_EXIT})
    recoveries = frozenset({Signal.FULLSCREEN_ENTER})
    violation_type = "fullscreen_exit"
    severity = Severity.HIGH


class NetworkStatusDetector(SignalDetector):
    name = "network_status"
    triggers = frozenset({Signal.OFFLINE})
    recoveries = frozenset({Signal.ONLINE})
    violation_type = "network_disconnection"
    severity = Severity.HIGH


# ── 주기 감지기 ──────────────────────────────────────────────────────────────

def _frame_has_content(frame: Any) -> bool:
    return bool(frame)


class PeriodicDetector:
    name: str = ""
    requires: str = CAMERA
    interval: float = 1.0

    def __init__(self):
        self.stream: Optional[MediaStream] = None

    def attach(self, stream: MediaStream) -> None:
        self.stream = stream

    async def sample(self) -> List[Detection]:
        raise NotImplementedError


class FaceDetectionDetector(PeriodicDetector):
    name = "face_detection"
    requires = CAMERA
    interval = FACE_CHECK_INTERVAL

    def __init__(self, face_check: Optional[Callable[[Any], bool]] = None):
        super().__init__()
        self._face_check = face_check or _frame_has_content

    async def sample(self) -> List[Detection]:
        if self.stream is None:
            return []
        frame = await self.stream.read()
        if self._face_check(frame):
            return []
        return [Detection("face_not_detected", Severity.MEDIUM)]


class AudioLevelDetector(PeriodicDetector):
    name = "audio_level"
    requires = MICROPHONE
    interval = AUDIO_CHECK_INTERVAL

    def __init__(self, threshold: float = AUDIO_LEVEL_THRESHOLD):
        super().__init__()
        self.threshold = threshold

    async def sample(self) -> List[Detection]:
        if self.stream is None:
            return []
        level = float(await self.stream.read() or 0.0)
        if level > self.threshold:
            return [Detection("unusual_audio_detected", Severity.LOW, {"level": level})]
        return []


class AIFrameAnalysisDetector(PeriodicDetector):
    """
    영상 청크를 /api/proctoring/analyze 로 보내고, 서버가 판정한 위반을 그대로 기록한다.
    심각도가 서버 값이라 고정되지 않는 유일한 감지기. 분석 실패는 빈 결과로 취급.
    """

    name = "ai_frame_analysis"
    requires = CAMERA
    interval = AI_CHUNK_INTERVAL

    def __init__(self, analyze: Callable):
        super().__init__()
        self._analyze = analyze

    async def sample(self) -> List[Detection]:
        if self.stream is None:
            return []
        chunk = await self.stream.read()
        if not chunk:
            return []

        detections = []
        for item in await self._analyze(chunk):
            try:
                detections.append(Detection(str(item["type"]), Severity(item["severity"])))
            except (KeyError, TypeError, ValueError):
                logger.warning(f"AI 분석 결과 형식 오류, 무시: {item}")
        return detections
