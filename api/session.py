"""
api/session.py — 멀티유저 인메모리 세션 (쿠키 기반)

각 사용자에게 UUID 세션 ID를 발급하고, 세션별로 시험 컨트롤러와 미디어 제공자를 보관.
TTL(기본 1시간) 경과 시 만료. 만료/초기화된 컨트롤러는 호출부가 close_all() 로 정리한다.
"""

import asyncio
import logging
import threading
import time
import uuid
from typing import Any, Iterable

from config import SESSION_TTL
from cbt_session.services.controller import ExamSessionController
from cbt_session.services.integrity.media import PushMediaProvider

logger = logging.getLogger(__name__)

_lock = threading.Lock()
_sessions: dict[str, dict[str, Any]] = {}
_timestamps: dict[str, float] = {}
# 만료됐지만 아직 close 되지 않은 컨트롤러
_retired: list[ExamSessionController] = []


def _new_state() -> dict[str, Any]:
    return {
        "controller": None,
        "media": PushMediaProvider(),
    }


def _retire(state: dict[str, Any]) -> None:
    if state.get("controller") is not None:
        _retired.append(state["controller"])


def create_session() -> str:
    """새 세션을 생성하고 세션 ID를 반환."""
    sid = uuid.uuid4().hex
    with _lock:
        _sessions[sid] = _new_state()
        _timestamps[sid] = time.time()
    return sid


def get_session(sid: str) -> dict[str, Any] | None:
    """세션 ID로 세션 데이터를 가져옴. 만료되었거나 없으면 None."""
    with _lock:
        if sid not in _sessions:
            return None
        if time.time() - _timestamps[sid] > SESSION_TTL:
            _retire(_sessions.pop(sid))
            del _timestamps[sid]
            return None
        _timestamps[sid] = time.time()  # 접근 시 갱신
        return _sessions[sid]


def get(sid: str, key: str, default=None):
    """세션에서 값 읽기."""
    session = get_session(sid)
    if session is None:
        return default
    return session.get(key, default)


def put(sid: str, key: str, value) -> None:
    """세션에 값 쓰기."""
    with _lock:
        if sid in _sessions:
            _sessions[sid][key] = value
            _timestamps[sid] = time.time()


def reset(sid: str) -> ExamSessionController | None:
    """세션 초기화. 기존 컨트롤러를 반환하므로 호출부에서 close 해야 한다."""
    with _lock:
        if sid not in _sessions:
            return None
        old = _sessions[sid].get("controller")
        _sessions[sid] = _new_state()
        _timestamps[sid] = time.time()
        return old


def cleanup_expired() -> list[ExamSessionController]:
    """만료된 세션을 정리. close 가 필요한 컨트롤러 목록 반환."""
    now = time.time()
    with _lock:
        expired = [sid for sid, ts in _timestamps.items() if now - ts > SESSION_TTL]
        for sid in expired:
            _retire(_sessions.pop(sid))
            del _timestamps[sid]
        controllers = list(_retired)
        _retired.clear()
    return controllers


def clear() -> list[ExamSessionController]:
    """서버 종료 시 전체 정리."""
    with _lock:
        controllers = list(_retired)
        controllers += [s["controller"] for s in _sessions.values() if s.get("controller") is not None]
        _retired.clear()
        _sessions.clear()
        _timestamps.clear()
    return controllers


async def close_all(controllers: Iterable[ExamSessionController]) -> None:
    results = await asyncio.gather(*(c.close() for c in controllers), return_exceptions=True)
    for result in results:
        if isinstance(result, Exception):
            logger.error(f"세션 정리 실패: {result!r}")
