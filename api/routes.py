"""
api/routes.py — FastAPI 엔드포인트 (로컬 브라우저 UI ↔ 시험 세션 컨트롤러)
"""

import base64
import binascii
from typing import Any, Optional

import httpx
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

import api.session as session
from cbt_session.errors import (
    CapabilityUnavailable,
    ExamSessionError,
    InvalidTransition,
    SubmissionError,
)
from cbt_session.services.controller import ExamSessionController
from cbt_session.services.integrity.detectors import Signal
from cbt_session.services.integrity.media import CAMERA, MEDIA_KINDS, MICROPHONE, SCREEN, PushMediaProvider

router = APIRouter()

# ── Pydantic request bodies ──────────────────────────────────────────────────

class SystemCheckBody(BaseModel):
    exam_id: str
    camera: bool = False
    microphone: bool = False
    screen: bool = False
    fullscreen: bool = False

class SaveAnswerBody(BaseModel):
    question_id: int
    answer: Any = None

class FlagBody(BaseModel):
    question_id: int

class NavigateBody(BaseModel):
    index: int = 0
    screenshot: Optional[str] = None   # base64 PNG (면접 모드)

class SignalBody(BaseModel):
    signal: Signal
    detail: dict[str, Any] = Field(default_factory=dict)

class MediaSampleBody(BaseModel):
    level: Optional[float] = None      # 마이크 레벨
    data: Optional[str] = None         # base64 영상/화면 청크


# ── 헬퍼 ─────────────────────────────────────────────────────────────────────

def _sid(request: Request) -> str:
    return request.state.session_id


def _to_http(e: Exception) -> HTTPException:
    if isinstance(e, InvalidTransition):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, CapabilityUnavailable):
        return HTTPException(status_code=412, detail=str(e))
    if isinstance(e, SubmissionError):
        return HTTPException(
            status_code=503,
            detail={"message": str(e), "retryable": e.retryable},
        )
    if isinstance(e, httpx.HTTPError):
        return HTTPException(status_code=502, detail="시험 서버와 통신하지 못했습니다. 잠시 후 다시 시도해 주세요.")
    return HTTPException(status_code=400, detail=str(e))


def _controller(request: Request) -> ExamSessionController:
    controller = session.get(_sid(request), "controller")
    if controller is None or controller.closed:
        raise HTTPException(status_code=404, detail="시험 세션이 없습니다.")
    return controller


def _decode(data: Optional[str]) -> Optional[bytes]:
    if not data:
        return None
    try:
        return base64.b64decode(data, validate=True)
    except binascii.Error:
        raise HTTPException(status_code=400, detail="잘못된 base64 데이터입니다.")


# ── 엔드포인트 ───────────────────────────────────────────────────────────────

@router.post("/api/system-check")
async def system_check(body: SystemCheckBody, request: Request):
    """브라우저가 확보한 장치 권한을 반영하고 시스템 점검을 수행한다."""
    sid = _sid(request)
    media: PushMediaProvider = session.get(sid, "media")
    media.set_available(CAMERA, body.camera)
    media.set_available(MICROPHONE, body.microphone)
    media.set_available(SCREEN, body.screen)

    controller: Optional[ExamSessionController] = session.get(sid, "controller")
    if controller is not None and (controller.exam_id != body.exam_id or controller.closed):
        await session.close_all([controller])
        controller = None
    if controller is None:
        controller = request.app.state.controller_factory(body.exam_id, media)
        session.put(sid, "controller", controller)

    if body.fullscreen:
        controller.handle_signal(Signal.FULLSCREEN_ENTER)
    try:
        result = await controller.system_check()
    except (ExamSessionError, httpx.HTTPError) as e:
        raise _to_http(e)
    return {
        "checks": result.summary(),
        "unavailable": result.unavailable,
        "failed": result.failed_mandatory,
        "canStart": result.can_start,
    }


@router.post("/api/start-exam")
async def start_exam(request: Request):
    controller = _controller(request)
    try:
        await controller.start()
    except (ExamSessionError, httpx.HTTPError, ValueError) as e:
        raise _to_http(e)
    return controller.snapshot()


@router.get("/api/exam-state")
async def get_exam_state(request: Request):
    return _controller(request).snapshot()


@router.post("/api/save-answer")
async def save_answer(body: SaveAnswerBody, request: Request):
    controller = _controller(request)
    try:
        controller.record_answer(body.question_id, body.answer)
    except KeyError:
        raise HTTPException(status_code=404, detail="문제를 찾을 수 없습니다.")
    except ExamSessionError as e:
        raise _to_http(e)
    return {"ok": True, "answered_count": controller.snapshot()["answeredCount"]}


@router.post("/api/toggle-flag")
async def toggle_flag(body: FlagBody, request: Request):
    controller = _controller(request)
    try:
        flagged = controller.toggle_flag(body.question_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="문제를 찾을 수 없습니다.")
    except ExamSessionError as e:
        raise _to_http(e)
    return {"ok": True, "flagged": flagged}


@router.post("/api/navigate")
async def navigate(body: NavigateBody, request: Request):
    controller = _controller(request)
    try:
        idx = controller.navigate(body.index, _decode(body.screenshot))
    except ExamSessionError as e:
        raise _to_http(e)
    return {"index": idx, "ok": True}


@router.post("/api/signal")
async def signal(body: SignalBody, request: Request):
    """visibilitychange, blur, copy, contextmenu, fullscreenchange, offline 등 DOM 이벤트."""
    violation = _controller(request).handle_signal(body.signal, body.detail)
    if violation is None:
        return {"ok": True, "violation": None}
    return {"ok": True, "violation": violation.model_dump(by_alias=True, mode="json")}


@router.post("/api/media/{kind}")
async def push_media(kind: str, body: MediaSampleBody, request: Request):
    """브라우저가 캡처한 샘플 전달. 열린 스트림이 없으면 버린다."""
    if kind not in MEDIA_KINDS:
        raise HTTPException(status_code=404, detail="알 수 없는 장치입니다.")
    sample = body.level if kind == MICROPHONE else _decode(body.data)
    if sample is None:
        raise HTTPException(status_code=400, detail="샘플이 비어 있습니다.")
    media: PushMediaProvider = session.get(_sid(request), "media")
    return {"delivered": media.push(kind, sample)}


@router.post("/api/acknowledge-violation")
async def acknowledge_violation(request: Request):
    controller = _controller(request)
    controller.acknowledge_violation()
    return {"ok": True, "monitorStatus": controller.snapshot()["monitorStatus"]}


@router.post("/api/submit-exam")
async def submit_exam(request: Request):
    controller = _controller(request)
    try:
        ack = await controller.submit()
    except ExamSessionError as e:
        raise _to_http(e)
    return {"ok": True, "ack": ack.model_dump(mode="json")}


@router.get("/api/results")
async def get_results(request: Request):
    controller = _controller(request)
    try:
        return controller.results()
    except InvalidTransition:
        raise HTTPException(status_code=400, detail="시험이 아직 제출되지 않았습니다.")


@router.post("/api/reset")
async def reset_session(request: Request):
    old = session.reset(_sid(request))
    if old is not None:
        await session.close_all([old])
    return {"ok": True}
