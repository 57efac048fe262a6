"""
services/backend_client.py — 시험 백엔드 REST 클라이언트

ENDPOINTS:
- POST /api/exams/{examId}/start                  → {sessionId, timeRemaining}
- POST /api/exam-sessions/{sessionId}/submit      → {score, ...}
- GET  /api/exams/{examId}
- GET  /api/questions?exam={examId}  (404 이면 /api/exams/{examId}/questions)
- POST /api/proctoring/analyze        (multipart 영상 청크) → {violations: [...]}
- POST /api/proctoring/upload-recording
- POST /api/interview/upload-recording
- POST /api/interview/screenshot

설계:
- timeout 명시 (제출 30초 기본)
- 재시도 정책은 호출부(제출 파이프라인)가 담당
- 오류는 httpx 예외 그대로 올린다. 변환은 호출부 몫
"""

import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from config import BACKEND_BASE_URL, BACKEND_TOKEN, REQUEST_TIMEOUT, UPLOAD_TIMEOUT

logger = logging.getLogger(__name__)


class ExamBackendClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        token: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        base_url = base_url or BACKEND_BASE_URL
        if not base_url:
            raise ValueError("base_url is required")

        token = BACKEND_TOKEN if token is None else token
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._timeout = float(timeout_seconds or REQUEST_TIMEOUT)
        self._client = httpx.AsyncClient(
            base_url=str(base_url).rstrip("/"),
            headers=headers,
            timeout=self._timeout,
            transport=transport,
        )

    @property
    def timeout(self) -> float:
        return self._timeout

    async def close(self) -> None:
        await self._client.aclose()

    # ── 시험 정의 (읽기 전용) ────────────────────────────────────────────────

    async def get_exam(self, exam_id: str) -> Dict[str, Any]:
        resp = await self._client.get(f"/api/exams/{exam_id}")
        resp.raise_for_status()
        return resp.json()

    async def get_questions(self, exam_id: str) -> List[Dict[str, Any]]:
        resp = await self._client.get("/api/questions", params={"exam": exam_id})
        if resp.status_code == 404:
            resp = await self._client.get(f"/api/exams/{exam_id}/questions")
        resp.raise_for_status()
        data = resp.json()
        # 일부 백엔드는 {"questions": [...]} 형태로 감싼다
        if isinstance(data, dict) and isinstance(data.get("questions"), list):
            return data["questions"]
        return data

    # ── 세션 ─────────────────────────────────────────────────────────────────

    async def start_exam(self, exam_id: str) -> Dict[str, Any]:
        resp = await self._client.post(f"/api/exams/{exam_id}/start", json={})
        resp.raise_for_status()
        data = resp.json()
        if not data.get("sessionId"):
            raise ValueError(f"start 응답에 sessionId 가 없습니다: {data}")
        return data

    async def submit(self, session_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        resp = await self._client.post(
            f"/api/exam-sessions/{session_id}/submit",
            json=payload,
        )
        resp.raise_for_status()
        return resp.json() if resp.content else {}

    # ── 감독 산출물 ──────────────────────────────────────────────────────────

    async def analyze_chunk(self, exam_id: str, chunk: bytes) -> List[Dict[str, Any]]:
        resp = await self._client.post(
            "/api/proctoring/analyze",
            files={"video": ("chunk.webm", chunk, "video/webm")},
            data={"examId": exam_id},
            timeout=UPLOAD_TIMEOUT,
        )
        resp.raise_for_status()
        result = resp.json() if resp.content else {}
        return result.get("violations") or []

    async def upload_recording(
        self,
        exam_id: str,
        recording: bytes,
        *,
        interview: bool = False,
        metrics: Optional[Dict[str, Any]] = None,
    ) -> None:
        path = "/api/interview/upload-recording" if interview else "/api/proctoring/upload-recording"
        data = {"examId": exam_id}
        if metrics is not None:
            data["metrics"] = json.dumps(metrics)
        resp = await self._client.post(
            path,
            files={"recording": ("recording.webm", recording, "video/webm")},
            data=data,
            timeout=UPLOAD_TIMEOUT,
        )
        resp.raise_for_status()

    async def upload_screenshot(self, exam_id: str, question_id: int, image: bytes) -> None:
        resp = await self._client.post(
            "/api/interview/screenshot",
            files={"screenshot": ("screenshot.png", image, "image/png")},
            data={"examId": exam_id, "questionId": str(question_id)},
            timeout=UPLOAD_TIMEOUT,
        )
        resp.raise_for_status()
