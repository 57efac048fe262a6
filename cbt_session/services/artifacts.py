"""
services/artifacts.py

감독 산출물(녹화, 스크린샷, AI 프레임 분석) 업로드.
best-effort 텔레메트리 — 실패는 로그만 남기고 삼킨다. 시험 진행을 절대 막지 않는다.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set

import httpx

from cbt_session.services.backend_client import ExamBackendClient

logger = logging.getLogger(__name__)

# 업로드 실패로 간주하는 예외. 그 외 예외는 버그이므로 전파한다.
_UPLOAD_ERRORS = (httpx.HTTPError, ValueError)


class ArtifactUploader:
    def __init__(self, client: ExamBackendClient, exam_id: str):
        self._client = client
        self._exam_id = exam_id
        self._pending: Set[asyncio.Task] = set()

    async def analyze_chunk(self, chunk: bytes) -> List[Dict[str, Any]]:
        """AI 분석. 실패 시 빈 리스트."""
        try:
            return await self._client.analyze_chunk(self._exam_id, chunk)
        except _UPLOAD_ERRORS as e:
            logger.warning(f"AI 프레임 분석 실패: {e}")
            return []

    async def upload_recording(
        self,
        recording: bytes,
        *,
        interview: bool = False,
        metrics: Optional[Dict[str, Any]] = None,
    ) -> bool:
        try:
            await self._client.upload_recording(
                self._exam_id, recording, interview=interview, metrics=metrics
            )
            logger.info(f"녹화 업로드 완료: {len(recording)} bytes (interview={interview})")
            return True
        except _UPLOAD_ERRORS as e:
            logger.warning(f"녹화 업로드 실패: {e}")
            return False

    async def upload_screenshot(self, question_id: int, image: bytes) -> bool:
        try:
            await self._client.upload_screenshot(self._exam_id, question_id, image)
            return True
        except _UPLOAD_ERRORS as e:
            logger.warning(f"스크린샷 업로드 실패 (question={question_id}): {e}")
            return False

    def fire_and_forget(self, coro) -> asyncio.Task:
        """업로드를 백그라운드로 실행. 완료를 기다리지 않는다."""
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self, timeout: float = 10.0) -> None:
        """종료 시 남은 업로드를 잠시 기다린다. 시간 초과분은 취소."""
        if not self._pending:
            return
        done, pending = await asyncio.wait(set(self._pending), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"미완료 업로드 {len(pending)}건 취소")
