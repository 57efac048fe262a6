"""
공용 테스트 헬퍼.

- FakeBackend: httpx.MockTransport 로 시험 백엔드를 흉내 낸다.
- block_forever / no_sleep: 타이머, 감시 주기 작업에 주입하는 대기 함수.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

import httpx
import pytest

from cbt_session.models.question_model import Question
from cbt_session.services.backend_client import ExamBackendClient

BACKEND_URL = "http://backend.test"


def make_questions(count: int = 3) -> List[Question]:
    return [
        Question(id=i, text=f"문제 {i}", options=["A", "B", "C", "D"], correct_answer="A")
        for i in range(1, count + 1)
    ]


def question_dicts(count: int = 3) -> List[Dict[str, Any]]:
    return [q.model_dump(by_alias=True) for q in make_questions(count)]


async def block_forever(_seconds: float) -> None:
    """취소될 때까지 대기. 타이머/주기 작업을 테스트에서 수동으로 진행할 때 사용."""
    await asyncio.Event().wait()


async def no_sleep(_seconds: float) -> None:
    await asyncio.sleep(0)


class FakeBackend:
    """
    Args:
        settings:        GET /api/exams/{id} 응답의 settings.
        time_remaining:  start 응답의 timeRemaining.
        submit_results:  submit 호출마다 차례로 꺼내 쓰는 응답.
                         int → 해당 status, dict → 200 JSON, httpx.Response → 그대로 응답,
                         Exception → 그대로 raise. 비어 있으면 {"score": 90}.
        start_status:    start 응답 status. 200 이 아니면 오류 응답.
    """

    def __init__(
        self,
        exam_id: str = "exam-1",
        settings: Optional[Dict[str, Any]] = None,
        questions: Optional[List[Dict[str, Any]]] = None,
        time_remaining: Optional[int] = 120,
        submit_results: Optional[list] = None,
        start_status: int = 200,
    ):
        self.exam_id = exam_id
        self.settings = settings or {}
        self.questions = questions if questions is not None else question_dicts()
        self.time_remaining = time_remaining
        self.submit_results = list(submit_results or [])
        self.start_status = start_status
        self.submit_gate: Optional[asyncio.Event] = None
        self.requests: List[httpx.Request] = []
        self.submissions: List[Dict[str, Any]] = []
        self.start_calls = 0

    def paths(self, method: str = None) -> List[str]:
        return [r.url.path for r in self.requests if method is None or r.method == method]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "GET" and path == f"/api/exams/{self.exam_id}":
            return httpx.Response(200, json={"id": self.exam_id, "duration": 2, "settings": self.settings})
        if request.method == "GET" and path == "/api/questions":
            return httpx.Response(200, json=self.questions)
        if path == f"/api/exams/{self.exam_id}/start":
            self.start_calls += 1
            if self.start_status != 200:
                return httpx.Response(self.start_status, json={"error": "start failed"})
            body = {"sessionId": f"sess-{self.start_calls}"}
            if self.time_remaining is not None:
                body["timeRemaining"] = self.time_remaining
            return httpx.Response(200, json=body)
        if path.startswith("/api/exam-sessions/") and path.endswith("/submit"):
            self.submissions.append(json.loads(request.content))
            if self.submit_gate is not None:
                await self.submit_gate.wait()
            result = self.submit_results.pop(0) if self.submit_results else {"score": 90}
            if isinstance(result, Exception):
                raise result
            if isinstance(result, httpx.Response):
                return result
            if isinstance(result, int):
                return httpx.Response(result, json={"error": "fail"})
            return httpx.Response(200, json=result)
        if path == "/api/proctoring/analyze":
            return httpx.Response(200, json={"violations": []})
        if path in (
            "/api/proctoring/upload-recording",
            "/api/interview/upload-recording",
            "/api/interview/screenshot",
        ):
            return httpx.Response(200, json={"ok": True})
        return httpx.Response(404, json={"error": "not found"})

    def client(self, **kwargs) -> ExamBackendClient:
        return ExamBackendClient(
            BACKEND_URL,
            token="",
            transport=httpx.MockTransport(self.handler),
            **kwargs,
        )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()
