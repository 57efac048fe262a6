"""
로컬 UI HTTP 엔드포인트 테스트 (FastAPI TestClient).
"""

import base64

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import FakeBackend, block_forever
from api.app import create_app
from cbt_session.services.controller import ExamSessionController


def make_client(backend: FakeBackend) -> TestClient:
    def factory(exam_id, media):
        return ExamSessionController(
            exam_id,
            backend.client(),
            media=media,
            sleep=block_forever,
            owns_client=True,
        )

    return TestClient(create_app(controller_factory=factory))


@pytest.fixture
def proctored_backend() -> FakeBackend:
    return FakeBackend(settings={
        "proctoring": {"enabled": True, "tabSwitchDetection": True},
        "exam": {"preventCopyPaste": True},
    })


def start(client: TestClient, **devices) -> dict:
    resp = client.post("/api/system-check", json={"exam_id": "exam-1", **devices})
    assert resp.status_code == 200
    resp = client.post("/api/start-exam")
    assert resp.status_code == 200
    return resp.json()


class TestExamFlow:
    def test_full_session(self, backend):
        with make_client(backend) as client:
            state = start(client)
            assert state["status"] == "InProgress"
            assert state["total"] == 3

            resp = client.post("/api/save-answer", json={"question_id": 1, "answer": "A"})
            assert resp.json() == {"ok": True, "answered_count": 1}

            assert client.post("/api/toggle-flag", json={"question_id": 2}).json()["flagged"] is True
            assert client.post("/api/navigate", json={"index": 2}).json()["index"] == 2
            assert client.post("/api/navigate", json={"index": 10}).json()["index"] == 2

            state = client.get("/api/exam-state").json()
            assert state["questionStatuses"] == ["answered", "flagged", "current"]

            resp = client.post("/api/submit-exam")
            assert resp.status_code == 200
            assert resp.json()["ack"]["score"] == 90

            results = client.get("/api/results").json()
            assert results["localScore"] == 33.33

        assert len(backend.submissions) == 1

    def test_repeat_submit_returns_same_ack(self, backend):
        with make_client(backend) as client:
            start(client)
            first = client.post("/api/submit-exam").json()
            second = client.post("/api/submit-exam").json()
        assert first == second
        assert len(backend.submissions) == 1

    def test_unknown_question(self, backend):
        with make_client(backend) as client:
            start(client)
            resp = client.post("/api/save-answer", json={"question_id": 99, "answer": "A"})
        assert resp.status_code == 404


class TestErrors:
    def test_no_session(self, backend):
        with make_client(backend) as client:
            assert client.get("/api/exam-state").status_code == 404
            assert client.post("/api/start-exam").status_code == 404

    def test_double_start_conflicts(self, backend):
        with make_client(backend) as client:
            start(client)
            resp = client.post("/api/start-exam")
        assert resp.status_code == 409
        assert backend.start_calls == 1

    def test_missing_mandatory_device(self):
        backend = FakeBackend(settings={"proctoring": {"enabled": True, "webcamRequired": True}})
        with make_client(backend) as client:
            check = client.post("/api/system-check", json={"exam_id": "exam-1", "camera": False}).json()
            assert check["canStart"] is False
            assert check["failed"] == ["camera"]
            resp = client.post("/api/start-exam")
        assert resp.status_code == 412

    def test_submission_failure_is_retryable(self):
        backend = FakeBackend(submit_results=[502])
        with make_client(backend) as client:
            start(client)
            failed = client.post("/api/submit-exam")
            locked = client.post("/api/save-answer", json={"question_id": 1, "answer": "A"})
            retried = client.post("/api/submit-exam")
        assert failed.status_code == 503
        assert failed.json()["detail"]["retryable"] is True
        assert locked.status_code == 409
        assert retried.status_code == 200

    def test_unreadable_submit_response_is_retryable(self):
        backend = FakeBackend(submit_results=[httpx.Response(200, text="OK")])
        with make_client(backend) as client:
            start(client)
            failed = client.post("/api/submit-exam")
            retried = client.post("/api/submit-exam")
        assert failed.status_code == 503
        assert failed.json()["detail"]["retryable"] is True
        assert retried.status_code == 200
        assert retried.json()["ack"]["score"] == 90

    def test_backend_start_failure(self):
        backend = FakeBackend(start_status=500)
        with make_client(backend) as client:
            client.post("/api/system-check", json={"exam_id": "exam-1"})
            failed = client.post("/api/start-exam")
            backend.start_status = 200
            retried = client.post("/api/start-exam")
        assert failed.status_code == 502
        assert retried.status_code == 200
        assert retried.json()["status"] == "InProgress"

    def test_results_before_submit(self, backend):
        with make_client(backend) as client:
            start(client)
            assert client.get("/api/results").status_code == 400


class TestProctoring:
    def test_signal_records_violation(self, proctored_backend):
        with make_client(proctored_backend) as client:
            start(client)
            resp = client.post("/api/signal", json={"signal": "copy", "detail": {"length": 12}})
            body = resp.json()
            assert body["violation"]["type"] == "copy_paste_attempt"
            assert body["violation"]["severity"] == "high"

            state = client.get("/api/exam-state").json()
            assert state["violationCount"] == 1
            assert state["monitorStatus"] == "violation"

            ack = client.post("/api/acknowledge-violation").json()
            assert ack["monitorStatus"] == "monitoring"

            client.post("/api/submit-exam")

        sent = proctored_backend.submissions[0]["proctorViolations"]
        assert [v["type"] for v in sent] == ["copy_paste_attempt"]

    def test_unknown_signal_rejected(self, proctored_backend):
        with make_client(proctored_backend) as client:
            start(client)
            assert client.post("/api/signal", json={"signal": "teleport"}).status_code == 422

    def test_media_samples(self, backend):
        with make_client(backend) as client:
            client.post("/api/system-check", json={"exam_id": "exam-1", "microphone": True})
            resp = client.post("/api/media/microphone", json={"level": 120.0})
            assert resp.json() == {"delivered": 0}
            data = base64.b64encode(b"frame").decode()
            assert client.post("/api/media/camera", json={"data": data}).status_code == 200
            assert client.post("/api/media/camera", json={"data": "%%%"}).status_code == 400
            assert client.post("/api/media/speaker", json={"level": 1}).status_code == 404


class TestReset:
    def test_reset_abandons_running_session(self, backend):
        with make_client(backend) as client:
            start(client)
            assert client.post("/api/reset").json() == {"ok": True}
            assert client.get("/api/exam-state").status_code == 404
        assert backend.submissions == []
