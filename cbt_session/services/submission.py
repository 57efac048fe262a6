"""
services/submission.py

제출 파이프라인. 세션을 Completed 로 만들 수 있는 유일한 컴포넌트.

절차:
  1. Submitting 전이 + sessionId 별 single-flight (동시 호출자는 같은 결과를 기다린다)
  2. 답안/위반(감독 활성 시)/면접 지표 스냅샷 — 세션당 한 번만 생성
  3. POST /api/exam-sessions/{sessionId}/submit (타임아웃 30초)
  4. 성공 → Completed, 서버 응답 반환
  5. 일시 오류, 해석할 수 없는 응답 → SubmissionError(retryable). 재시도는 반드시 같은 스냅샷으로
     (제출 의사를 밝힌 시점의 답안이 채점 대상)

스냅샷 이후 기록된 위반은 이번 제출에 포함되지 않는다. 세션에는 남지만 추가 전송(amend)은 하지 않는다.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

import httpx

from config import AUTO_SUBMIT_BACKOFF, AUTO_SUBMIT_MAX_ATTEMPTS, REQUEST_TIMEOUT
from cbt_session.errors import AlreadySubmitted, SubmissionError
from cbt_session.models.session_state import ExamSession, SessionStatus
from cbt_session.models.settings_model import ExamSettings
from cbt_session.models.submission_model import InterviewMetrics, ServerAck, SubmissionPayload
from cbt_session.services.backend_client import ExamBackendClient
from cbt_session.services.state_machine import SessionStateMachine

logger = logging.getLogger(__name__)

MetricsProvider = Callable[[ExamSession], Optional[InterviewMetrics]]


def _is_retryable_status(status_code: int) -> bool:
    return status_code >= 500 or status_code in (408, 429)


class SubmissionPipeline:
    def __init__(
        self,
        client: ExamBackendClient,
        settings: ExamSettings,
        *,
        timeout: float = REQUEST_TIMEOUT,
        metrics_provider: Optional[MetricsProvider] = None,
    ):
        self._client = client
        self._settings = settings
        self._timeout = timeout
        self._metrics_provider = metrics_provider
        self._inflight: Dict[str, asyncio.Task] = {}
        self._payloads: Dict[str, SubmissionPayload] = {}
        self.attempts = 0

    def payload_for(self, session_id: str) -> Optional[SubmissionPayload]:
        return self._payloads.get(session_id)

    def in_flight(self, session_id: str) -> Optional[asyncio.Task]:
        return self._inflight.get(session_id)

    def build_payload(self, session: ExamSession) -> SubmissionPayload:
        answers = {
            qid: value for qid, value in session.answers.items()
            if value not in (None, "")
        }
        violations = list(session.violations) if self._settings.proctoring_enabled else []

        metrics = None
        if self._settings.exam.interview_mode and self._metrics_provider is not None:
            metrics = self._metrics_provider(session)

        return SubmissionPayload(
            answers=answers,
            proctor_violations=violations,
            interview_metrics=metrics,
        )

    async def submit(self, machine: SessionStateMachine) -> ServerAck:
        """
        Raises:
            AlreadySubmitted:  이미 Completed.
            InvalidTransition: 시작 전이거나 Abandoned.
            SubmissionError:   전송 실패 (retryable 여부 포함).
        """
        session_id = machine.session_id
        if machine.status == SessionStatus.COMPLETED:
            raise AlreadySubmitted(session_id, machine.snapshot().ack)

        task = self._inflight.get(session_id)
        if task is None:
            machine.begin_submission()
            if session_id not in self._payloads:
                self._payloads[session_id] = self.build_payload(machine.snapshot())
                logger.info(f"제출 스냅샷 생성: session={session_id}")

            task = asyncio.create_task(self._send(machine), name=f"submit-{session_id}")
            self._inflight[session_id] = task
            task.add_done_callback(lambda _t: self._inflight.pop(session_id, None))
        else:
            logger.info(f"진행 중인 제출에 합류: session={session_id}")

        return await asyncio.shield(task)

    async def submit_with_retry(
        self,
        machine: SessionStateMachine,
        max_attempts: int = AUTO_SUBMIT_MAX_ATTEMPTS,
        backoff: float = AUTO_SUBMIT_BACKOFF,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> ServerAck:
        """자동 제출용. 일시 오류만 지수 백오프로 재시도하고, 마지막 오류는 그대로 올린다."""
        for attempt in range(1, max_attempts + 1):
            try:
                return await self.submit(machine)
            except SubmissionError as e:
                if not e.retryable or attempt == max_attempts:
                    raise
                delay = backoff * (2 ** (attempt - 1))
                logger.warning(f"제출 실패 ({attempt}/{max_attempts}), {delay:.1f}초 후 재시도: {e}")
                await sleep(delay)
        raise SubmissionError("재시도 횟수 초과", retryable=True)

    async def _send(self, machine: SessionStateMachine) -> ServerAck:
        session_id = machine.session_id
        payload = self._payloads[session_id]
        self.attempts += 1

        try:
            data = await asyncio.wait_for(
                self._client.submit(session_id, payload.to_wire()),
                timeout=self._timeout,
            )
            ack = ServerAck.model_validate(data or {})
        except asyncio.TimeoutError:
            machine.fail_submission()
            logger.error(f"제출 타임아웃 ({self._timeout}초): session={session_id}")
            raise SubmissionError("제출 시간이 초과되었습니다. 다시 시도해 주세요.", retryable=True)
        except httpx.HTTPStatusError as e:
            machine.fail_submission()
            code = e.response.status_code
            logger.error(f"제출 실패 HTTP {code}: session={session_id}")
            raise SubmissionError(
                f"서버가 제출을 거부했습니다 (HTTP {code}).",
                retryable=_is_retryable_status(code),
                status_code=code,
            )
        except httpx.HTTPError as e:
            machine.fail_submission()
            logger.error(f"제출 네트워크 오류: session={session_id}: {e}")
            raise SubmissionError("네트워크 오류로 제출하지 못했습니다. 다시 시도해 주세요.", retryable=True)
        except ValueError as e:
            # JSON 이 아닌 본문, ServerAck 검증 실패 (pydantic ValidationError 도 ValueError)
            machine.fail_submission()
            logger.error(f"제출 응답 해석 실패: session={session_id}: {e}")
            raise SubmissionError("서버 응답을 확인하지 못했습니다. 다시 시도해 주세요.", retryable=True)

        machine.complete(ack.model_dump())
        logger.info(f"제출 완료: session={session_id}, score={ack.score}")
        return ack
