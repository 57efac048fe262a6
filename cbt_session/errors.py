"""
errors.py — 시험 세션 예외 계층

- InvalidTransition:     현재 상태에서 허용되지 않는 조작 (프로그래밍 오류, 재시도 없음)
- CapabilityUnavailable: 필수 감독 장치(카메라/마이크/화면 공유) 확보 실패
- SubmissionError:       제출 중 네트워크/서버 오류 (같은 스냅샷으로 재시도 가능)
- AlreadySubmitted:      Completed 이후 제출 호출 (멱등 성공으로 처리)
"""

from typing import Any, Dict, Optional


class ExamSessionError(Exception):
    """시험 세션 예외의 공통 부모."""


class InvalidTransition(ExamSessionError):
    def __init__(self, operation: str, status: str):
        self.operation = operation
        self.status = status
        super().__init__(f"'{operation}' 은(는) '{status}' 상태에서 허용되지 않습니다.")


class CapabilityUnavailable(ExamSessionError):
    def __init__(self, capability: str, reason: str = ""):
        self.capability = capability
        self.reason = reason
        msg = f"필수 감독 기능을 사용할 수 없습니다: {capability}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class SubmissionError(ExamSessionError):
    def __init__(self, message: str, retryable: bool = True, status_code: Optional[int] = None):
        self.retryable = retryable
        self.status_code = status_code
        super().__init__(message)


class AlreadySubmitted(ExamSessionError):
    def __init__(self, session_id: Optional[str], ack: Optional[Dict[str, Any]] = None):
        self.session_id = session_id
        self.ack = ack
        super().__init__(f"이미 제출된 시험입니다: {session_id}")
