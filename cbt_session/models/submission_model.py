"""
models/submission_model.py

제출 페이로드와 서버 응답 모델.
페이로드는 제출 시도마다 한 번만 만들어지고, 재시도 시 그대로 재전송된다.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from cbt_session.models.session_state import Violation


class InterviewMetrics(BaseModel):
    """면접 모드 행동 지표."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    completion_rate: float = Field(0.0, ge=0.0, le=100.0, description="응답률 (%)")
    average_response_time: float = Field(0.0, ge=0.0, description="문제당 평균 응답 시간 (ms)")
    total_time_spent: int = Field(0, ge=0, description="총 소요 시간 (초)")
    response_time: List[float] = Field(default_factory=list, description="문제별 응답 시간 (ms)")


class SubmissionPayload(BaseModel):
    """
    POST /api/exam-sessions/{sessionId}/submit 본문.
    생성 시점의 스냅샷이므로 frozen.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    answers: Dict[int, Any] = Field(default_factory=dict)
    proctor_violations: List[Violation] = Field(default_factory=list)
    interview_metrics: Optional[InterviewMetrics] = None

    def to_wire(self) -> Dict[str, Any]:
        """전송용 JSON dict. interviewMetrics 가 없으면 키 자체를 생략한다."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class ServerAck(BaseModel):
    """제출 응답. score 외 필드는 백엔드 구현에 따라 다르므로 그대로 보존."""

    model_config = ConfigDict(extra="allow")

    score: Optional[float] = None
