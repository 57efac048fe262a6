"""
models/session_state.py

시험 세션 상태를 담는 OMR 카드 모델.
Pydantic BaseModel 기반 — 직렬화/역직렬화 및 타입 안전성 확보.
상태 전이 규칙은 services/state_machine.py 에 있고, 이 모듈은 데이터만 정의한다.
"""

import time
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from cbt_session.models.question_model import Question


class SessionStatus(str, Enum):
    NOT_STARTED = "NotStarted"
    IN_PROGRESS = "InProgress"
    SUBMITTING = "Submitting"
    COMPLETED = "Completed"
    ABANDONED = "Abandoned"


# Submitting 은 InProgress 의 하위 상태로 취급
ACTIVE_STATUSES = frozenset({SessionStatus.IN_PROGRESS, SessionStatus.SUBMITTING})
TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.ABANDONED})


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Violation(BaseModel):
    """
    부정행위 감지 기록. 생성 후 변경 불가 (frozen).

    Attributes:
        type:      위반 유형 태그 (tab_switch, copy_paste_attempt, ...)
        severity:  low | medium | high
        timestamp: 감지 시각 (Unix timestamp)
        source:    감지기 이름 (AI 분석 결과 등 출처 추적용)
        metadata:  부가 정보 (오디오 레벨 등)
    """

    model_config = ConfigDict(frozen=True)

    type: str = Field(..., min_length=1)
    severity: Severity
    timestamp: float = Field(default_factory=time.time)
    source: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ExamSession(BaseModel):
    """
    시험 세션 전체 상태 (aggregate root).

    Attributes:
        session_id:         백엔드가 start 시 발급하는 세션 ID.
        exam_id:            시험 정의 참조 (읽기 전용).
        status:             세션 상태.
        questions:          시작 시 고정되는 문제 순서.
        answers:            답안지. {question.id: 답안 (문자열 또는 구조화 데이터)}
        flagged_question_ids: 검토 표시한 문제 ID 집합.
        current_index:      현재 문제 인덱스 (0-based).
        duration_seconds:   시험 제한 시간 (초).
        remaining_seconds:  남은 시간 (초). InProgress 이후 단조 감소, 0 이상.
        violations:         위반 기록 (추가만 가능).
        time_expired:       시간 종료 여부.
        answers_locked:     답안 수정 잠금 (시간 종료 또는 제출 실패 후).
        started_at:         시작 시각 (Unix timestamp).
        ack:                제출 성공 시 서버 응답.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session_id: Optional[str] = None
    exam_id: str
    status: SessionStatus = SessionStatus.NOT_STARTED
    questions: List[Question] = Field(default_factory=list)
    answers: Dict[int, Any] = Field(default_factory=dict)
    flagged_question_ids: Set[int] = Field(default_factory=set)
    current_index: int = Field(default=0, ge=0)
    duration_seconds: int = Field(default=0, ge=0)
    remaining_seconds: int = Field(default=0, ge=0)
    violations: List[Violation] = Field(default_factory=list)
    time_expired: bool = False
    answers_locked: bool = False
    started_at: Optional[float] = None
    ack: Optional[Dict[str, Any]] = None
