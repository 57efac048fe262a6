from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Question(BaseModel):
    """
    CBT 문제 모델 (시험 정의의 읽기 전용 사본)
    Pydantic v2 적용. 백엔드의 camelCase 키(correctAnswer, timeLimit)를 그대로 받는다.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int = Field(
        ...,
        description="문제 번호 (고유 식별자)"
    )
    text: str = Field(
        ...,
        min_length=1,
        description="발문/문제 내용"
    )
    type: str = Field(
        "multiple_choice",
        description="문제 유형 (multiple_choice, essay, code_submission, technical_discussion)"
    )
    options: Optional[List[str]] = Field(
        None,
        description="보기 리스트 (객관식만 해당)"
    )
    correct_answer: str = Field(
        "",
        alias="correctAnswer",
        description="정답. 채점 정보가 없으면 빈 문자열"
    )
    explanation: Optional[str] = Field(
        None,
        description="해설"
    )
    difficulty: str = Field(
        "medium",
        description="난이도 (easy, medium, hard)"
    )
    points: int = Field(
        1,
        ge=0,
        description="배점"
    )
    category: Optional[str] = Field(
        None,
        description="면접 모드 카테고리 (technical, behavioral, problem_solving, communication)"
    )
    time_limit: Optional[int] = Field(
        None,
        alias="timeLimit",
        description="권장 풀이 시간 (분)"
    )

    @field_validator('options')
    @classmethod
    def validate_options_length(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        """
        검증 로직 1: 보기가 주어지면 최소 2개 이상이어야 한다.
        """
        if v is not None and len(v) < 2:
            raise ValueError("보기(options)는 최소 2개 이상의 항목이 필요합니다.")
        return v

    @model_validator(mode='after')
    def validate_answer_in_options(self) -> 'Question':
        """
        검증 로직 2: 객관식 문제에 정답이 있으면 반드시 보기 리스트 안에 있어야 한다.
        """
        if self.type == "multiple_choice" and self.options and self.correct_answer:
            if self.correct_answer not in self.options:
                raise ValueError(
                    f"정답('{self.correct_answer}')이 보기 리스트({self.options})에 존재하지 않습니다."
                )
        return self
