"""
models/settings_model.py

시험 설정 객체 (exam.settings) 모델.
백엔드가 내려주는 camelCase JSON을 그대로 검증한다. 모르는 키는 무시.
"""

from typing import List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _SettingsBase(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class ProctoringSettings(_SettingsBase):
    """감독(proctoring) 관련 옵션. 기본값은 전부 비활성."""

    enabled: bool = False
    webcam_required: bool = False
    screen_recording: bool = False
    tab_switch_detection: bool = False
    ai_monitoring: bool = False
    microphone_monitoring: bool = False
    face_detection: bool = False
    eye_tracking: bool = False
    environment_scan: bool = False
    voice_analysis: bool = False


class ExamOptions(_SettingsBase):
    """시험 진행 옵션."""

    allow_review: bool = True
    show_correct_answers: bool = True
    randomize_questions: bool = False
    time_warnings: List[int] = Field(
        default_factory=list,
        description="남은 시간 경고 지점 (초). 예: [300, 60]"
    )
    auto_submit: bool = False
    prevent_copy_paste: bool = False
    disable_right_click: bool = False
    fullscreen_required: bool = False
    interview_mode: bool = False


class InterviewOptions(_SettingsBase):
    """면접 모드 녹화 옵션."""

    record_video: bool = False
    record_audio: bool = False
    save_screenshots: bool = False


class ExamSettings(_SettingsBase):
    proctoring: ProctoringSettings = Field(default_factory=ProctoringSettings)
    exam: ExamOptions = Field(default_factory=ExamOptions)
    interview: InterviewOptions = Field(default_factory=InterviewOptions)

    @property
    def proctoring_enabled(self) -> bool:
        return self.proctoring.enabled
