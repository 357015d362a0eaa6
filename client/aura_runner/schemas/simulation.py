from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


QuestionType = Literal["MCQ", "FILL_IN", "TRUE_FALSE", "ESSAY", "AUDIO_RESPONSE"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Question(_CamelModel):
    id: str
    type: QuestionType
    question_text: str = Field(alias="questionText")
    options: list[str] | None = None
    # Present in some payloads; scoring happens on the server.
    correct_answer: str | None = Field(default=None, alias="correctAnswer", exclude=True)
    points: float = 1.0
    section: str = ""
    order: int = 0
    audio_url: str | None = Field(default=None, alias="audioUrl")
    image_url: str | None = Field(default=None, alias="imageUrl")


class Section(_CamelModel):
    name: str
    duration: int = 0
    questions: list[Question] = Field(min_length=1)


class SessionPayload(_CamelModel):
    """Exam session as returned by ``POST /simulations/{id}/start``."""

    id: str
    simulation_id: str = Field(alias="simulationId")
    title: str
    duration: int
    sections: list[Section] = Field(min_length=1)
    time_remaining: int = Field(alias="timeRemaining", ge=0)
    current_section: int = Field(default=0, alias="currentSection", ge=0)
    current_question: int = Field(default=0, alias="currentQuestion", ge=0)
    answers: dict[str, str] = Field(default_factory=dict)
    is_fullscreen: bool = Field(default=False, alias="isFullscreen")
    auto_save: bool = Field(default=True, alias="autoSave")

    @model_validator(mode="after")
    def _check_cursor(self) -> "SessionPayload":
        if self.current_section >= len(self.sections):
            raise ValueError("currentSection out of range")
        if self.current_question >= len(self.sections[self.current_section].questions):
            raise ValueError("currentQuestion out of range")
        return self


class ProgressPayload(_CamelModel):
    answers: dict[str, str]
    current_section: int = Field(alias="currentSection")
    current_question: int = Field(alias="currentQuestion")
    time_remaining: int = Field(alias="timeRemaining")


class SubmitPayload(_CamelModel):
    answers: dict[str, str]
    time_spent: int = Field(alias="timeSpent")


class SubmitResult(_CamelModel):
    result_id: str = Field(alias="resultId")
    teacher_feedback_id: str | None = Field(default=None, alias="teacherFeedbackId")


# Local host request/response bodies


class StartSessionRequest(BaseModel):
    simulation_id: str


class AnswerRequest(BaseModel):
    answer: str


class GotoRequest(BaseModel):
    section: int
    question: int


class LockdownEventRequest(BaseModel):
    type: Literal["contextmenu", "keydown", "copy", "paste"]
    key: str | None = None
    ctrl: bool = False
    meta: bool = False


class LockdownEventResponse(BaseModel):
    suppress: bool


class SubmitResponse(BaseModel):
    result_id: str
    teacher_feedback_id: str | None = None
    redirect_to: str

