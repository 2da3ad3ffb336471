from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from .utils import new_id, utcnow


class EventStatus(str, Enum):
    OPEN = "OPEN"
    RUNNING = "RUNNING"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


class AttemptStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"
    ABANDONED = "ABANDONED"


class Principal(BaseModel):
    user_id: str
    role: Literal["user", "admin"] = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class Option(BaseModel):
    id: str = Field(default_factory=new_id)
    text: str
    is_correct: bool = False
    position: int


class _QuestionBase(BaseModel):
    id: str = Field(default_factory=new_id)
    quiz_id: str
    prompt: str
    points: int
    position: int


class FreeTextQuestion(_QuestionBase):
    type: Literal["free_text"] = "free_text"
    correct_answer: str
    case_sensitive: bool = False


class SingleChoiceQuestion(_QuestionBase):
    type: Literal["single_choice"] = "single_choice"
    options: List[Option] = Field(default_factory=list)


class MultipleChoiceQuestion(_QuestionBase):
    type: Literal["multiple_choice"] = "multiple_choice"
    options: List[Option] = Field(default_factory=list)


Question = Annotated[
    Union[FreeTextQuestion, SingleChoiceQuestion, MultipleChoiceQuestion],
    Field(discriminator="type"),
]


class Quiz(BaseModel):
    id: str = Field(default_factory=new_id)
    owner_id: str
    title: str
    description: Optional[str] = None
    questions: List[Question] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    def ordered_questions(self) -> List[Question]:
        return sorted(self.questions, key=lambda q: q.position)


# States: OPEN -> RUNNING -> CLOSED, OPEN -> CANCELLED
class Event(BaseModel):
    id: str = Field(default_factory=new_id)
    quiz_id: str
    host_id: str
    name: str
    join_code: str
    status: EventStatus = EventStatus.OPEN
    duration_seconds: int
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    join_closes_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in (EventStatus.CLOSED, EventStatus.CANCELLED)


class EventParticipant(BaseModel):
    id: str = Field(default_factory=new_id)
    event_id: str
    user_id: str
    joined_at: datetime = Field(default_factory=utcnow)


class TextAnswer(BaseModel):
    type: Literal["text"] = "text"
    attempt_id: str
    question_id: str
    points_awarded: int = 0
    correct: bool = False
    answer_text: Optional[str] = None


class ChoiceAnswer(BaseModel):
    type: Literal["choice"] = "choice"
    attempt_id: str
    question_id: str
    points_awarded: int = 0
    correct: bool = False
    selected_option_ids: List[str] = Field(default_factory=list)


Answer = Annotated[Union[TextAnswer, ChoiceAnswer], Field(discriminator="type")]


# States: IN_PROGRESS -> SUBMITTED, IN_PROGRESS -> ABANDONED
class Attempt(BaseModel):
    id: str = Field(default_factory=new_id)
    event_id: str
    participant_id: str
    user_id: str
    status: AttemptStatus = AttemptStatus.IN_PROGRESS
    started_at: datetime = Field(default_factory=utcnow)
    submitted_at: Optional[datetime] = None
    abandoned_at: Optional[datetime] = None
    score: int = 0
    max_score: int = 0
    answers: List[Answer] = Field(default_factory=list)


class AuditEntry(BaseModel):
    seq: int
    timestamp: datetime
    action: str
    actor_id: Optional[str] = None
    resource_type: str
    resource_id: Optional[str] = None
    detail: str = ""
