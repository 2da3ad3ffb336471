from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel

from .models import AttemptStatus, Event, EventStatus


class CreateOptionIn(BaseModel):
    text: Optional[str] = None
    correct: bool = False


class CreateQuestionIn(BaseModel):
    type: Optional[Literal["free_text", "single_choice", "multiple_choice"]] = None
    prompt: Optional[str] = None
    points: int = 0
    correct_answer: Optional[str] = None
    case_sensitive: bool = False
    options: Optional[List[CreateOptionIn]] = None


class CreateQuizIn(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    questions: Optional[List[CreateQuestionIn]] = None


class CreateEventIn(BaseModel):
    quiz_id: str
    name: Optional[str] = None
    duration_seconds: Optional[int] = None
    join_closes_at: Optional[datetime] = None


class JoinIn(BaseModel):
    join_code: Optional[str] = None


class AnswerSubmission(BaseModel):
    question_id: Optional[str] = None
    selected_option_ids: Optional[List[str]] = None
    text_answer: Optional[str] = None


class SubmitAttemptIn(BaseModel):
    answers: Optional[List[Optional[AnswerSubmission]]] = None


class EventOut(BaseModel):
    id: str
    quiz_id: str
    name: str
    join_code: str
    status: EventStatus
    starts_at: Optional[datetime]
    ends_at: Optional[datetime]
    join_closes_at: Optional[datetime]
    duration_seconds: int
    host_id: str

    @classmethod
    def from_event(cls, event: Event) -> "EventOut":
        return cls(
            id=event.id,
            quiz_id=event.quiz_id,
            name=event.name,
            join_code=event.join_code,
            status=event.status,
            starts_at=event.starts_at,
            ends_at=event.ends_at,
            join_closes_at=event.join_closes_at,
            duration_seconds=event.duration_seconds,
            host_id=event.host_id,
        )


class AttemptStartOut(BaseModel):
    attempt_id: str
    status: AttemptStatus
    deadline: Optional[datetime]


class AnswerResultOut(BaseModel):
    question_id: str
    correct: bool
    points_awarded: int


class AttemptResultOut(BaseModel):
    attempt_id: str
    score: int
    max_score: int
    status: AttemptStatus
    results: List[AnswerResultOut]


class LeaderboardEntryOut(BaseModel):
    user_id: str
    score: int
    max_score: int
    submitted_at: Optional[datetime]
