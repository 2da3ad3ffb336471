from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .attempts import attempt_controller
from .audit import audit_log
from .db import settings
from .errors import QuizHostError
from .event_lifecycle import controller
from .leaderboard import leaderboard
from .logging_config import setup_logging
from .models import AuditEntry, Principal, Quiz
from .participants import registry
from .quizzes import quiz_catalog
from .schemas import (
    AttemptResultOut,
    AttemptStartOut,
    CreateEventIn,
    CreateQuizIn,
    EventOut,
    JoinIn,
    LeaderboardEntryOut,
    SubmitAttemptIn,
)

setup_logging()


@asynccontextmanager
async def lifespan(_: FastAPI):
    yield
    await audit_log.drain()


app = FastAPI(title="Quizhost API", lifespan=lifespan)

origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
origin_regex = settings.CORS_ORIGIN_REGEX or None

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ["*"],
    allow_origin_regex=origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(QuizHostError)
async def domain_error_handler(_: Request, exc: QuizHostError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def require_principal(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Principal:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing principal")
    role = "admin" if (x_user_role or "").lower() == "admin" else "user"
    return Principal(user_id=x_user_id, role=role)


def require_admin(principal: Principal = Depends(require_principal)) -> Principal:
    if not principal.is_admin:
        raise HTTPException(status_code=403, detail="Admin role required")
    return principal


@app.post("/api/quizzes", response_model=Quiz, status_code=201)
async def create_quiz(payload: CreateQuizIn, principal: Principal = Depends(require_principal)):
    return await quiz_catalog.create_quiz(payload, principal)


@app.get("/api/quizzes/{quiz_id}", response_model=Quiz)
async def get_quiz(quiz_id: str, _: Principal = Depends(require_principal)):
    return await quiz_catalog.get_quiz(quiz_id)


@app.post("/api/events", response_model=EventOut, status_code=201)
async def create_event(payload: CreateEventIn, principal: Principal = Depends(require_principal)):
    return await controller.create_event(
        payload.quiz_id,
        payload.name,
        payload.duration_seconds,
        payload.join_closes_at,
        principal,
    )


@app.get("/api/events", response_model=List[EventOut])
async def list_events(quiz_id: Optional[str] = None, principal: Principal = Depends(require_principal)):
    return await controller.list_events(principal, quiz_id)


@app.post("/api/events/join", response_model=EventOut)
async def join_event(payload: JoinIn, principal: Principal = Depends(require_principal)):
    return await registry.join(payload.join_code, principal)


@app.get("/api/events/{event_id}", response_model=EventOut)
async def get_event(event_id: str, _: Principal = Depends(require_principal)):
    return await controller.get_event(event_id)


@app.post("/api/events/{event_id}/start")
async def start_event(event_id: str, principal: Principal = Depends(require_principal)):
    await controller.start_event(event_id, principal)
    return {"ok": True}


@app.post("/api/events/{event_id}/close")
async def close_event(event_id: str, principal: Principal = Depends(require_principal)):
    await controller.close_event(event_id, principal)
    return {"ok": True}


@app.post("/api/events/{event_id}/cancel")
async def cancel_event(event_id: str, principal: Principal = Depends(require_principal)):
    await controller.cancel_event(event_id, principal)
    return {"ok": True}


@app.post("/api/events/{event_id}/leave")
async def leave_event(event_id: str, principal: Principal = Depends(require_principal)):
    await registry.leave(event_id, principal)
    return {"ok": True}


@app.get("/api/events/{event_id}/leaderboard", response_model=List[LeaderboardEntryOut])
async def event_leaderboard(event_id: str, limit: Optional[int] = None, _: Principal = Depends(require_principal)):
    return await leaderboard.top_for_event(event_id, limit)


@app.post("/api/events/{event_id}/attempts/start", response_model=AttemptStartOut, status_code=201)
async def start_attempt(event_id: str, principal: Principal = Depends(require_principal)):
    return await attempt_controller.start_attempt(event_id, principal)


@app.post("/api/events/{event_id}/attempts/submit", response_model=AttemptResultOut)
async def submit_attempt(event_id: str, payload: SubmitAttemptIn, principal: Principal = Depends(require_principal)):
    return await attempt_controller.submit_attempt(event_id, principal, payload.answers)


@app.post("/api/events/{event_id}/attempts/cancel")
async def cancel_attempt(event_id: str, principal: Principal = Depends(require_principal)):
    await attempt_controller.cancel_attempt(event_id, principal)
    return {"ok": True}


@app.get("/api/admin/audit", response_model=List[AuditEntry])
async def list_audit(after: Optional[int] = None, limit: int = 200, _: Principal = Depends(require_admin)):
    return await audit_log.list(after=after, limit=limit)


if __name__ == "__main__":
    uvicorn.run("backend.quizhost.main:app", host="0.0.0.0", port=8000, reload=True)
