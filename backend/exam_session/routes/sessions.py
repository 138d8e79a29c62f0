"""
Test session API routes - the candidate-facing test player.

Provides endpoints for:
- Entering a test (eligibility check, then begin or resume)
- Viewing the current session (questions without the answer key)
- Recording answers and moving between questions
- Reading the countdown
- Submitting

The browser/device context travels in the required X-Session-Context
header; one context holds at most one session per test. Administrators are
recognized by the X-Admin-Token header, never by the request body.
"""

import hmac
from typing import Dict, List, Optional
from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, Field

from exam_session import config
from exam_session.runtime import get_engine
from exam_session.services.domain import (
    CandidateInput, EligibilityReason, ScoreResult, TestSession, subject_for_index
)
from exam_session.services.engine import SessionEngine
from exam_session.services.errors import (
    EligibilityFailure, IndexOutOfRange, QuestionResolutionError, SessionNotActive,
    SessionNotFound, TestNotFound
)
from exam_session.logging_config import get_logger, log_with_context

router = APIRouter()
logger = get_logger("http")


# ── Pydantic schemas ─────────────────────────────────────────

class BeginSessionRequest(BaseModel):
    """Entry step: the application number typed in plus the signed-in name."""
    application_number: str = Field(..., min_length=1)
    full_name: str
    unique_id: Optional[str] = None


class AnswerRequest(BaseModel):
    selected_option: str


class NavigateRequest(BaseModel):
    index: int


class QuestionView(BaseModel):
    """A question as the candidate sees it (no correct option)."""
    index: int
    id: int
    text: str
    options: List[str]
    subject: Optional[str] = None


class SessionView(BaseModel):
    test_id: str
    test_name: str
    application_id: str
    applicant_name: str
    status: str
    questions: List[QuestionView]
    segments: List[dict]
    answers: Dict[int, str]
    current_index: int
    remaining_seconds: int
    duration_seconds: int
    persistence_warning: bool
    result: Optional[ScoreResult] = None


def serialize_session(session: TestSession) -> SessionView:
    """Serialize a TestSession for the player, leaving out the answer key."""
    with session.lock:
        questions = []
        for index, question in enumerate(session.questions):
            segment = subject_for_index(session.segments, index)
            questions.append(QuestionView(index=index, id=question.id, text=question.text,
                                          options=list(question.options),
                                          subject=segment.name if segment else None))
        return SessionView(
            test_id=session.test_id,
            test_name=session.test_name,
            application_id=session.candidate.application_id,
            applicant_name=session.candidate.applicant_name,
            status=session.status.value,
            questions=questions,
            segments=[s.model_dump() for s in session.segments],
            answers=dict(session.answers),
            current_index=session.current_index,
            remaining_seconds=session.remaining_seconds,
            duration_seconds=session.duration_seconds,
            persistence_warning=session.persistence_warning,
            result=session.result,
        )


def _http_error(error: Exception, test_id: str) -> HTTPException:
    """Translate an engine exception into the matching HTTP error."""
    if isinstance(error, EligibilityFailure):
        status_code = 402 if error.reason is EligibilityReason.PAYMENT_REQUIRED else 403
        return HTTPException(status_code=status_code,
                             detail={"reason": error.reason.value, "message": error.record.message})
    if isinstance(error, TestNotFound):
        return HTTPException(status_code=404, detail="Test {} not found".format(test_id))
    if isinstance(error, QuestionResolutionError):
        log_with_context(logger, "ERROR", "Question resolution failed",
                         context={"test_id": test_id}, extra_data={"error": str(error)})
        return HTTPException(status_code=503,
                             detail="Could not load the test questions. Please try again in a moment.")
    if isinstance(error, SessionNotFound):
        return HTTPException(status_code=404, detail="No active session for test {}".format(test_id))
    if isinstance(error, IndexOutOfRange):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, SessionNotActive):
        return HTTPException(status_code=409, detail=str(error))
    raise error


def _current(engine: SessionEngine, test_id: str, context_id: str) -> TestSession:
    try:
        return engine.get_session(test_id, context_id)
    except SessionNotFound as e:
        raise _http_error(e, test_id)


def admin_caller(x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token")) -> bool:
    """True only when the request carries the configured admin token."""
    if not config.ADMIN_TOKEN or not x_admin_token:
        return False
    return hmac.compare_digest(x_admin_token.encode(), config.ADMIN_TOKEN.encode())


@router.post("/api/tests/{test_id}/sessions", response_model=SessionView)
def begin_session(
    test_id: str,
    request: BeginSessionRequest,
    x_session_context: str = Header(...),
    is_admin: bool = Depends(admin_caller),
    engine: SessionEngine = Depends(get_engine)
):
    """Verify eligibility and begin the session, or resume the one saved in this context."""
    candidate = CandidateInput(
        application_number=request.application_number,
        authenticated_name=request.full_name,
        unique_id=request.unique_id,
        is_admin=is_admin,
    )
    try:
        session = engine.begin_session(test_id, candidate, context_id=x_session_context)
    except (EligibilityFailure, QuestionResolutionError) as e:
        raise _http_error(e, test_id)
    return serialize_session(session)


@router.get("/api/tests/{test_id}/sessions/current", response_model=SessionView)
def get_current_session(
    test_id: str,
    x_session_context: str = Header(...),
    engine: SessionEngine = Depends(get_engine)
):
    return serialize_session(_current(engine, test_id, x_session_context))


@router.put("/api/tests/{test_id}/sessions/current/answers/{index}")
def record_answer(
    test_id: str,
    index: int,
    request: AnswerRequest,
    x_session_context: str = Header(...),
    engine: SessionEngine = Depends(get_engine)
):
    session = _current(engine, test_id, x_session_context)
    try:
        engine.record_answer(session, index, request.selected_option)
    except (IndexOutOfRange, SessionNotActive) as e:
        raise _http_error(e, test_id)
    return {"index": index, "selected_option": request.selected_option,
            "answered": len(session.answers)}


@router.delete("/api/tests/{test_id}/sessions/current/answers/{index}")
def clear_answer(
    test_id: str,
    index: int,
    x_session_context: str = Header(...),
    engine: SessionEngine = Depends(get_engine)
):
    session = _current(engine, test_id, x_session_context)
    try:
        engine.clear_answer(session, index)
    except (IndexOutOfRange, SessionNotActive) as e:
        raise _http_error(e, test_id)
    return {"index": index, "selected_option": None, "answered": len(session.answers)}


@router.post("/api/tests/{test_id}/sessions/current/navigate")
def navigate(
    test_id: str,
    request: NavigateRequest,
    x_session_context: str = Header(...),
    engine: SessionEngine = Depends(get_engine)
):
    session = _current(engine, test_id, x_session_context)
    try:
        current_index = engine.navigate(session, request.index)
    except (IndexOutOfRange, SessionNotActive) as e:
        raise _http_error(e, test_id)
    return {"current_index": current_index}


@router.get("/api/tests/{test_id}/sessions/current/clock")
def get_clock(
    test_id: str,
    x_session_context: str = Header(...),
    engine: SessionEngine = Depends(get_engine)
):
    return engine.clock_view(_current(engine, test_id, x_session_context))


@router.post("/api/tests/{test_id}/sessions/current/submit", response_model=ScoreResult)
def submit(
    test_id: str,
    x_session_context: str = Header(...),
    engine: SessionEngine = Depends(get_engine)
):
    """Manual submit. Repeating it returns the result of the first submission."""
    session = _current(engine, test_id, x_session_context)
    try:
        return engine.submit(session)
    except SessionNotActive as e:
        raise _http_error(e, test_id)
