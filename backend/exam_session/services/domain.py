"""
Domain types shared by the session engine services.

Immutable, serializable values (questions, definitions, snapshots, results)
are pydantic models; the mutable TestSession is a plain dataclass guarded by
its own lock.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SessionStatus(str, Enum):
    NOT_STARTED = "NotStarted"
    IN_PROGRESS = "InProgress"
    SUBMITTED = "Submitted"


class SubmitTrigger(str, Enum):
    MANUAL = "Manual"
    TIMEOUT = "Timeout"


class PassStatus(str, Enum):
    PASS = "Pass"
    FAIL = "Fail"


class EligibilityReason(str, Enum):
    OUTSIDE_TEST_WINDOW = "OutsideTestWindow"
    RECORD_NOT_FOUND = "RecordNotFound"
    ACCESS_CODE_MISMATCH = "AccessCodeMismatch"
    ALREADY_SUBMITTED = "AlreadySubmitted"
    WRONG_MODALITY = "WrongModality"
    PAYMENT_REQUIRED = "PaymentRequired"
    IDENTITY_MISMATCH = "IdentityMismatch"


class GenerationPolicy(str, Enum):
    """What QuestionSource does when a subject comes back short."""
    STRICT_COUNT = "strict_count"
    BEST_EFFORT = "best_effort"


# ── Questions and test definitions ───────────────────────────

class Question(BaseModel):
    """A multiple-choice question; options are canonically four strings."""
    model_config = ConfigDict(frozen=True)

    id: int
    text: str
    options: List[str]
    correct_option_index: Optional[int] = None
    correct_option_value: Optional[str] = None
    explanation: Optional[str] = None

    @model_validator(mode="after")
    def _check_correct_option(self):
        if self.correct_option_index is None and self.correct_option_value is None:
            raise ValueError("question needs correct_option_index or correct_option_value")
        if self.correct_option_index is not None and not 0 <= self.correct_option_index < len(self.options):
            raise ValueError("correct_option_index {} outside options".format(self.correct_option_index))
        return self

    @property
    def correct_option(self) -> str:
        if self.correct_option_value is not None:
            return self.correct_option_value
        return self.options[self.correct_option_index]

    def is_correct(self, selected: Optional[str]) -> bool:
        if selected is None:
            return False
        return selected == self.correct_option


class SubjectSpec(BaseModel):
    name: str
    question_count: int = Field(..., ge=1)
    generation_parameters: Dict[str, Any] = Field(default_factory=dict)


class StaticGenerated(BaseModel):
    """Questions are generated per subject on demand."""
    kind: Literal["static_generated"] = "static_generated"
    subjects: List[SubjectSpec] = Field(..., min_length=1)


class CustomBank(BaseModel):
    """A fully pre-authored question list, optionally split into sections."""
    kind: Literal["custom_bank"] = "custom_bank"
    questions: List[Question] = Field(..., min_length=1)
    sections: Optional[List[SubjectSpec]] = None


class TestDefinition(BaseModel):
    """Published test template; never mutated by a session."""
    __test__ = False  # not a pytest test class
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    time_limit_minutes: int = Field(..., gt=0)
    total_questions: int = Field(..., ge=0)
    source: Union[StaticGenerated, CustomBank] = Field(..., discriminator="kind")
    audience_level: str = ""
    language: str = "English"
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    required_modality: str = "online"
    pass_threshold: Optional[float] = None

    @property
    def duration_seconds(self) -> int:
        return self.time_limit_minutes * 60


class SubjectSegment(BaseModel):
    """A contiguous run of the flat question list owned by one subject."""
    name: str
    offset: int
    count: int

    def owns(self, index: int) -> bool:
        return self.offset <= index < self.offset + self.count


def build_segments(subject_counts: List[tuple]) -> List[SubjectSegment]:
    """Cumulative (name, count) pairs to segments with running offsets."""
    segments = []
    offset = 0
    for name, count in subject_counts:
        segments.append(SubjectSegment(name=name, offset=offset, count=count))
        offset += count
    return segments


def subject_for_index(segments: List[SubjectSegment], index: int) -> Optional[SubjectSegment]:
    for segment in segments:
        if segment.owns(index):
            return segment
    return None


class ResolvedTest(BaseModel):
    """Output of QuestionSource.resolve."""
    definition: TestDefinition
    questions: List[Question]
    segments: List[SubjectSegment]
    warnings: List[str] = Field(default_factory=list)


# ── Eligibility ──────────────────────────────────────────────

class CandidateInput(BaseModel):
    """What the candidate typed at the entry step, plus who they are logged in as."""
    application_number: str
    authenticated_name: str
    unique_id: Optional[str] = None
    is_admin: bool = False


class ApplicationRecord(BaseModel):
    """Result of the record-lookup dependency."""
    application_id: str
    applicant_name: str
    payment_verified: bool = False
    modality: str = "online"
    unique_id: Optional[str] = None


class CandidateIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    application_id: str
    applicant_name: str


class EligibilityRecord(BaseModel):
    """Outcome of one pass through the eligibility gate. Never persisted."""
    is_eligible: bool
    test_id: str
    reason: Optional[EligibilityReason] = None
    message: str = ""
    application_id: Optional[str] = None
    applicant_name: Optional[str] = None
    verified_at: Optional[datetime] = None

    @property
    def candidate(self) -> CandidateIdentity:
        return CandidateIdentity(application_id=self.application_id, applicant_name=self.applicant_name)


# ── Snapshots and results ────────────────────────────────────

class SessionSnapshot(BaseModel):
    """Persisted, resumable representation of an in-progress session."""
    test_id: str
    candidate: CandidateIdentity
    questions: List[Question]
    segments: List[SubjectSegment]
    answers: Dict[int, str] = Field(default_factory=dict)
    current_index: int = 0
    remaining_seconds: int
    duration_seconds: int
    started_at: datetime
    deadline: Optional[datetime] = None


class SubjectScore(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    correct_count: int
    total_count: int


class ScoreResult(BaseModel):
    """Final, immutable result of one session."""
    model_config = ConfigDict(frozen=True)

    candidate: CandidateIdentity
    test_id: str
    test_name: str
    total_questions: int
    correct_count: int
    wrong_count: int
    unanswered_count: int
    percentage: float
    subject_breakdown: List[SubjectScore]
    status: PassStatus
    pass_threshold: float
    time_taken_seconds: int
    trigger: SubmitTrigger
    submitted_at: datetime
    answers: Dict[int, str] = Field(default_factory=dict)


# ── The mutable session ──────────────────────────────────────

@dataclass
class TestSession:
    """
    One candidate's attempt at one test.

    Mutated only by the answer recorder (answers, current_index), the timer
    (remaining_seconds) and the submission controller (status, result), all
    under `lock`.
    """
    __test__ = False  # not a pytest test class

    test_id: str
    test_name: str
    candidate: CandidateIdentity
    questions: List[Question]
    segments: List[SubjectSegment]
    duration_seconds: int
    remaining_seconds: int
    started_at: datetime
    context_id: str = "default"
    answers: Dict[int, str] = field(default_factory=dict)
    current_index: int = 0
    status: SessionStatus = SessionStatus.NOT_STARTED
    deadline: Optional[datetime] = None
    pass_threshold: Optional[float] = None
    result: Optional[ScoreResult] = None
    result_persisted: bool = False
    persistence_warning: bool = False
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def elapsed_seconds(self) -> int:
        return self.duration_seconds - self.remaining_seconds

    def to_snapshot(self) -> SessionSnapshot:
        with self.lock:
            return SessionSnapshot(
                test_id=self.test_id,
                candidate=self.candidate,
                questions=list(self.questions),
                segments=list(self.segments),
                answers=dict(self.answers),
                current_index=self.current_index,
                remaining_seconds=self.remaining_seconds,
                duration_seconds=self.duration_seconds,
                started_at=self.started_at,
                deadline=self.deadline,
            )

    @classmethod
    def from_snapshot(cls, snapshot: SessionSnapshot, test_name: str, context_id: str,
                      pass_threshold: Optional[float] = None) -> "TestSession":
        return cls(
            test_id=snapshot.test_id,
            test_name=test_name,
            candidate=snapshot.candidate,
            questions=list(snapshot.questions),
            segments=list(snapshot.segments),
            duration_seconds=snapshot.duration_seconds,
            remaining_seconds=snapshot.remaining_seconds,
            started_at=snapshot.started_at,
            context_id=context_id,
            answers=dict(snapshot.answers),
            current_index=snapshot.current_index,
            deadline=snapshot.deadline,
            pass_threshold=pass_threshold,
        )
