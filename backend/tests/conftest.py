"""
Exam Session Engine - Test Configuration and Fixtures
"""
import os
from datetime import datetime, timedelta, timezone

# Set testing environment before the package reads it
os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['LOG_LEVEL'] = 'WARNING'

import pytest
from fastapi.testclient import TestClient

from exam_session.database import Base, SessionLocal, engine as db_engine
from exam_session.main import app
from exam_session.runtime import get_engine
from exam_session.services.catalog import InMemoryApplicationLookup, InMemoryTestCatalog
from exam_session.services.domain import (
    ApplicationRecord, CandidateInput, CustomBank, GenerationPolicy, Question,
    StaticGenerated, SubjectSpec, TestDefinition
)
from exam_session.services.eligibility import EligibilityGate
from exam_session.services.engine import SessionEngine
from exam_session.services.generator import GenerationUnavailable
from exam_session.services.question_source import QuestionSource
from exam_session.services.result_store import InMemoryResultStore
from exam_session.services.scoring import Scorer
from exam_session.services.snapshot_store import InMemorySnapshotStore
from exam_session.services.timer import TimerController

OPTIONS = ["A", "B", "C", "D"]
START = datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)


def make_question(question_id, correct="A", text=None):
    return Question(id=question_id, text=text or "Question {}".format(question_id),
                    options=list(OPTIONS), correct_option_value=correct)


class FixedClock:
    """Controllable UTC clock."""

    def __init__(self, now=START):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


class FakeGenerator:
    """
    Stand-in for the generation service.

    Returns `count` questions per subject (or `available[subject]` when set),
    each with correct option "A" and ids starting at 1 within the subject.
    """

    def __init__(self, available=None, fail_on=None):
        self.available = available or {}
        self.fail_on = fail_on
        self.calls = []

    def generate(self, subject, count, audience_level, language, **parameters):
        self.calls.append((subject, count, audience_level, language, parameters))
        if self.fail_on == subject:
            raise GenerationUnavailable("generation service down")
        produced = self.available.get(subject, count)
        return [make_question(i, text="{} {}".format(subject, i)) for i in range(1, produced + 1)]


class FlakyResultStore(InMemoryResultStore):
    """Fails the first `failures` writes."""

    def __init__(self, failures=1):
        super().__init__()
        self.failures = failures
        self.attempts = 0

    def add(self, result, questions):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError("database unavailable")
        super().add(result, questions)


def generated_test(test_id="math-science", subjects=(("Math", 3), ("Science", 3)), minutes=10, **kwargs):
    return TestDefinition(
        id=test_id,
        title="Math and Science",
        time_limit_minutes=minutes,
        total_questions=sum(count for _, count in subjects),
        source=StaticGenerated(subjects=[SubjectSpec(name=n, question_count=c) for n, c in subjects]),
        audience_level="Class 6",
        **kwargs
    )


def custom_test(test_id="gk-practice", questions=None, sections=None, minutes=5, **kwargs):
    questions = questions or [make_question(i) for i in range(1, 4)]
    return TestDefinition(
        id=test_id,
        title="General Knowledge Practice",
        time_limit_minutes=minutes,
        total_questions=len(questions),
        source=CustomBank(questions=questions, sections=sections),
        **kwargs
    )


def candidate(application_number="GSA001", name="Amit Kumar", **kwargs):
    return CandidateInput(application_number=application_number, authenticated_name=name, **kwargs)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def catalog():
    return InMemoryTestCatalog([
        generated_test(),
        generated_test("math-science-60", pass_threshold=60),
        custom_test(),
    ])


@pytest.fixture
def applications():
    return InMemoryApplicationLookup([
        ApplicationRecord(application_id="GSA001", applicant_name="Amit Kumar",
                          payment_verified=True, modality="online", unique_id="7391"),
        ApplicationRecord(application_id="GSA002", applicant_name="Priya Sharma",
                          payment_verified=False, modality="online"),
        ApplicationRecord(application_id="GSA003", applicant_name="Suresh Singh",
                          payment_verified=True, modality="offline"),
        ApplicationRecord(application_id="GSA004", applicant_name="Suresh Singh",
                          payment_verified=True, modality="online"),
    ])


@pytest.fixture
def results():
    return InMemoryResultStore()


@pytest.fixture
def snapshots():
    return InMemorySnapshotStore()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def gate(catalog, applications, results, clock):
    return EligibilityGate(catalog, applications, results, clock=clock)


@pytest.fixture
def source(catalog, generator):
    return QuestionSource(catalog, generator, policy=GenerationPolicy.BEST_EFFORT)


@pytest.fixture
def timers():
    """Every TimerController the engine creates, in creation order."""
    return []


@pytest.fixture
def session_engine(catalog, gate, source, snapshots, results, clock, timers):
    def timer_factory(name):
        timer = TimerController(name=name)
        timers.append(timer)
        return timer

    engine = SessionEngine(
        catalog=catalog,
        gate=gate,
        source=source,
        snapshots=snapshots,
        results=results,
        scorer=Scorer(pass_threshold=40),
        timer_factory=timer_factory,
        clock=clock,
        enforce_deadline=False,
        warning_after_failures=3,
        background_timers=False,
    )
    yield engine
    engine.shutdown()


@pytest.fixture
def db_session_factory():
    """Fresh tables in the shared in-memory SQLite database for each test."""
    Base.metadata.create_all(bind=db_engine)
    yield SessionLocal
    Base.metadata.drop_all(bind=db_engine)


@pytest.fixture
def client(session_engine):
    """Create test client with the engine override, sending one browser context"""
    app.dependency_overrides[get_engine] = lambda: session_engine
    with TestClient(app, headers={"X-Session-Context": "tab-1"}) as test_client:
        yield test_client
    app.dependency_overrides.clear()
