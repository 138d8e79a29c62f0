"""
Process-wide SessionEngine wiring.

build_engine() assembles the engine from the SQL-backed stores and the HTTP
question generator. Routes obtain it through get_engine(), which tests
replace with app.dependency_overrides.
"""

from functools import lru_cache
from typing import Callable

from sqlalchemy.orm import Session

from exam_session.database import SessionLocal
from exam_session.services.catalog import SqlApplicationLookup, SqlTestCatalog
from exam_session.services.eligibility import EligibilityGate
from exam_session.services.engine import SessionEngine
from exam_session.services.generator import HttpQuestionGenerator, QuestionGenerator
from exam_session.services.question_source import QuestionSource
from exam_session.services.result_store import SqlResultStore
from exam_session.services.scoring import Scorer
from exam_session.services.snapshot_store import SqlSnapshotStore


def build_engine(session_factory: Callable[[], Session] = SessionLocal,
                 generator: QuestionGenerator = None) -> SessionEngine:
    catalog = SqlTestCatalog(session_factory)
    results = SqlResultStore(session_factory)
    gate = EligibilityGate(catalog, SqlApplicationLookup(session_factory), results)
    source = QuestionSource(catalog, generator or HttpQuestionGenerator())
    return SessionEngine(
        catalog=catalog,
        gate=gate,
        source=source,
        snapshots=SqlSnapshotStore(session_factory),
        results=results,
        scorer=Scorer(),
    )


@lru_cache(maxsize=1)
def get_engine() -> SessionEngine:
    """FastAPI dependency returning the shared engine."""
    return build_engine()
