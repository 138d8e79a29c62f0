"""
Integration Tests for the SQLAlchemy-backed catalog and stores
Tests for: template round trip, application lookup, result uniqueness, seeding, SQL wiring
"""
import json
import os

from load_data import load
from exam_session.models.application import Application
from exam_session.models.test_result import TestResult
from exam_session.runtime import build_engine
from exam_session.services.catalog import SqlApplicationLookup, SqlTestCatalog, definition_to_template
from exam_session.services.domain import (
    CandidateIdentity, CustomBank, PassStatus, ScoreResult, StaticGenerated, SubjectScore, SubmitTrigger
)
from exam_session.services.result_store import SqlResultStore
from exam_session.models.test_template import TestTemplate

from conftest import START, FakeGenerator, candidate, custom_test, generated_test, make_question

SEED_FILE = os.path.join(os.path.dirname(__file__), "..", "..", "seed_data.json")


def score_result(application_id="GSA001", percentage=50.0, time_taken=100):
    return ScoreResult(
        candidate=CandidateIdentity(application_id=application_id, applicant_name="Amit Kumar"),
        test_id="gk-practice",
        test_name="General Knowledge Practice",
        total_questions=2,
        correct_count=1,
        wrong_count=0,
        unanswered_count=1,
        percentage=percentage,
        subject_breakdown=[SubjectScore(name="GK", correct_count=1, total_count=2)],
        status=PassStatus.PASS,
        pass_threshold=40,
        time_taken_seconds=time_taken,
        trigger=SubmitTrigger.MANUAL,
        submitted_at=START,
        answers={0: "A"},
    )


class TestSqlTestCatalog:
    """Test TestTemplate <-> TestDefinition"""

    def test_generated_template_round_trip(self, db_session_factory):
        """Test a static generated test survives storage"""
        db = db_session_factory()
        db.add(definition_to_template(generated_test(pass_threshold=55)))
        db.commit()
        db.close()

        definition = SqlTestCatalog(db_session_factory).get("math-science")

        assert isinstance(definition.source, StaticGenerated)
        assert [(s.name, s.question_count) for s in definition.source.subjects] == [("Math", 3), ("Science", 3)]
        assert definition.pass_threshold == 55
        assert definition.duration_seconds == 600

    def test_custom_template_round_trip(self, db_session_factory):
        """Test a custom bank survives storage"""
        db = db_session_factory()
        db.add(definition_to_template(custom_test()))
        db.commit()
        db.close()

        definition = SqlTestCatalog(db_session_factory).get("gk-practice")

        assert isinstance(definition.source, CustomBank)
        assert definition.source.questions == [make_question(i) for i in range(1, 4)]

    def test_unknown_and_malformed_templates(self, db_session_factory):
        """Test missing and unparseable templates both read as unavailable"""
        db = db_session_factory()
        db.add(TestTemplate(id="broken", title="Broken", time_limit_minutes=10, total_questions=1,
                            subjects=json.dumps([{"name": "Math", "question_count": 0}])))
        db.commit()
        db.close()

        catalog = SqlTestCatalog(db_session_factory)

        assert catalog.get("missing") is None
        assert catalog.get("broken") is None


class TestSqlApplicationLookup:
    def test_lookup_by_application_number(self, db_session_factory):
        """Test an application row maps to an ApplicationRecord"""
        db = db_session_factory()
        db.add(Application(application_number="GSA001", full_name="Amit Kumar", unique_id="7391",
                           test_mode="online", payment_verified=True))
        db.commit()
        db.close()

        record = SqlApplicationLookup(db_session_factory).find_by_identifier(" GSA001 ")

        assert record.application_id == "GSA001"
        assert record.applicant_name == "Amit Kumar"
        assert record.payment_verified is True
        assert record.unique_id == "7391"
        assert SqlApplicationLookup(db_session_factory).find_by_identifier("NOPE") is None


class TestSqlResultStore:
    """Test append-only result storage"""

    def test_add_and_get(self, db_session_factory):
        """Test a stored result reads back with its questions"""
        store = SqlResultStore(db_session_factory)
        store.add(score_result(), [make_question(1), make_question(2)])

        stored = store.get_for("GSA001", "gk-practice")

        assert stored.result == score_result()
        assert [q.id for q in stored.questions] == [1, 2]
        assert store.exists_for("GSA001", "gk-practice") is True
        assert store.exists_for("GSA001", "other") is False

    def test_first_write_wins(self, db_session_factory):
        """Test a duplicate insert keeps the original row"""
        store = SqlResultStore(db_session_factory)
        store.add(score_result(percentage=50.0), [make_question(1), make_question(2)])
        store.add(score_result(percentage=100.0), [make_question(1), make_question(2)])

        db = db_session_factory()
        try:
            rows = db.query(TestResult).all()
        finally:
            db.close()
        assert len(rows) == 1
        assert rows[0].percentage == 50.0

    def test_top_results_order(self, db_session_factory):
        """Test percentage desc, then time taken asc"""
        store = SqlResultStore(db_session_factory)
        store.add(score_result("A", 50.0, 100), [])
        store.add(score_result("B", 100.0, 300), [])
        store.add(score_result("C", 100.0, 200), [])

        ranked = store.top_results("gk-practice")

        assert [r.candidate.application_id for r in ranked] == ["C", "B", "A"]


class TestSeedAndWiring:
    """Test the seed loader and the SQL-backed engine"""

    def test_seed_file_loads(self, db_session_factory):
        """Test the shipped seed file validates and is idempotent"""
        with open(SEED_FILE) as f:
            data = json.load(f)

        db = db_session_factory()
        try:
            assert load(data, db) == (2, 3)
            assert load(data, db) == (2, 3)
            assert db.query(Application).count() == 3
        finally:
            db.close()
        assert SqlTestCatalog(db_session_factory).get("gk-practice").pass_threshold == 60

    def test_sql_engine_session(self, db_session_factory):
        """Test a whole session over the SQL stores"""
        with open(SEED_FILE) as f:
            data = json.load(f)
        db = db_session_factory()
        load(data, db)
        db.close()

        engine = build_engine(db_session_factory, generator=FakeGenerator())
        engine.background_timers = False
        try:
            session = engine.begin_session("gk-practice", candidate(application_number="GSA2024AB12C"))
            engine.record_answer(session, 1, "366")
            engine.record_answer(session, 2, "Mars")
            result = engine.submit(session)
        finally:
            engine.shutdown()

        assert result.correct_count == 2
        assert result.status is PassStatus.PASS
        assert engine.results.exists_for("GSA2024AB12C", "gk-practice")
        assert engine.snapshots.load("gk-practice") is None
