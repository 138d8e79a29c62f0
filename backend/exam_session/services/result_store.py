"""
Result Store - append-only persistence of final ScoreResults.

Besides the write, the store answers the eligibility gate's
duplicate-submission question (exists_for) and serves the answer-review and
leaderboard reads.
"""

import json
import threading
import time
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from exam_session.models.test_result import TestResult
from exam_session.services.domain import Question, ScoreResult
from exam_session.logging_config import get_logger, log_with_context

logger = get_logger("results")


class StoredResult:
    """A persisted result together with the questions it was scored against."""

    def __init__(self, result: ScoreResult, questions: List[Question]):
        self.result = result
        self.questions = questions

    def review(self) -> List[dict]:
        """Per-question view: candidate's answer next to the correct one."""
        items = []
        for index, question in enumerate(self.questions):
            selected = self.result.answers.get(index)
            items.append({
                "index": index,
                "question_id": question.id,
                "text": question.text,
                "options": list(question.options),
                "selected": selected,
                "correct_option": question.correct_option,
                "is_correct": question.is_correct(selected),
                "explanation": question.explanation,
            })
        return items


class ResultStore(Protocol):
    def add(self, result: ScoreResult, questions: List[Question]) -> None:
        ...

    def exists_for(self, identifier: str, test_id: str) -> bool:
        ...

    def get_for(self, identifier: str, test_id: Optional[str] = None) -> Optional[StoredResult]:
        ...

    def top_results(self, test_id: Optional[str] = None, limit: int = 20) -> List[ScoreResult]:
        ...


def _rank_key(result: ScoreResult):
    # Highest percentage first, faster finish breaks ties
    return (-result.percentage, result.time_taken_seconds)


class InMemoryResultStore:
    def __init__(self):
        self._results: Dict[Tuple[str, str], StoredResult] = {}
        self._lock = threading.Lock()

    def add(self, result: ScoreResult, questions: List[Question]) -> None:
        key = (result.candidate.application_id, result.test_id)
        with self._lock:
            if key in self._results:
                log_with_context(logger, "WARNING", "Result already stored, keeping the first one",
                                 context={"application_id": key[0], "test_id": key[1]})
                return
            self._results[key] = StoredResult(result, list(questions))

    def exists_for(self, identifier: str, test_id: str) -> bool:
        with self._lock:
            return (identifier, test_id) in self._results

    def get_for(self, identifier: str, test_id: Optional[str] = None) -> Optional[StoredResult]:
        with self._lock:
            for (application_id, stored_test_id), stored in self._results.items():
                if application_id == identifier and (test_id is None or stored_test_id == test_id):
                    return stored
        return None

    def top_results(self, test_id: Optional[str] = None, limit: int = 20) -> List[ScoreResult]:
        with self._lock:
            results = [s.result for s in self._results.values() if test_id is None or s.result.test_id == test_id]
        return sorted(results, key=_rank_key)[:limit]


class SqlResultStore:
    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def add(self, result: ScoreResult, questions: List[Question]) -> None:
        start_time = time.time()
        db = self._session_factory()
        try:
            record = TestResult(
                application_id=result.candidate.application_id,
                applicant_name=result.candidate.applicant_name,
                test_id=result.test_id,
                test_name=result.test_name,
                total_questions=result.total_questions,
                correct_count=result.correct_count,
                wrong_count=result.wrong_count,
                unanswered_count=result.unanswered_count,
                percentage=result.percentage,
                status=result.status.value,
                time_taken_seconds=result.time_taken_seconds,
                trigger=result.trigger.value,
                result_json=result.model_dump_json(),
                questions_json=json.dumps([q.model_dump() for q in questions]),
                submitted_at=result.submitted_at.replace(tzinfo=None),
            )
            db.add(record)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                # Unique (application_id, test_id): the first write wins
                log_with_context(logger, "WARNING", "Result already stored, keeping the first one",
                                 context={"application_id": result.candidate.application_id,
                                          "test_id": result.test_id})
                return
        finally:
            db.close()

        duration_ms = (time.time() - start_time) * 1000
        log_with_context(logger, "INFO", "Result stored: {:.2f}% {}".format(result.percentage, result.status.value),
                         context={"application_id": result.candidate.application_id, "test_id": result.test_id},
                         extra_data={"duration_ms": round(duration_ms, 2)})

    def exists_for(self, identifier: str, test_id: str) -> bool:
        db = self._session_factory()
        try:
            return db.query(TestResult.id).filter(
                TestResult.application_id == identifier,
                TestResult.test_id == test_id
            ).first() is not None
        finally:
            db.close()

    def get_for(self, identifier: str, test_id: Optional[str] = None) -> Optional[StoredResult]:
        db = self._session_factory()
        try:
            query = db.query(TestResult).filter(TestResult.application_id == identifier)
            if test_id:
                query = query.filter(TestResult.test_id == test_id)
            record = query.order_by(TestResult.submitted_at.desc()).first()
            if record is None:
                return None
            return StoredResult(
                ScoreResult.model_validate_json(record.result_json),
                [Question.model_validate(q) for q in record.questions_list],
            )
        finally:
            db.close()

    def top_results(self, test_id: Optional[str] = None, limit: int = 20) -> List[ScoreResult]:
        db = self._session_factory()
        try:
            query = db.query(TestResult)
            if test_id:
                query = query.filter(TestResult.test_id == test_id)
            records = query.order_by(
                TestResult.percentage.desc(),
                TestResult.time_taken_seconds.asc()
            ).limit(limit).all()
            return [ScoreResult.model_validate_json(r.result_json) for r in records]
        finally:
            db.close()
