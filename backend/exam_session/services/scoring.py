"""
Scoring Service - Computes the final result of a submitted test session.

Implements the scoring pass:
1. Walk the flat question list once, comparing each recorded answer to the
   question's correct option (missing answers count as unanswered)
2. Attribute every correct answer to its owning subject through the
   cumulative segment offsets established when the questions were resolved
3. percentage = 100 * correct / total_questions
4. status = Pass iff percentage >= pass threshold
"""

import time
from datetime import datetime, timezone
from typing import Optional

from exam_session import config
from exam_session.services.domain import (
    PassStatus, ScoreResult, SessionStatus, SubjectScore, SubmitTrigger,
    TestDefinition, TestSession
)
from exam_session.services.errors import ScoringPreconditionError
from exam_session.logging_config import get_logger, log_with_context

# Channel logger for scoring operations
logger = get_logger("scoring")


class Scorer:
    """
    Deterministic scorer for submitted sessions.

    The pass threshold is configuration consumed here, not owned here: the
    default comes from PASS_THRESHOLD_PERCENT and a test definition may
    override it.
    """

    def __init__(self, pass_threshold: float = None):
        self.pass_threshold = config.PASS_THRESHOLD_PERCENT if pass_threshold is None else pass_threshold

    def threshold_for(self, definition: Optional[TestDefinition]) -> float:
        if definition is not None and definition.pass_threshold is not None:
            return definition.pass_threshold
        return self.pass_threshold

    def score(self, session: TestSession, definition: Optional[TestDefinition] = None,
              trigger: SubmitTrigger = SubmitTrigger.MANUAL,
              time_taken_seconds: Optional[int] = None) -> ScoreResult:
        """
        Compute the ScoreResult for a submitted session.

        Args:
            session: The session to score; must already be Submitted
            definition: The test definition (for the title and threshold override)
            trigger: What ended the session
            time_taken_seconds: Overrides duration - remaining when given

        Returns:
            Immutable ScoreResult
        """
        start_time = time.time()

        if session.status is not SessionStatus.SUBMITTED:
            raise ScoringPreconditionError("Session for test '{}' is {}, not Submitted".format(
                session.test_id, session.status.value))

        total_questions = len(session.questions)
        if total_questions == 0:
            raise ScoringPreconditionError("Test '{}' has no questions to score".format(session.test_id))

        covered = sum(segment.count for segment in session.segments)
        if covered != total_questions:
            raise ScoringPreconditionError(
                "Subject segments cover {} questions but the session has {}".format(covered, total_questions))

        answers = dict(session.answers)

        correct_count = 0
        wrong_count = 0
        unanswered_count = 0
        subject_correct = [0] * len(session.segments)

        for index, question in enumerate(session.questions):
            selected = answers.get(index)
            if selected is None:
                unanswered_count += 1
            elif question.is_correct(selected):
                correct_count += 1
                position = next(p for p, segment in enumerate(session.segments) if segment.owns(index))
                subject_correct[position] += 1
            else:
                wrong_count += 1

        percentage = 100.0 * correct_count / total_questions
        threshold = self.threshold_for(definition)
        status = PassStatus.PASS if percentage >= threshold else PassStatus.FAIL

        breakdown = [
            SubjectScore(name=segment.name, correct_count=subject_correct[position], total_count=segment.count)
            for position, segment in enumerate(session.segments)
        ]

        if time_taken_seconds is None:
            time_taken_seconds = session.duration_seconds - session.remaining_seconds

        result = ScoreResult(
            candidate=session.candidate,
            test_id=session.test_id,
            test_name=definition.title if definition is not None else session.test_name,
            total_questions=total_questions,
            correct_count=correct_count,
            wrong_count=wrong_count,
            unanswered_count=unanswered_count,
            percentage=percentage,
            subject_breakdown=breakdown,
            status=status,
            pass_threshold=threshold,
            time_taken_seconds=max(0, time_taken_seconds),
            trigger=trigger,
            submitted_at=datetime.now(timezone.utc),
            answers=answers,
        )

        duration_ms = (time.time() - start_time) * 1000

        log_with_context(logger, "INFO",
            "Score computed: {}/{} ({:.2f}%) {} (wrong={}, unanswered={})".format(
                correct_count, total_questions, percentage, status.value, wrong_count, unanswered_count),
            context={
                "test_id": session.test_id,
                "application_id": session.candidate.application_id,
            },
            extra_data={
                "duration_ms": round(duration_ms, 2),
                "percentage": round(percentage, 4),
                "threshold": threshold,
                "trigger": trigger.value,
            })

        return result
