"""
Submission Controller - finalizes a session exactly once.

Both the timer's expiry and the candidate's submit button end up here. The
status check-and-set and everything up to the stored result happen under
the session's lock, so whichever trigger arrives second simply receives the
result the first one produced.
"""

import time
from typing import Optional

from exam_session.services.domain import (
    ScoreResult, SessionStatus, SubmitTrigger, TestDefinition, TestSession
)
from exam_session.services.errors import SessionNotActive
from exam_session.services.result_store import ResultStore
from exam_session.services.scoring import Scorer
from exam_session.services.snapshot_store import SessionStateStore
from exam_session.services.timer import TimerController
from exam_session.logging_config import get_logger, log_with_context

logger = get_logger("session")


class SubmissionController:

    def __init__(self, scorer: Scorer, results: ResultStore, snapshots: SessionStateStore):
        self.scorer = scorer
        self.results = results
        self.snapshots = snapshots

    def submit(self, session: TestSession, trigger: SubmitTrigger,
               timer: Optional[TimerController] = None,
               definition: Optional[TestDefinition] = None) -> ScoreResult:
        """
        Finalize the session and return its ScoreResult.

        Idempotent: a Submitted session returns the result computed by the
        first call. If that call failed to persist the result, persisting is
        retried here without rescoring.
        """
        start_time = time.time()
        context = {"test_id": session.test_id, "application_id": session.candidate.application_id,
                   "context_id": session.context_id}

        with session.lock:
            if session.status is SessionStatus.SUBMITTED:
                if session.result is not None and not session.result_persisted:
                    self._persist(session)
                log_with_context(logger, "INFO", "Duplicate {} submit ignored".format(trigger.value),
                                 context=context)
                return session.result

            if session.status is not SessionStatus.IN_PROGRESS:
                raise SessionNotActive("Session for test '{}' has not started".format(session.test_id))

            session.status = SessionStatus.SUBMITTED
            if timer is not None:
                timer.stop()

            remaining_at_submission = max(0, session.remaining_seconds)
            try:
                self.snapshots.clear(session.test_id, session.context_id)
            except Exception:
                # The result is still produced; a stale snapshot is ignored once a result exists
                log_with_context(logger, "WARNING", "Could not clear snapshot after submission",
                                 context=context, exc_info=True)

            session.result = self.scorer.score(
                session, definition, trigger=trigger,
                time_taken_seconds=session.duration_seconds - remaining_at_submission,
            )
            self._persist(session)

        duration_ms = (time.time() - start_time) * 1000
        log_with_context(logger, "INFO", "Session submitted ({})".format(trigger.value),
                         context=context,
                         extra_data={"duration_ms": round(duration_ms, 2),
                                     "remaining_seconds": remaining_at_submission,
                                     "percentage": round(session.result.percentage, 4)})

        return session.result

    def _persist(self, session: TestSession) -> None:
        try:
            self.results.add(session.result, session.questions)
        except Exception:
            log_with_context(logger, "ERROR", "Failed to store result; will retry on next submit",
                             context={"test_id": session.test_id,
                                      "application_id": session.candidate.application_id},
                             exc_info=True)
            raise
        session.result_persisted = True
