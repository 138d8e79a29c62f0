"""
Session Engine - the entry point callers use to run a timed test.

Flow for begin_session:
1. An active session in this context is returned as-is, once the
   authenticated name matches its owner; a submitted one refuses re-entry
2. A snapshot in this context is resumed (same questions, answers, position
   and remaining time) after the same name check, without running the rest
   of the gate or resolving questions again
3. Otherwise the eligibility gate runs once, the question source resolves
   the test once, the snapshot is written, and the timer starts

record_answer / navigate / submit operate on the returned TestSession; the
timer auto-submits through the same submit path when it reaches zero.
"""

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from exam_session import config
from exam_session.services.answers import AnswerRecorder
from exam_session.services.catalog import TestCatalog
from exam_session.services.domain import (
    CandidateIdentity, CandidateInput, EligibilityReason, EligibilityRecord, ScoreResult, SessionStatus,
    SubmitTrigger, TestDefinition, TestSession
)
from exam_session.services.eligibility import REASON_MESSAGES, EligibilityGate, as_utc, normalize_name, utcnow
from exam_session.services.errors import EligibilityFailure, SessionNotActive, SessionNotFound
from exam_session.services.question_source import QuestionSource
from exam_session.services.result_store import ResultStore
from exam_session.services.scoring import Scorer
from exam_session.services.snapshot_store import DEFAULT_CONTEXT, SessionStateStore
from exam_session.services.submission import SubmissionController
from exam_session.services.timer import TimerController
from exam_session.logging_config import get_logger, log_with_context

logger = get_logger("session")

TickListener = Callable[[int], None]


@dataclass
class _ActiveSession:
    session: TestSession
    timer: TimerController
    definition: Optional[TestDefinition]
    listeners: List[TickListener] = field(default_factory=list)
    save_failures: int = 0


class SessionEngine:
    """
    Runs timed test sessions for one process.

    All collaborators are injected; build_engine() in exam_session.runtime
    wires the SQL-backed ones.
    """

    def __init__(self, catalog: TestCatalog, gate: EligibilityGate, source: QuestionSource,
                 snapshots: SessionStateStore, results: ResultStore, scorer: Scorer = None,
                 timer_factory: Callable[[str], TimerController] = None,
                 clock: Callable[[], datetime] = utcnow,
                 enforce_deadline: bool = None, deadline_grace_seconds: int = None,
                 warning_after_failures: int = None, background_timers: bool = True):
        self.catalog = catalog
        self.gate = gate
        self.source = source
        self.snapshots = snapshots
        self.results = results
        self.scorer = scorer or Scorer()
        self.timer_factory = timer_factory or (lambda name: TimerController(name=name))
        self.clock = clock
        self.enforce_deadline = config.ENFORCE_DEADLINE if enforce_deadline is None else enforce_deadline
        self.deadline_grace_seconds = (config.DEADLINE_GRACE_SECONDS
                                       if deadline_grace_seconds is None else deadline_grace_seconds)
        self.warning_after_failures = (config.SNAPSHOT_WARNING_AFTER_FAILURES
                                       if warning_after_failures is None else warning_after_failures)
        self.background_timers = background_timers

        self.recorder = AnswerRecorder(persist=self._save_snapshot)
        self.submission = SubmissionController(self.scorer, results, snapshots)

        self._active: Dict[Tuple[str, str], _ActiveSession] = {}
        self._registry_lock = threading.Lock()

    # ── Session lifecycle ─────────────────────────────────────

    def begin_session(self, test_id: str, candidate: CandidateInput,
                      context_id: str = DEFAULT_CONTEXT) -> TestSession:
        """
        Admit the candidate and start (or resume) their session.

        Raises:
            EligibilityFailure: the gate refused entry
            QuestionResolutionError: no question set could be produced
        """
        start_time = time.time()
        key = (context_id, test_id)
        application_id = candidate.application_number.strip()
        log_context = {"test_id": test_id, "application_id": application_id, "context_id": context_id}

        with self._registry_lock:
            active = self._active.get(key)
        if active is not None and active.session.candidate.application_id == application_id:
            self._check_identity(test_id, candidate, active.session.candidate)
            if active.session.status is SessionStatus.SUBMITTED:
                self._refuse_reentry(active.session, log_context)
            if active.session.status is SessionStatus.IN_PROGRESS:
                log_with_context(logger, "INFO", "Returning active session", context=log_context)
                return active.session

        snapshot = self.snapshots.load(test_id, context_id)
        if snapshot is not None and snapshot.candidate.application_id == application_id:
            self._check_identity(test_id, candidate, snapshot.candidate)
            if self.results.exists_for(application_id, test_id):
                # Left behind by a submission whose cleanup failed
                log_with_context(logger, "WARNING", "Discarding snapshot of a submitted session",
                                 context=log_context)
                self.snapshots.clear(test_id, context_id)
            else:
                return self._resume(snapshot, context_id)

        record = self.gate.verify(test_id, candidate)
        if not record.is_eligible:
            raise EligibilityFailure(record)

        resolved = self.source.resolve(test_id)
        definition = resolved.definition

        started_at = as_utc(self.clock())
        session = TestSession(
            test_id=test_id,
            test_name=definition.title,
            candidate=record.candidate,
            questions=resolved.questions,
            segments=resolved.segments,
            duration_seconds=definition.duration_seconds,
            remaining_seconds=definition.duration_seconds,
            started_at=started_at,
            context_id=context_id,
            deadline=started_at + timedelta(seconds=definition.duration_seconds),
            pass_threshold=definition.pass_threshold,
        )

        active = self._register(session, definition)
        # Persist the question set before anyone sees it, so a reload resumes it
        self._save_snapshot(session, force=True)
        self._start(active)

        duration_ms = (time.time() - start_time) * 1000
        log_with_context(logger, "INFO",
            "Session started: {} questions, {}s".format(len(session.questions), session.duration_seconds),
            context=log_context,
            extra_data={"duration_ms": round(duration_ms, 2), "warnings": resolved.warnings})
        return session

    def _check_identity(self, test_id: str, candidate: CandidateInput, owner: CandidateIdentity) -> None:
        """The authenticated name must match the owner of a session being re-entered."""
        if candidate.is_admin:
            return
        if normalize_name(candidate.authenticated_name) != normalize_name(owner.applicant_name):
            log_with_context(logger, "WARNING", "Session re-entry refused: identity mismatch",
                             context={"test_id": test_id, "application_id": owner.application_id})
            raise EligibilityFailure(self._refusal(test_id, EligibilityReason.IDENTITY_MISMATCH, owner))

    def _refuse_reentry(self, session: TestSession, log_context: dict) -> None:
        """
        A submitted session stays registered until its result is stored.
        The write is retried here; entry is refused either way.
        """
        if not session.result_persisted:
            try:
                self.submission.submit(session, SubmitTrigger.MANUAL)
            except Exception as e:
                log_with_context(logger, "WARNING", "Result still not stored: {}".format(e),
                                 context=log_context)
        raise EligibilityFailure(
            self._refusal(session.test_id, EligibilityReason.ALREADY_SUBMITTED, session.candidate))

    def _refusal(self, test_id: str, reason: EligibilityReason, owner: CandidateIdentity) -> EligibilityRecord:
        return EligibilityRecord(
            is_eligible=False,
            test_id=test_id,
            reason=reason,
            message=REASON_MESSAGES[reason],
            application_id=owner.application_id,
            verified_at=self.clock(),
        )

    def _resume(self, snapshot, context_id: str) -> TestSession:
        definition = self.catalog.get(snapshot.test_id)
        session = TestSession.from_snapshot(
            snapshot,
            test_name=definition.title if definition is not None else snapshot.test_id,
            context_id=context_id,
            pass_threshold=definition.pass_threshold if definition is not None else None,
        )

        if self.enforce_deadline and session.deadline is not None:
            left = int((as_utc(session.deadline) - as_utc(self.clock())).total_seconds())
            session.remaining_seconds = max(0, min(session.remaining_seconds, left))

        active = self._register(session, definition)
        log_with_context(logger, "INFO", "Session resumed from snapshot",
                         context={"test_id": session.test_id,
                                  "application_id": session.candidate.application_id,
                                  "context_id": context_id},
                         extra_data={"remaining_seconds": session.remaining_seconds,
                                     "answered": len(session.answers),
                                     "current_index": session.current_index})

        if session.remaining_seconds <= 0:
            with session.lock:
                session.status = SessionStatus.IN_PROGRESS
            self.submit(session, SubmitTrigger.TIMEOUT)
            return session

        self._start(active)
        return session

    def _register(self, session: TestSession, definition: Optional[TestDefinition]) -> _ActiveSession:
        timer = self.timer_factory(f"{session.context_id}:{session.test_id}")
        active = _ActiveSession(session=session, timer=timer, definition=definition)
        with self._registry_lock:
            previous = self._active.get((session.context_id, session.test_id))
            if previous is not None:
                previous.timer.stop()
            self._active[(session.context_id, session.test_id)] = active
        return active

    def _start(self, active: _ActiveSession) -> None:
        session = active.session
        with session.lock:
            session.status = SessionStatus.IN_PROGRESS
            initial_seconds = session.remaining_seconds

        def on_tick(remaining: int) -> None:
            with session.lock:
                if session.status is SessionStatus.IN_PROGRESS:
                    session.remaining_seconds = remaining
            self._notify(active, remaining)

        def on_expire() -> None:
            self.submit(session, SubmitTrigger.TIMEOUT)

        active.timer.start(initial_seconds, on_tick=on_tick, on_expire=on_expire,
                           on_save=lambda: self._save_snapshot(session),
                           background=self.background_timers)

    # ── Candidate actions ─────────────────────────────────────

    def get_session(self, test_id: str, context_id: str = DEFAULT_CONTEXT) -> TestSession:
        with self._registry_lock:
            active = self._active.get((context_id, test_id))
        if active is None:
            raise SessionNotFound(test_id, context_id)
        return active.session

    def record_answer(self, session: TestSession, index: int, option: str) -> None:
        self._enforce_deadline(session)
        self.recorder.set_answer(session, index, option)

    def clear_answer(self, session: TestSession, index: int) -> None:
        self._enforce_deadline(session)
        self.recorder.clear_answer(session, index)

    def navigate(self, session: TestSession, new_index: int) -> int:
        self._enforce_deadline(session)
        return self.recorder.navigate(session, new_index)

    def submit(self, session: TestSession, trigger: SubmitTrigger = SubmitTrigger.MANUAL) -> ScoreResult:
        if trigger is SubmitTrigger.MANUAL and self._past_deadline(session):
            trigger = SubmitTrigger.TIMEOUT
        active = self._lookup(session)
        return self.submission.submit(
            session, trigger,
            timer=active.timer if active is not None else None,
            definition=active.definition if active is not None else None,
        )

    def _enforce_deadline(self, session: TestSession) -> None:
        if self._past_deadline(session) and session.status is SessionStatus.IN_PROGRESS:
            self.submit(session, SubmitTrigger.TIMEOUT)
            raise SessionNotActive("Time is up for test '{}'".format(session.test_id))

    def _past_deadline(self, session: TestSession) -> bool:
        if not self.enforce_deadline or session.deadline is None:
            return False
        grace = timedelta(seconds=self.deadline_grace_seconds)
        return as_utc(self.clock()) > as_utc(session.deadline) + grace

    # ── Clock observable ──────────────────────────────────────

    def add_tick_listener(self, session: TestSession, listener: TickListener) -> Callable[[], None]:
        """Subscribe to remaining-seconds updates; returns an unsubscribe function."""
        active = self._lookup(session)
        if active is None:
            raise SessionNotFound(session.test_id, session.context_id)
        active.listeners.append(listener)

        def unsubscribe() -> None:
            if listener in active.listeners:
                active.listeners.remove(listener)
        return unsubscribe

    def clock_view(self, session: TestSession) -> dict:
        with session.lock:
            return {
                "status": session.status.value,
                "remaining_seconds": session.remaining_seconds,
                "elapsed_seconds": session.elapsed_seconds,
                "duration_seconds": session.duration_seconds,
                "persistence_warning": session.persistence_warning,
            }

    def _notify(self, active: _ActiveSession, remaining: int) -> None:
        for listener in list(active.listeners):
            try:
                listener(remaining)
            except Exception:
                log_with_context(logger, "WARNING", "Tick listener failed",
                                 context={"test_id": active.session.test_id}, exc_info=True)

    # ── Snapshot persistence ──────────────────────────────────

    def _save_snapshot(self, session: TestSession, force: bool = False) -> None:
        """Write the session's snapshot; failures are counted, logged and never raised."""
        if not force and session.status is not SessionStatus.IN_PROGRESS:
            return
        active = self._lookup(session)
        context = {"test_id": session.test_id, "context_id": session.context_id}
        try:
            self.snapshots.save(session.test_id, session.to_snapshot(), session.context_id)
        except Exception as e:
            failures = 1
            if active is not None:
                active.save_failures += 1
                failures = active.save_failures
            log_with_context(logger, "WARNING", "Snapshot save failed, retrying next interval",
                             context=context, extra_data={"consecutive_failures": failures, "error": str(e)})
            if failures >= self.warning_after_failures and not session.persistence_warning:
                session.persistence_warning = True
                log_with_context(logger, "ERROR", "Snapshot persistence unavailable; resume on reload at risk",
                                 context=context, extra_data={"consecutive_failures": failures})
            return

        if active is not None:
            active.save_failures = 0
        if session.persistence_warning:
            session.persistence_warning = False
            log_with_context(logger, "INFO", "Snapshot persistence recovered", context=context)

        if session.status is SessionStatus.SUBMITTED:
            # A submission raced this save; drop what we just wrote
            self.snapshots.clear(session.test_id, session.context_id)

    def _lookup(self, session: TestSession) -> Optional[_ActiveSession]:
        with self._registry_lock:
            active = self._active.get((session.context_id, session.test_id))
        if active is None or active.session is not session:
            return None
        return active

    def shutdown(self) -> None:
        """Stop every timer and write a last snapshot for sessions still running."""
        with self._registry_lock:
            actives = list(self._active.values())
            self._active.clear()
        for active in actives:
            active.timer.stop()
            if active.session.status is SessionStatus.IN_PROGRESS:
                try:
                    self.snapshots.save(active.session.test_id, active.session.to_snapshot(),
                                        active.session.context_id)
                except Exception:
                    log_with_context(logger, "WARNING", "Final snapshot save failed at shutdown",
                                     context={"test_id": active.session.test_id}, exc_info=True)
        log_with_context(logger, "INFO", "Session engine stopped", extra_data={"sessions": len(actives)})
