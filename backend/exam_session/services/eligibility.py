"""
Eligibility Gate - one-time admission check before a session is created.

Checks run in a fixed order and stop at the first failure:
1. Test window (start/end of the test, when configured)
2. Application lookup by application number
3. Access code (the admit card's Unique ID), when the candidate supplies one
4. Duplicate submission (a result already exists for application + test)
5. Modality (the application must be registered for the online test)
6. Payment verification (distinguished, recoverable outcome)
7. Identity match between the logged-in candidate and the application
   (case-insensitive, trimmed; administrators bypass)

The returned EligibilityRecord is the only thing session creation trusts.
None of these checks run again once the timer has started.
"""

import time
from datetime import datetime, timezone
from typing import Callable, Optional

from exam_session import config
from exam_session.services.catalog import ApplicationLookup, TestCatalog
from exam_session.services.domain import CandidateInput, EligibilityReason, EligibilityRecord
from exam_session.services.result_store import ResultStore
from exam_session.logging_config import get_logger, log_with_context

logger = get_logger("eligibility")

# Remedial messages shown to the candidate for each refusal
REASON_MESSAGES = {
    EligibilityReason.OUTSIDE_TEST_WINDOW: "The test window is not open.",
    EligibilityReason.RECORD_NOT_FOUND: "The Application Number you entered is not valid.",
    EligibilityReason.ACCESS_CODE_MISMATCH: "The Unique ID you entered is incorrect.",
    EligibilityReason.ALREADY_SUBMITTED: "This test has already been submitted for this application.",
    EligibilityReason.WRONG_MODALITY: "This application is registered for an offline test.",
    EligibilityReason.PAYMENT_REQUIRED: "Your application fee has not been verified yet. Complete the payment and try again.",
    EligibilityReason.IDENTITY_MISMATCH: "This application does not belong to you. Please check your details.",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes (as stored by SQLite) are treated as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_name(name: Optional[str]) -> str:
    return " ".join((name or "").split()).lower()


class EligibilityGate:
    """Verifies that a candidate may enter a given test session."""

    def __init__(self, catalog: TestCatalog, records: ApplicationLookup, results: ResultStore,
                 clock: Callable[[], datetime] = utcnow, online_modality: str = None):
        self.catalog = catalog
        self.records = records
        self.results = results
        self.clock = clock
        self.online_modality = (online_modality or config.ONLINE_MODALITY).lower()

    def verify(self, test_id: str, candidate: CandidateInput) -> EligibilityRecord:
        """
        Run the admission checks for one entry attempt.

        Returns:
            EligibilityRecord with is_eligible True, or False plus the reason
        """
        start_time = time.time()
        now = as_utc(self.clock())
        record = self._verify(test_id, candidate, now)

        duration_ms = (time.time() - start_time) * 1000
        log_with_context(logger, "INFO" if record.is_eligible else "WARNING",
            "Eligibility {} for application {}".format(
                "granted" if record.is_eligible else "refused ({})".format(record.reason.value),
                candidate.application_number),
            context={"test_id": test_id, "application_id": candidate.application_number},
            extra_data={"duration_ms": round(duration_ms, 2), "admin": candidate.is_admin})
        return record

    def _verify(self, test_id: str, candidate: CandidateInput, now: datetime) -> EligibilityRecord:
        definition = self.catalog.get(test_id)
        required_modality = self.online_modality
        if definition is not None:
            window_start = as_utc(definition.window_start)
            window_end = as_utc(definition.window_end)
            if window_start is not None and now < window_start:
                return self._refuse(test_id, EligibilityReason.OUTSIDE_TEST_WINDOW, now,
                                    message="The test will start on {}.".format(window_start.isoformat()))
            if window_end is not None and now > window_end:
                return self._refuse(test_id, EligibilityReason.OUTSIDE_TEST_WINDOW, now,
                                    message="The test window has closed.")
            required_modality = (definition.required_modality or required_modality).lower()

        application = self.records.find_by_identifier(candidate.application_number)
        if application is None:
            return self._refuse(test_id, EligibilityReason.RECORD_NOT_FOUND, now)

        if candidate.unique_id is not None and candidate.unique_id.strip() != (application.unique_id or "").strip():
            return self._refuse(test_id, EligibilityReason.ACCESS_CODE_MISMATCH, now, application=application)

        if self.results.exists_for(application.application_id, test_id):
            return self._refuse(test_id, EligibilityReason.ALREADY_SUBMITTED, now, application=application)

        if (application.modality or "").lower() != required_modality:
            return self._refuse(test_id, EligibilityReason.WRONG_MODALITY, now, application=application)

        if not application.payment_verified:
            return self._refuse(test_id, EligibilityReason.PAYMENT_REQUIRED, now, application=application)

        if not candidate.is_admin and normalize_name(candidate.authenticated_name) != normalize_name(application.applicant_name):
            return self._refuse(test_id, EligibilityReason.IDENTITY_MISMATCH, now, application=application)

        return EligibilityRecord(
            is_eligible=True,
            test_id=test_id,
            message="Details verified.",
            application_id=application.application_id,
            applicant_name=application.applicant_name,
            verified_at=now,
        )

    def _refuse(self, test_id, reason, now, message=None, application=None) -> EligibilityRecord:
        return EligibilityRecord(
            is_eligible=False,
            test_id=test_id,
            reason=reason,
            message=message or REASON_MESSAGES[reason],
            application_id=application.application_id if application else None,
            verified_at=now,
        )
