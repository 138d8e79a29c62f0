"""
Exception hierarchy for the session engine.

Services raise these; routes translate them into HTTP responses.
"""

from exam_session.services.domain import EligibilityRecord, EligibilityReason


class ExamSessionError(Exception):
    """Base class for every engine error."""


class EligibilityFailure(ExamSessionError):
    """The gate refused entry. Recoverable from the candidate's side."""

    def __init__(self, record: EligibilityRecord):
        super().__init__(record.message or record.reason.value)
        self.record = record

    @property
    def reason(self) -> EligibilityReason:
        return self.record.reason


class QuestionResolutionError(ExamSessionError):
    """No usable question set could be produced; no session is created."""


class TestNotFound(QuestionResolutionError):
    __test__ = False  # not a pytest test class

    def __init__(self, test_id: str):
        super().__init__("Test '{}' does not exist".format(test_id))
        self.test_id = test_id


class GenerationShortfall(QuestionResolutionError):
    """A subject produced fewer questions than configured under STRICT_COUNT."""

    def __init__(self, subject: str, requested: int, received: int):
        super().__init__("Subject '{}' generated {} of {} questions".format(subject, received, requested))
        self.subject = subject
        self.requested = requested
        self.received = received


class IndexOutOfRange(ExamSessionError, IndexError):
    def __init__(self, index: int, size: int):
        super().__init__("Question index {} outside [0, {})".format(index, size))
        self.index = index
        self.size = size


class SessionNotActive(ExamSessionError):
    """The session is not InProgress (not started yet, submitted, or past its deadline)."""


class SessionNotFound(ExamSessionError):
    def __init__(self, test_id: str, context_id: str):
        super().__init__("No active session for test '{}' in context '{}'".format(test_id, context_id))
        self.test_id = test_id
        self.context_id = context_id


class ScoringPreconditionError(ExamSessionError, ValueError):
    """The session cannot be scored, e.g. a definition with zero questions."""
