"""
Answer Recorder - captures the candidate's selections and position.

Overwriting an earlier answer is expected (candidates move back and forth).
The selected option is not checked against the question's options; only the
index is validated. Every change is written through to the snapshot via the
`persist` callback, which must not raise.
"""

from typing import Callable, Optional

from exam_session.services.domain import SessionStatus, TestSession
from exam_session.services.errors import IndexOutOfRange, SessionNotActive


def _check_index(session: TestSession, index: int) -> None:
    if not 0 <= index < len(session.questions):
        raise IndexOutOfRange(index, len(session.questions))


def _check_active(session: TestSession) -> None:
    if session.status is not SessionStatus.IN_PROGRESS:
        raise SessionNotActive("Session for test '{}' is {}".format(session.test_id, session.status.value))


class AnswerRecorder:

    def __init__(self, persist: Callable[[TestSession], None] = None):
        self._persist = persist

    def set_answer(self, session: TestSession, question_index: int, selected_option: str) -> None:
        with session.lock:
            _check_active(session)
            _check_index(session, question_index)
            session.answers[question_index] = selected_option
        if self._persist is not None:
            self._persist(session)

    def clear_answer(self, session: TestSession, question_index: int) -> None:
        with session.lock:
            _check_active(session)
            _check_index(session, question_index)
            session.answers.pop(question_index, None)
        if self._persist is not None:
            self._persist(session)

    def get_answer(self, session: TestSession, question_index: int) -> Optional[str]:
        with session.lock:
            _check_index(session, question_index)
            return session.answers.get(question_index)

    def navigate(self, session: TestSession, new_index: int) -> int:
        with session.lock:
            _check_active(session)
            _check_index(session, new_index)
            session.current_index = new_index
        if self._persist is not None:
            self._persist(session)
        return new_index
