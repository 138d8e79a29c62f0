from exam_session.models.test_template import TestTemplate
from exam_session.models.application import Application
from exam_session.models.session_snapshot import SessionSnapshotRecord
from exam_session.models.test_result import TestResult

__all__ = ["TestTemplate", "Application", "SessionSnapshotRecord", "TestResult"]
