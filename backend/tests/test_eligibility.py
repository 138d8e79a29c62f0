"""
Unit Tests for the Eligibility Gate
Tests for: check order, every refusal reason, admin bypass, name normalization
"""
from datetime import timedelta

from exam_session.services.domain import EligibilityReason

from conftest import START, candidate, custom_test, make_question


class TestEligibleCandidate:
    """Test the happy path"""

    def test_matching_candidate_is_eligible(self, gate):
        """Test a paid online application with a matching name"""
        record = gate.verify("gk-practice", candidate())

        assert record.is_eligible is True
        assert record.reason is None
        assert record.application_id == "GSA001"
        assert record.applicant_name == "Amit Kumar"
        assert record.verified_at == START

    def test_name_match_ignores_case_and_whitespace(self, gate):
        """Test identity comparison is trimmed and case-insensitive"""
        record = gate.verify("gk-practice", candidate(name="  amit   KUMAR "))

        assert record.is_eligible is True

    def test_application_number_is_trimmed(self, gate):
        """Test surrounding whitespace in the typed application number"""
        record = gate.verify("gk-practice", candidate(application_number=" GSA001 "))

        assert record.is_eligible is True

    def test_correct_access_code(self, gate):
        """Test a matching Unique ID is accepted"""
        record = gate.verify("gk-practice", candidate(unique_id="7391"))

        assert record.is_eligible is True


class TestRefusals:
    """Test each refusal reason"""

    def test_unknown_application(self, gate):
        """Test RecordNotFound for an unknown application number"""
        record = gate.verify("gk-practice", candidate(application_number="NOPE"))

        assert record.is_eligible is False
        assert record.reason is EligibilityReason.RECORD_NOT_FOUND
        assert record.message

    def test_identity_mismatch(self, gate):
        """Test a logged-in user using someone else's application"""
        record = gate.verify("gk-practice", candidate(application_number="GSA001", name="Suresh Singh"))

        assert record.reason is EligibilityReason.IDENTITY_MISMATCH
        assert record.applicant_name is None

    def test_payment_required(self, gate):
        """Test an unpaid application"""
        record = gate.verify("gk-practice", candidate(application_number="GSA002", name="Priya Sharma"))

        assert record.reason is EligibilityReason.PAYMENT_REQUIRED

    def test_wrong_modality(self, gate):
        """Test an application registered for the offline test"""
        record = gate.verify("gk-practice", candidate(application_number="GSA003", name="Suresh Singh"))

        assert record.reason is EligibilityReason.WRONG_MODALITY

    def test_wrong_access_code(self, gate):
        """Test a Unique ID that does not match the application"""
        record = gate.verify("gk-practice", candidate(unique_id="0000"))

        assert record.reason is EligibilityReason.ACCESS_CODE_MISMATCH

    def test_already_submitted(self, gate, results, session_engine):
        """Test a second entry after a stored result"""
        session = session_engine.begin_session("gk-practice", candidate())
        session_engine.submit(session)

        record = gate.verify("gk-practice", candidate())

        assert record.reason is EligibilityReason.ALREADY_SUBMITTED

    def test_already_submitted_is_per_test(self, gate, session_engine):
        """Test a result for one test does not block another test"""
        session = session_engine.begin_session("gk-practice", candidate())
        session_engine.submit(session)

        record = gate.verify("math-science", candidate())

        assert record.is_eligible is True


class TestWindowAndOrder:
    """Test the test window and the order of checks"""

    def test_before_window(self, gate, catalog):
        """Test entry before the window opens"""
        catalog.add(custom_test("later", window_start=START + timedelta(days=1)))

        record = gate.verify("later", candidate())

        assert record.reason is EligibilityReason.OUTSIDE_TEST_WINDOW

    def test_after_window(self, gate, catalog):
        """Test entry after the window closes"""
        catalog.add(custom_test("closed", window_end=START - timedelta(minutes=1)))

        record = gate.verify("closed", candidate())

        assert record.reason is EligibilityReason.OUTSIDE_TEST_WINDOW

    def test_inside_window(self, gate, catalog):
        """Test entry while the window is open"""
        catalog.add(custom_test("open", window_start=START - timedelta(hours=1),
                                window_end=START + timedelta(hours=1)))

        assert gate.verify("open", candidate()).is_eligible is True

    def test_window_checked_before_lookup(self, gate, catalog):
        """Test an unknown application outside the window reports the window"""
        catalog.add(custom_test("later", window_start=START + timedelta(days=1)))

        record = gate.verify("later", candidate(application_number="NOPE"))

        assert record.reason is EligibilityReason.OUTSIDE_TEST_WINDOW

    def test_payment_checked_before_identity(self, gate):
        """Test an unpaid application under the wrong name reports payment"""
        record = gate.verify("gk-practice", candidate(application_number="GSA002", name="Amit Kumar"))

        assert record.reason is EligibilityReason.PAYMENT_REQUIRED

    def test_test_specific_modality(self, gate, catalog):
        """Test a test that requires the offline modality"""
        catalog.add(custom_test("hall", questions=[make_question(1)], required_modality="offline"))

        assert gate.verify("hall", candidate(application_number="GSA003", name="Suresh Singh")).is_eligible
        assert gate.verify("hall", candidate()).reason is EligibilityReason.WRONG_MODALITY


class TestAdminBypass:
    """Test administrators skip only the identity check"""

    def test_admin_skips_identity(self, gate):
        """Test an admin may enter under another applicant's number"""
        record = gate.verify("gk-practice", candidate(name="Admin User", is_admin=True))

        assert record.is_eligible is True
        assert record.applicant_name == "Amit Kumar"

    def test_admin_still_needs_payment(self, gate):
        """Test admins do not bypass payment"""
        record = gate.verify("gk-practice", candidate(application_number="GSA002", name="Admin", is_admin=True))

        assert record.reason is EligibilityReason.PAYMENT_REQUIRED
