"""
Unit Tests for the Question Source
Tests for: generated tests, custom banks, renumbering, shortfall policies
"""
import pytest

from exam_session.services.catalog import InMemoryTestCatalog
from exam_session.services.domain import GenerationPolicy, SubjectSpec
from exam_session.services.errors import GenerationShortfall, QuestionResolutionError, TestNotFound
from exam_session.services.question_source import QuestionSource

from conftest import FakeGenerator, custom_test, generated_test, make_question


class TestGeneratedTests:
    """Test per-subject generation"""

    def test_subjects_concatenated_in_order(self, source):
        """Test Math then Science, ids renumbered 1..N"""
        resolved = source.resolve("math-science")

        assert [q.text for q in resolved.questions] == [
            "Math 1", "Math 2", "Math 3", "Science 1", "Science 2", "Science 3"
        ]
        assert [q.id for q in resolved.questions] == [1, 2, 3, 4, 5, 6]

    def test_segments_are_cumulative(self, source):
        """Test segment offsets follow the realized counts"""
        resolved = source.resolve("math-science")

        assert [(s.name, s.offset, s.count) for s in resolved.segments] == [
            ("Math", 0, 3), ("Science", 3, 3)
        ]

    def test_generation_parameters_are_passed(self, generator):
        """Test audience level, language and subject parameters reach the generator"""
        definition = generated_test("params")
        subjects = [SubjectSpec(name="Math", question_count=2, generation_parameters={"difficulty": "hard"})]
        definition = definition.model_copy(update={"source": definition.source.model_copy(update={"subjects": subjects})})
        source = QuestionSource(InMemoryTestCatalog([definition]), generator)

        source.resolve("params")

        assert generator.calls == [("Math", 2, "Class 6", "English", {"difficulty": "hard"})]

    def test_extra_questions_are_truncated(self, catalog):
        """Test a generator returning more than asked"""
        generator = FakeGenerator(available={"Math": 5})
        resolved = QuestionSource(catalog, generator).resolve("math-science")

        assert len(resolved.questions) == 6
        assert resolved.segments[0].count == 3


class TestShortfall:
    """Test the two shortfall policies"""

    def test_best_effort_keeps_short_subject(self, catalog):
        """Test a short subject under BEST_EFFORT shrinks its segment"""
        generator = FakeGenerator(available={"Math": 2})
        source = QuestionSource(catalog, generator, policy=GenerationPolicy.BEST_EFFORT)

        resolved = source.resolve("math-science")

        assert len(resolved.questions) == 5
        assert [(s.name, s.offset, s.count) for s in resolved.segments] == [
            ("Math", 0, 2), ("Science", 2, 3)
        ]
        assert resolved.questions[2].text == "Science 1"
        assert len(resolved.warnings) == 1

    def test_best_effort_keeps_empty_subject_segment(self, catalog):
        """Test a subject that produced nothing still has a zero-length segment"""
        generator = FakeGenerator(available={"Math": 0})

        resolved = QuestionSource(catalog, generator, policy=GenerationPolicy.BEST_EFFORT).resolve("math-science")

        assert [(s.name, s.count) for s in resolved.segments] == [("Math", 0), ("Science", 3)]

    def test_strict_count_raises(self, catalog):
        """Test STRICT_COUNT refuses a short subject"""
        generator = FakeGenerator(available={"Science": 1})
        source = QuestionSource(catalog, generator, policy=GenerationPolicy.STRICT_COUNT)

        with pytest.raises(GenerationShortfall) as excinfo:
            source.resolve("math-science")

        assert excinfo.value.subject == "Science"

    def test_nothing_generated_is_an_error(self, catalog):
        """Test a test that resolves to zero questions"""
        generator = FakeGenerator(available={"Math": 0, "Science": 0})

        with pytest.raises(QuestionResolutionError):
            QuestionSource(catalog, generator).resolve("math-science")

    def test_generator_failure_is_resolution_error(self, catalog):
        """Test an unreachable generator"""
        generator = FakeGenerator(fail_on="Science")

        with pytest.raises(QuestionResolutionError):
            QuestionSource(catalog, generator).resolve("math-science")


class TestCustomBank:
    """Test pre-authored question banks"""

    def test_questions_used_verbatim(self, source, generator):
        """Test the bank is returned as-is without calling the generator"""
        resolved = source.resolve("gk-practice")

        assert [q.id for q in resolved.questions] == [1, 2, 3]
        assert generator.calls == []

    def test_single_segment_named_after_title(self, source):
        """Test a bank without sections is one segment"""
        resolved = source.resolve("gk-practice")

        assert [(s.name, s.offset, s.count) for s in resolved.segments] == [
            ("General Knowledge Practice", 0, 3)
        ]

    def test_sections_become_segments(self, catalog, generator):
        """Test a bank split into sections"""
        questions = [make_question(i) for i in range(1, 5)]
        catalog.add(custom_test("sectioned", questions=questions, sections=[
            SubjectSpec(name="Reasoning", question_count=1),
            SubjectSpec(name="English", question_count=3),
        ]))

        resolved = QuestionSource(catalog, generator).resolve("sectioned")

        assert [(s.name, s.offset, s.count) for s in resolved.segments] == [
            ("Reasoning", 0, 1), ("English", 1, 3)
        ]

    def test_mismatched_sections_fall_back(self, catalog, generator):
        """Test sections that do not cover the bank become a single segment"""
        questions = [make_question(i) for i in range(1, 5)]
        catalog.add(custom_test("broken", questions=questions, sections=[
            SubjectSpec(name="Reasoning", question_count=2),
        ]))

        resolved = QuestionSource(catalog, generator).resolve("broken")

        assert len(resolved.segments) == 1
        assert resolved.segments[0].count == 4
        assert resolved.warnings


class TestUnknownTest:
    def test_unknown_test_id(self, source):
        """Test TestNotFound for a test id that is not published"""
        with pytest.raises(TestNotFound):
            source.resolve("missing")
