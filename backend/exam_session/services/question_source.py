"""
Question Source - resolves a test id to its ordered, subject-segmented questions.

Two strategies, chosen by the definition's source variant:
- StaticGenerated: ask the generation dependency for each configured subject
  in order, concatenate, and renumber ids 1..N across subject boundaries
- CustomBank: use the pre-authored questions verbatim

QuestionSource is a pure resolver. It is called at most once per session;
keeping a reload from re-resolving is the snapshot layer's job.
"""

import time
from typing import List

from exam_session import config
from exam_session.services.catalog import TestCatalog
from exam_session.services.domain import (
    CustomBank, GenerationPolicy, Question, ResolvedTest, StaticGenerated,
    SubjectSegment, TestDefinition, build_segments
)
from exam_session.services.errors import GenerationShortfall, QuestionResolutionError, TestNotFound
from exam_session.services.generator import GenerationUnavailable, QuestionGenerator
from exam_session.logging_config import get_logger, log_with_context

logger = get_logger("questions")


class QuestionSource:

    def __init__(self, catalog: TestCatalog, generator: QuestionGenerator,
                 policy: GenerationPolicy = None):
        self.catalog = catalog
        self.generator = generator
        self.policy = policy or GenerationPolicy(config.GENERATION_POLICY)

    def resolve(self, test_id: str) -> ResolvedTest:
        """
        Resolve a test id into its definition, flat question list and segments.

        Raises:
            TestNotFound: unknown test id
            GenerationShortfall: a subject came back short under STRICT_COUNT
            QuestionResolutionError: generator unreachable or nothing usable produced
        """
        start_time = time.time()

        definition = self.catalog.get(test_id)
        if definition is None:
            raise TestNotFound(test_id)

        if isinstance(definition.source, CustomBank):
            resolved = self._resolve_custom_bank(definition)
        else:
            resolved = self._resolve_generated(definition)

        if not resolved.questions:
            raise QuestionResolutionError("Test '{}' resolved to zero questions".format(test_id))

        duration_ms = (time.time() - start_time) * 1000
        log_with_context(logger, "INFO",
            "Resolved {} questions in {} subjects".format(len(resolved.questions), len(resolved.segments)),
            context={"test_id": test_id},
            extra_data={
                "duration_ms": round(duration_ms, 2),
                "source": definition.source.kind,
                "declared_total": definition.total_questions,
                "warnings": resolved.warnings,
            })
        return resolved

    def _resolve_custom_bank(self, definition: TestDefinition) -> ResolvedTest:
        source: CustomBank = definition.source
        questions = list(source.questions)
        warnings = []

        if source.sections:
            segments = build_segments([(s.name, s.question_count) for s in source.sections])
            covered = sum(s.count for s in segments)
            if covered != len(questions):
                # Sections that do not tile the bank cannot be scored per subject
                warnings.append("Sections cover {} of {} questions; scoring as a single section".format(
                    covered, len(questions)))
                segments = [SubjectSegment(name=definition.title, offset=0, count=len(questions))]
        else:
            segments = [SubjectSegment(name=definition.title, offset=0, count=len(questions))]

        return ResolvedTest(definition=definition, questions=questions, segments=segments, warnings=warnings)

    def _resolve_generated(self, definition: TestDefinition) -> ResolvedTest:
        source: StaticGenerated = definition.source
        questions: List[Question] = []
        counts = []
        warnings = []

        for subject in source.subjects:
            try:
                generated = self.generator.generate(
                    subject.name,
                    subject.question_count,
                    definition.audience_level,
                    definition.language,
                    **subject.generation_parameters
                )
            except GenerationUnavailable as e:
                log_with_context(logger, "ERROR", "Generation failed for subject {}".format(subject.name),
                                 context={"test_id": definition.id, "subject": subject.name},
                                 extra_data={"error": str(e)})
                raise QuestionResolutionError(str(e)) from e

            # Extra questions beyond the configured count are dropped
            generated = list(generated)[:subject.question_count]

            if len(generated) < subject.question_count:
                if self.policy is GenerationPolicy.STRICT_COUNT:
                    raise GenerationShortfall(subject.name, subject.question_count, len(generated))
                message = "Subject '{}' generated {} of {} questions".format(
                    subject.name, len(generated), subject.question_count)
                warnings.append(message)
                log_with_context(logger, "WARNING", message,
                                 context={"test_id": definition.id, "subject": subject.name},
                                 extra_data={"requested": subject.question_count, "received": len(generated),
                                             "policy": self.policy.value})

            # Running ids across subjects so a flat index maps back to its subject
            for question in generated:
                questions.append(question.model_copy(update={"id": len(questions) + 1}))
            counts.append((subject.name, len(generated)))

        return ResolvedTest(definition=definition, questions=questions,
                            segments=build_segments(counts), warnings=warnings)
