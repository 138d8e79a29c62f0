"""
Catalog and record-lookup dependencies.

- TestCatalog: resolves a test id to its published TestDefinition
- ApplicationLookup: finds an application record by its public number

Both come in an in-memory flavour (tests, embedding) and a SQLAlchemy
flavour that opens one short-lived session per call, so they are safe to use
from timer threads as well as request handlers.
"""

import json
from typing import Callable, Dict, Iterable, Optional, Protocol

from pydantic import ValidationError
from sqlalchemy.orm import Session

from exam_session.models.application import Application
from exam_session.models.test_template import TestTemplate
from exam_session.services.domain import (
    ApplicationRecord, CustomBank, StaticGenerated, TestDefinition
)
from exam_session.logging_config import get_logger, log_with_context

logger = get_logger("db")


class TestCatalog(Protocol):
    __test__ = False  # not a pytest test class

    def get(self, test_id: str) -> Optional[TestDefinition]:
        ...


class ApplicationLookup(Protocol):
    def find_by_identifier(self, identifier: str) -> Optional[ApplicationRecord]:
        ...


class InMemoryTestCatalog:
    __test__ = False  # not a pytest test class

    def __init__(self, definitions: Iterable[TestDefinition] = ()):
        self._definitions: Dict[str, TestDefinition] = {d.id: d for d in definitions}

    def add(self, definition: TestDefinition) -> None:
        self._definitions[definition.id] = definition

    def get(self, test_id: str) -> Optional[TestDefinition]:
        return self._definitions.get(test_id)


class InMemoryApplicationLookup:
    def __init__(self, records: Iterable[ApplicationRecord] = ()):
        self._records: Dict[str, ApplicationRecord] = {r.application_id: r for r in records}

    def add(self, record: ApplicationRecord) -> None:
        self._records[record.application_id] = record

    def find_by_identifier(self, identifier: str) -> Optional[ApplicationRecord]:
        return self._records.get(identifier.strip())


def template_to_definition(template: TestTemplate) -> TestDefinition:
    """Convert a TestTemplate row to a TestDefinition (questions take precedence over subjects)."""
    questions = template.questions_list
    if questions:
        source = CustomBank(questions=questions, sections=template.sections_list)
    else:
        source = StaticGenerated(subjects=template.subjects_list or [])
    return TestDefinition(
        id=template.id,
        title=template.title,
        time_limit_minutes=template.time_limit_minutes,
        total_questions=template.total_questions,
        source=source,
        audience_level=template.audience_level or "",
        language=template.language or "English",
        window_start=template.window_start,
        window_end=template.window_end,
        required_modality=template.required_modality or "online",
        pass_threshold=template.pass_threshold,
    )


def definition_to_template(definition: TestDefinition) -> TestTemplate:
    """Inverse of template_to_definition, used when publishing templates."""
    source = definition.source
    return TestTemplate(
        id=definition.id,
        title=definition.title,
        time_limit_minutes=definition.time_limit_minutes,
        total_questions=definition.total_questions,
        audience_level=definition.audience_level,
        language=definition.language,
        subjects=json.dumps([s.model_dump() for s in source.subjects]) if isinstance(source, StaticGenerated) else None,
        questions=json.dumps([q.model_dump() for q in source.questions]) if isinstance(source, CustomBank) else None,
        sections=json.dumps([s.model_dump() for s in source.sections])
        if isinstance(source, CustomBank) and source.sections else None,
        window_start=definition.window_start,
        window_end=definition.window_end,
        required_modality=definition.required_modality,
        pass_threshold=definition.pass_threshold,
    )


class SqlTestCatalog:
    __test__ = False  # not a pytest test class

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def get(self, test_id: str) -> Optional[TestDefinition]:
        db = self._session_factory()
        try:
            template = db.query(TestTemplate).filter(TestTemplate.id == test_id).first()
            if template is None:
                return None
            try:
                return template_to_definition(template)
            except ValidationError as e:
                # A malformed template is an authoring error: treat as unavailable
                log_with_context(logger, "ERROR", "Test template {} is malformed".format(test_id),
                                 context={"test_id": test_id},
                                 extra_data={"errors": e.errors(include_url=False)})
                return None
        finally:
            db.close()


class SqlApplicationLookup:
    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def find_by_identifier(self, identifier: str) -> Optional[ApplicationRecord]:
        db = self._session_factory()
        try:
            application = db.query(Application).filter(
                Application.application_number == identifier.strip()
            ).first()
            if application is None:
                return None
            return ApplicationRecord(
                application_id=application.application_number,
                applicant_name=application.full_name,
                payment_verified=bool(application.payment_verified),
                modality=application.test_mode or "online",
                unique_id=application.unique_id,
            )
        finally:
            db.close()
