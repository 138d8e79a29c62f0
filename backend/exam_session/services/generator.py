"""
Question generation dependency.

The engine only relies on the contract
    generate(subject, count, audience_level, language, **parameters) -> [Question]
which may return fewer questions than asked for. HttpQuestionGenerator talks
to a remote generation service over HTTP; what happens inside that service
(prompting, distractor generation) is not this package's concern.
"""

import time
from typing import List, Optional, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from exam_session import config
from exam_session.services.domain import Question
from exam_session.logging_config import get_logger, log_with_context

logger = get_logger("questions")


class QuestionGenerator(Protocol):
    def generate(self, subject: str, count: int, audience_level: str, language: str,
                 **parameters) -> List[Question]:
        ...


class GenerationUnavailable(Exception):
    """The generation service could not be reached or answered garbage."""


class GeneratedQuestion(BaseModel):
    """
    Wire shape of one generated question.

    Accepts both shapes the generation flows emit:
    {"question", "options", "answer"} and
    {"questionText", "options", "correctAnswerIndex", "explanation"}.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[int] = None
    question: Optional[str] = None
    question_text: Optional[str] = Field(None, alias="questionText")
    options: List[str]
    answer: Optional[str] = None
    correct_answer_index: Optional[int] = Field(None, alias="correctAnswerIndex")
    explanation: Optional[str] = None

    def to_question(self, position: int) -> Question:
        return Question(
            id=position,
            text=self.question or self.question_text or "",
            options=self.options,
            correct_option_index=self.correct_answer_index,
            correct_option_value=self.answer,
            explanation=self.explanation,
        )


class GenerationResponse(BaseModel):
    questions: List[GeneratedQuestion] = Field(default_factory=list)


class HttpQuestionGenerator:
    """
    Client for the remote question-generation service.

    POSTs {subject, questionCount, className, language, ...parameters} to
    `{base_url}/generate` and expects {"questions": [...]}.
    """

    def __init__(self, base_url: str = None, timeout: float = None, client: httpx.Client = None):
        self.base_url = (base_url or config.QUESTION_GENERATOR_URL).rstrip("/")
        self.timeout = config.QUESTION_GENERATOR_TIMEOUT_SECONDS if timeout is None else timeout
        self._client = client

    def _post(self, payload: dict) -> httpx.Response:
        if self._client is not None:
            return self._client.post(f"{self.base_url}/generate", json=payload, timeout=self.timeout)
        with httpx.Client(timeout=self.timeout) as client:
            return client.post(f"{self.base_url}/generate", json=payload)

    def generate(self, subject: str, count: int, audience_level: str, language: str,
                 **parameters) -> List[Question]:
        start_time = time.time()
        payload = {
            "subject": subject,
            "questionCount": count,
            "className": audience_level,
            "language": language,
            **parameters,
        }

        try:
            response = self._post(payload)
            response.raise_for_status()
            body = GenerationResponse.model_validate(response.json())
            questions = [q.to_question(position) for position, q in enumerate(body.questions, 1)]
        except httpx.HTTPError as e:
            raise GenerationUnavailable("Generation request for '{}' failed: {}".format(subject, e)) from e
        except (ValidationError, ValueError) as e:
            raise GenerationUnavailable("Generation service returned invalid data for '{}': {}".format(subject, e)) from e

        duration_ms = (time.time() - start_time) * 1000
        log_with_context(logger, "INFO",
            "Generated {} of {} questions for {}".format(len(questions), count, subject),
            context={"subject": subject},
            extra_data={"duration_ms": round(duration_ms, 2), "audience_level": audience_level,
                        "language": language})
        return questions
