"""Question graders.

Responsibilities:
- Objective grading (true_false, multiple_choice, multiple_answer) by
  exact comparison of normalized answers, full points or zero
- Subjective grading (short_answer) through the language model, which
  returns a 0-100 quality score that is converted into points

The subjective grader never raises on model failures: a failed call, a
timeout or a reply that does not match `AIEvaluation` produces a zero-score
result flagged as degraded so the assignment can still be graded.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

from assessment.core.answer_normalizer import OBJECTIVE_TYPES, answers_match
from assessment.core.errors import UnsupportedQuestionTypeError
from assessment.llm.client import LLMClient, LLMError

logger = structlog.get_logger(__name__)

# =============================================================================
# PROMPTS
# =============================================================================

SYSTEM_PROMPT_GRADE = """You are an experienced examiner grading a candidate's written answer.

RULES:
1. Grade only against the question and the reference answer
2. Be fair and consistent
3. Reply ONLY with valid JSON

The JSON must have exactly this structure:
{
  "score": integer from 0 to 100,
  "reasoning": "why this score was given",
  "suggestions": ["at most three concrete improvement suggestions"]
}"""

USER_PROMPT_GRADE = """**Question:**
{question}

**Reference answer:**
{correct_answer}

**Candidate answer:**
{answer}

Grade the answer and reply with the JSON."""

DEGRADED_REASONING = "Automatic grading failed; human review required"
DEGRADED_SUGGESTION = "Ask an instructor to grade this answer manually"
MAX_SUGGESTIONS = 3


# =============================================================================
# DATA CLASSES
# =============================================================================


class AIEvaluation(BaseModel):
    """Structured reply expected from the language model."""

    score: int = Field(ge=0, le=100)
    reasoning: str
    suggestions: list[str] = Field(default_factory=list)

    @field_validator("suggestions")
    @classmethod
    def _keep_first_three(cls, value: list[str]) -> list[str]:
        return value[:MAX_SUGGESTIONS]


@dataclass
class QuestionGrade:
    """Outcome of grading a single answer."""

    is_correct: bool
    score: int
    ai_evaluation: dict[str, Any] | None = None
    degraded: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {"is_correct": self.is_correct, "score": self.score}
        if self.ai_evaluation is not None:
            result["ai_evaluation"] = self.ai_evaluation
        if self.degraded:
            result["degraded"] = True
        return result


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero (8.5 -> 9)."""
    return int(math.floor(value + 0.5))


# =============================================================================
# GRADERS
# =============================================================================


def grade_objective(
    answer: str | None,
    correct_answer: str,
    question_type: str,
    max_points: int,
    delimiter: str = ",",
) -> QuestionGrade:
    """Grade an objective answer: all points on an exact match, zero otherwise."""
    is_correct = answers_match(answer, correct_answer, question_type, delimiter)
    return QuestionGrade(is_correct=is_correct, score=max_points if is_correct else 0)


def degraded_grade() -> QuestionGrade:
    """Zero-score result used when the model could not grade an answer."""
    return QuestionGrade(
        is_correct=False,
        score=0,
        ai_evaluation={
            "score": 0,
            "reasoning": DEGRADED_REASONING,
            "suggestions": [DEGRADED_SUGGESTION],
            "degraded": True,
        },
        degraded=True,
    )


def grade_subjective(
    question: str,
    correct_answer: str,
    answer: str | None,
    max_points: int,
    client: LLMClient | None,
    pass_quality: int = 60,
) -> QuestionGrade:
    """Grade a free-text answer with the language model.

    Args:
        question: Question text
        correct_answer: Reference answer
        answer: Candidate's answer
        max_points: Points the question is worth
        client: Language-model client (None grades as degraded)
        pass_quality: Quality score at or above which the answer counts as correct

    Returns:
        QuestionGrade with points = round(quality / 100 * max_points)
    """
    if answer is None or not answer.strip():
        return QuestionGrade(
            is_correct=False,
            score=0,
            ai_evaluation={"score": 0, "reasoning": "No answer given", "suggestions": []},
        )

    if client is None:
        logger.warning("subjective_grading_degraded", reason="no_client")
        return degraded_grade()

    user_message = USER_PROMPT_GRADE.format(
        question=question,
        correct_answer=correct_answer,
        answer=answer,
    )

    try:
        reply = client.simple_json(
            system_prompt=SYSTEM_PROMPT_GRADE,
            user_message=user_message,
            max_retries=0,
        )
        evaluation = AIEvaluation.model_validate(reply)
    except (LLMError, ValidationError) as e:
        logger.warning("subjective_grading_degraded", error=str(e), error_type=type(e).__name__)
        return degraded_grade()

    points = round_half_up(evaluation.score * max_points / 100)
    return QuestionGrade(
        is_correct=evaluation.score >= pass_quality,
        score=points,
        ai_evaluation=evaluation.model_dump(),
    )


def grade_question(
    question_id: int,
    question_type: str,
    question: str,
    correct_answer: str,
    answer: str | None,
    max_points: int,
    client: LLMClient | None = None,
    pass_quality: int = 60,
    delimiter: str = ",",
) -> QuestionGrade:
    """Dispatch an answer to the grader matching its question type.

    Raises:
        UnsupportedQuestionTypeError: If no grader handles the type
    """
    if question_type in OBJECTIVE_TYPES:
        return grade_objective(answer, correct_answer, question_type, max_points, delimiter)
    if question_type == "short_answer":
        return grade_subjective(question, correct_answer, answer, max_points, client, pass_quality)
    raise UnsupportedQuestionTypeError(question_id, question_type)
