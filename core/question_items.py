"""
Question Items - Boundary schema for generated questions and their IRT parameters.

The question-authoring service is external. Requests to it are built
here, and its payload is validated before any number derived from it
reaches the estimators; the only thing the core reads is the difficulty,
which becomes a 3PL item.
"""

import random
from typing import List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .config import IRTParams, DEFAULT_IRT
from .exam_history import ExamSummary
from .irt_model import ItemParameters, difficulty_to_b


class GeneratedQuestion(BaseModel):
    """A multiple-choice question as returned by the authoring service."""
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    question: str = Field(min_length=1)
    options: List[str] = Field(min_length=4, max_length=4)
    correct_index: int = Field(alias="correctIndex", ge=0)
    explanation: str = ""
    hint: str = ""

    @field_validator("options")
    @classmethod
    def options_not_blank(cls, options: List[str]) -> List[str]:
        if any(not option.strip() for option in options):
            raise ValueError("options must be non-empty strings")
        return options

    @model_validator(mode="after")
    def correct_index_in_range(self) -> "GeneratedQuestion":
        if self.correct_index >= len(self.options):
            raise ValueError("correctIndex must point at one of the options")
        return self


class QuestionRequest(BaseModel):
    """What the core sends to the authoring service."""
    model_config = ConfigDict(populate_by_name=True)

    concept: str = Field(min_length=1)
    difficulty: float = Field(ge=0.0, le=1.0)
    previous_questions: List[str] = Field(default_factory=list, alias="previousQuestions")
    prior_exam_summary: Optional[dict] = Field(default=None, alias="priorExamSummary")


MAX_PREVIOUS_QUESTIONS = 8


def build_question_request(concept: str, difficulty: float,
                           previous_questions: Sequence[str] = (),
                           prior_summary: Optional[ExamSummary] = None) -> QuestionRequest:
    """
    Request for the next generated question.

    Only the most recent MAX_PREVIOUS_QUESTIONS asked questions are sent so
    the service can avoid repeats; the last exam on the concept, if any,
    lets it aim at the weak tiers.
    """
    return QuestionRequest(
        concept=concept.strip().lower(),
        difficulty=difficulty,
        previous_questions=list(previous_questions)[-MAX_PREVIOUS_QUESTIONS:],
        prior_exam_summary=None if prior_summary is None else prior_summary.to_payload(),
    )


def difficulty_tier(difficulty: float) -> str:
    """Map a 0-1 difficulty to easy / medium / hard."""
    if difficulty < 0.35:
        return "easy"
    if difficulty < 0.7:
        return "medium"
    return "hard"


def assign_item_parameters(question_id: str, difficulty: float,
                           rng: Optional[random.Random] = None,
                           params: IRTParams = DEFAULT_IRT) -> ItemParameters:
    """
    3PL parameters for a freshly generated question.

    b is drawn inside the tier's band, a uniformly in [0.8, 1.6], and c is
    the four-option guessing floor.
    """
    rng = rng or random.Random()
    tier = difficulty_tier(difficulty)
    b = difficulty_to_b(tier, rng, params)
    a = params.discrimination_low + rng.random() * (params.discrimination_high -
                                                    params.discrimination_low)
    return ItemParameters(id=question_id, a=a, b=b, c=params.default_guess)
