"""Tests for core/question_items.py"""

import sys
sys.path.append(".")

import random

import pytest
from pydantic import ValidationError

from core.question_items import (
    GeneratedQuestion,
    QuestionRequest,
    MAX_PREVIOUS_QUESTIONS,
    assign_item_parameters,
    build_question_request,
    difficulty_tier,
)
from core.exam_history import ExamRecord, summarize_exam


def payload(**overrides):
    data = {
        "question": "What is the derivative of x^2?",
        "options": ["x", "2x", "x^2", "2"],
        "correctIndex": 1,
        "explanation": "Power rule.",
        "hint": "Bring the exponent down.",
    }
    data.update(overrides)
    return data


def test_generated_question_valid():
    question = GeneratedQuestion(**payload())
    assert question.correct_index == 1
    assert question.options[1] == "2x"
    assert question.model_dump(by_alias=True)["correctIndex"] == 1


def test_generated_question_accepts_field_name():
    data = payload()
    data["correct_index"] = data.pop("correctIndex")
    assert GeneratedQuestion(**data).correct_index == 1


def test_generated_question_optional_text():
    data = payload()
    del data["explanation"]
    del data["hint"]
    question = GeneratedQuestion(**data)
    assert question.explanation == ""
    assert question.hint == ""


@pytest.mark.parametrize("overrides", [
    {"options": ["a", "b", "c"]},
    {"options": ["a", "b", "c", "d", "e"]},
    {"options": ["a", "  ", "c", "d"]},
    {"correctIndex": 4},
    {"correctIndex": -1},
    {"question": ""},
])
def test_generated_question_rejects_malformed(overrides):
    with pytest.raises(ValidationError):
        GeneratedQuestion(**payload(**overrides))


def test_question_request_aliases():
    request = QuestionRequest(concept="limits", difficulty=0.4,
                              previousQuestions=["q1"], priorExamSummary={"score": 60})
    assert request.previous_questions == ["q1"]
    assert request.model_dump(by_alias=True)["priorExamSummary"] == {"score": 60}

    with pytest.raises(ValidationError):
        QuestionRequest(concept="limits", difficulty=1.5)


def test_build_question_request_keeps_recent_questions():
    asked = [f"q{i}" for i in range(12)]
    request = build_question_request("  Limits ", 0.5, asked)
    assert request.concept == "limits"
    assert len(request.previous_questions) == MAX_PREVIOUS_QUESTIONS
    assert request.previous_questions == asked[-MAX_PREVIOUS_QUESTIONS:]
    assert request.prior_exam_summary is None


def test_build_question_request_attaches_prior_exam():
    records = [
        ExamRecord(question="What is lim x->0 sin(x)/x?", is_correct=False,
                   difficulty="hard", time_ms=20_000),
        ExamRecord(question="Evaluate lim x->2 x^2", is_correct=True,
                   difficulty="easy", time_ms=10_000),
    ]
    summary = summarize_exam("limits", records)
    request = build_question_request("limits", 0.7, prior_summary=summary)

    prior = request.model_dump(by_alias=True)["priorExamSummary"]
    assert prior["score"] == 50
    assert prior["avgTimeMs"] == 15_000.0
    assert prior["wrongTopics"] == ["What is lim x->0 sin(x)/x?"]
    assert prior["difficultyBreakdown"] == {"easy": 100, "medium": -1, "hard": 0}


def test_difficulty_tier():
    assert difficulty_tier(0.0) == "easy"
    assert difficulty_tier(0.34) == "easy"
    assert difficulty_tier(0.35) == "medium"
    assert difficulty_tier(0.69) == "medium"
    assert difficulty_tier(0.7) == "hard"
    assert difficulty_tier(1.0) == "hard"


def test_assign_item_parameters_bands():
    rng = random.Random(11)
    for _ in range(30):
        easy = assign_item_parameters("e", 0.1, rng)
        hard = assign_item_parameters("h", 0.9, rng)
        assert -1.0 <= easy.b <= -0.5
        assert 0.5 <= hard.b <= 1.5
        assert 0.8 <= easy.a <= 1.6
        assert easy.c == 0.25


def test_assign_item_parameters_reproducible():
    first = assign_item_parameters("q1", 0.5, random.Random(3))
    second = assign_item_parameters("q1", 0.5, random.Random(3))
    assert first == second
    assert first.id == "q1"
    assert -0.25 <= first.b <= 0.25
