"""Tests for core/exam_history.py"""

import sys
sys.path.append(".")

from datetime import date

from core.exam_history import (
    ExamRecord,
    ExamSummary,
    predict_next_score,
    prior_exam_summary,
    summarize_exam,
)


def summary(concept, day, score):
    return ExamSummary(
        concept=concept,
        date=f"2024-05-{day:02d}",
        score=score,
        total_questions=10,
        avg_time_ms=20_000,
    )


def test_summarize_exam():
    long_question = "Why " + "x" * 100
    records = [
        ExamRecord(question="2 + 2?", is_correct=True, difficulty="easy", time_ms=10_000),
        ExamRecord(question=long_question, is_correct=False, difficulty="easy", time_ms=20_000),
        ExamRecord(question="d/dx x^2?", is_correct=True, difficulty="medium", time_ms=30_000),
        ExamRecord(question="d/dx sin x?", is_correct=True, difficulty="medium", time_ms=40_000),
    ]
    result = summarize_exam(" Derivatives ", records, on=date(2024, 5, 1))

    assert result.concept == "derivatives"
    assert result.date == "2024-05-01"
    assert result.score == 75
    assert result.total_questions == 4
    assert result.avg_time_ms == 25_000
    assert result.wrong_topics == [long_question[:80]]
    assert result.difficulty_breakdown == {"easy": 50, "medium": 100, "hard": -1}


def test_summarize_exam_caps_wrong_topics():
    records = [ExamRecord(question=f"q{i}", is_correct=False, difficulty="hard", time_ms=1)
               for i in range(10)]
    result = summarize_exam("limits", records)
    assert result.score == 0
    assert result.wrong_topics == [f"q{i}" for i in range(6)]


def test_summarize_empty_exam():
    assert summarize_exam("limits", []) is None


def test_summary_round_trips_through_dict():
    stored = summary("limits", 3, 80)
    assert ExamSummary.from_dict(stored.to_dict()) == stored


def test_predict_next_score_none_without_history():
    assert predict_next_score([], "limits") is None
    assert predict_next_score([summary("vectors", 1, 90)], "limits") is None


def test_predict_next_score_single_exam():
    prediction = predict_next_score([summary("limits", 1, 64)], "Limits")
    assert prediction.score == 64
    assert prediction.confidence == "Medium"


def test_predict_next_score_two_exams():
    exams = [summary("limits", 9, 80), summary("limits", 2, 60)]
    prediction = predict_next_score(exams, "limits")
    assert prediction.score == 72
    assert prediction.confidence == "Medium"
    assert "improving" in prediction.reasoning


def test_predict_next_score_three_or_more():
    exams = [
        summary("limits", 1, 10),
        summary("limits", 2, 50),
        summary("limits", 3, 70),
        summary("limits", 4, 90),
        summary("vectors", 5, 0),
    ]
    prediction = predict_next_score(exams, "limits")
    assert prediction.score == 76
    assert prediction.confidence == "High"
    assert "high" in prediction.reasoning


def test_prior_exam_summary():
    exams = [summary("limits", 4, 90), summary("limits", 2, 50)]
    assert prior_exam_summary(exams, "limits").score == 90
    assert prior_exam_summary(exams, "vectors") is None
