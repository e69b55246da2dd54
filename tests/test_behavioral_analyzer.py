"""Tests for core/behavioral_analyzer.py"""

import sys
sys.path.append(".")

import math

import pytest

from core.behavioral_analyzer import (
    BehaviorSignals,
    InterventionContext,
    SessionResponse,
    ability_mismatch_flag,
    detect_cheating,
    detect_guessing,
    option_entropy,
    selection_pattern_flag,
    should_trigger_intervention,
    sigmoid,
    speed_anomaly_flag,
    wrong_streak,
)
from core.irt_model import ItemParameters


def response(option=0, correct=True, time_ms=20_000, difficulty="medium",
             concept="general", theta=None, item=None, qid="q"):
    return SessionResponse(
        question_id=qid,
        selected_option=option,
        is_correct=correct,
        response_time_ms=time_ms,
        difficulty=difficulty,
        concept=concept,
        theta=theta,
        item=item,
    )


def context(**overrides):
    values = dict(
        mode="practice",
        is_correct=True,
        current_p=0.8,
        prev_p=0.8,
        wrong_streak=0,
        guess_probability=0.1,
        confidence=0.8,
        time_remaining_ms=None,
    )
    values.update(overrides)
    return InterventionContext(**values)


# ==================== Guessing ====================

def test_speed_anomaly_flag():
    assert speed_anomaly_flag(2_000, "hard")
    assert not speed_anomaly_flag(20_000, "hard")
    # z = 2.5 exactly is not an anomaly
    assert not speed_anomaly_flag(0, "medium")
    # Unknown tiers use the default expectation
    assert speed_anomaly_flag(2_000, "unknown") == speed_anomaly_flag(2_000, "medium")


def test_option_entropy():
    assert option_entropy([0, 1, 2, 3]) == pytest.approx(2.0)
    assert option_entropy([0, 0, 0, 0]) == 0.0
    assert option_entropy([2, 2, 2]) == pytest.approx(0.0)
    assert option_entropy([0, 0, 1, 1]) == pytest.approx(1.0)
    assert option_entropy([]) == pytest.approx(2.0)


def test_option_entropy_ignores_out_of_range():
    assert option_entropy([0, 9, -1]) == pytest.approx(0.0)
    assert option_entropy([7, 8]) == pytest.approx(2.0)


def test_selection_pattern_same_option_run():
    history = [response(option=2) for _ in range(4)]
    assert selection_pattern_flag(history)
    assert not selection_pattern_flag(history[:3])


def test_selection_pattern_low_entropy_window():
    history = [response(option=0) for _ in range(9)] + [response(option=1)]
    assert selection_pattern_flag(history)

    varied = [response(option=i % 4) for i in range(10)]
    assert not selection_pattern_flag(varied)


def test_ability_mismatch_flag():
    hard_item = ItemParameters(id="q", a=1.5, b=1.5, c=0.1)
    assert ability_mismatch_flag(response(correct=True, theta=-3.0, item=hard_item))
    assert not ability_mismatch_flag(response(correct=False, theta=-3.0, item=hard_item))
    assert not ability_mismatch_flag(response(correct=True, theta=2.5, item=hard_item))
    assert not ability_mismatch_flag(response(correct=True, theta=None, item=hard_item))
    assert not ability_mismatch_flag(response(correct=True, theta=-3.0, item=None))


def test_detect_guessing_no_flags():
    r = response()
    result = detect_guessing(r, [r])
    assert result.probability == pytest.approx(sigmoid(-1.5))
    assert not (result.speed_flag or result.pattern_flag or result.mismatch_flag)
    assert result.reasons == []


def test_detect_guessing_speed_only():
    r = response(time_ms=3_000, difficulty="hard")
    result = detect_guessing(r, [r])
    assert result.speed_flag
    assert result.probability == pytest.approx(sigmoid(1.2 - 1.5))
    assert result.reasons == ["Answered in 3s, much faster than expected"]


def test_detect_guessing_all_flags():
    hard_item = ItemParameters(id="q", a=1.5, b=1.5, c=0.1)
    history = [response(option=3) for _ in range(3)]
    r = response(option=3, time_ms=1_000, difficulty="hard", theta=-3.0, item=hard_item)
    result = detect_guessing(r, history + [r])
    assert result.speed_flag and result.pattern_flag and result.mismatch_flag
    assert result.probability == pytest.approx(1.0 / (1.0 + math.exp(-1.5)))
    assert len(result.reasons) == 3


def test_detect_guessing_probability_bounds():
    r = response(time_ms=0, difficulty="hard")
    assert 0.0 <= detect_guessing(r, [r]).probability <= 1.0


# ==================== Cheating ====================

def test_detect_cheating_empty_session():
    result = detect_cheating(BehaviorSignals(tab_switches=5))
    assert result.score == 0.0
    assert not result.flagged
    assert result.breakdown == {"tab": 0.0, "paste": 0.0, "fast_hard": 0.0}


def test_detect_cheating_tab_switches_capped():
    result = detect_cheating(BehaviorSignals(tab_switches=50, total_questions=5))
    assert result.breakdown["tab"] == 1.0
    assert result.score == pytest.approx(0.3)
    assert not result.flagged


def test_detect_cheating_flagged():
    signals = BehaviorSignals(paste_events=5, fast_hard_answers=2, total_questions=5)
    result = detect_cheating(signals)
    assert result.breakdown["paste"] == 1.0
    assert result.breakdown["fast_hard"] == 1.0
    assert result.score == pytest.approx(0.7)
    assert result.flagged


def test_detect_cheating_score_bounded():
    signals = BehaviorSignals(tab_switches=100, paste_events=100,
                              fast_hard_answers=100, total_questions=1)
    assert detect_cheating(signals).score == pytest.approx(1.0)


def test_behavior_signals_reject_negative_counts():
    with pytest.raises(ValueError):
        BehaviorSignals(tab_switches=-1)


# ==================== Intervention ====================

def test_intervention_hard_exits():
    exam = should_trigger_intervention(context(mode="exam", guess_probability=0.9))
    assert not exam.trigger
    assert exam.priority == "low"
    assert exam.reasons == ["Exam mode, no interruptions"]

    mastered = should_trigger_intervention(context(current_p=0.95, wrong_streak=5))
    assert not mastered.trigger
    assert mastered.reasons == ["Concept already mastered"]

    out_of_time = should_trigger_intervention(context(time_remaining_ms=30_000, wrong_streak=5))
    assert not out_of_time.trigger
    assert out_of_time.reasons == ["Less than 60s remaining"]


def test_intervention_guess_and_streak_is_high_priority():
    decision = should_trigger_intervention(context(
        is_correct=False, current_p=0.3, prev_p=0.3,
        guess_probability=0.7, wrong_streak=2,
    ))
    assert decision.trigger
    assert decision.score == 6
    assert decision.priority == "high"
    assert len(decision.reasons) == 2


def test_intervention_active_zone_alone_does_not_trigger():
    decision = should_trigger_intervention(context(is_correct=False, current_p=0.5, prev_p=0.5))
    assert not decision.trigger
    assert decision.score == 1
    assert decision.priority == "low"


def test_intervention_mastery_drop_in_active_zone():
    decision = should_trigger_intervention(context(is_correct=False, current_p=0.4, prev_p=0.6))
    assert decision.trigger
    assert decision.score == 3
    assert decision.priority == "medium"


def test_intervention_unsure_but_correct():
    decision = should_trigger_intervention(context(confidence=0.2))
    assert decision.trigger
    assert decision.score == 2
    assert decision.priority == "low"


def test_intervention_quiet_session():
    decision = should_trigger_intervention(context())
    assert not decision.trigger
    assert decision.reasons == []
    assert decision.score == 0


def test_wrong_streak_counts_one_concept():
    responses = [
        response(concept="limits", correct=True),
        response(concept="limits", correct=False),
        response(concept="vectors", correct=True),
        response(concept="limits", correct=False),
    ]
    assert wrong_streak(responses, "limits") == 2
    assert wrong_streak(responses, "vectors") == 0
    assert wrong_streak(responses, "unseen") == 0


def test_two_second_hard_answer_flags_speed():
    r = response(time_ms=2_000, difficulty="hard", correct=True)
    assert detect_guessing(r, [r]).speed_flag


def test_four_identical_selections_flag_pattern_regardless_of_correctness():
    history = [response(option=1, correct=i % 2 == 0) for i in range(4)]
    assert detect_guessing(history[-1], history).pattern_flag


def test_detect_cheating_all_zero():
    result = detect_cheating(BehaviorSignals(0, 0, 0, 0))
    assert result.score == 0
    assert result.flagged is False
