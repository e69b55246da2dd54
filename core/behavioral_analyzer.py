"""
Behavioral Analyzer - Evidence credibility and intervention decisions.

Features:
    - Guessing probability from speed, selection pattern and ability mismatch
    - Session cheating-risk score from client behavior signals
    - Option-selection entropy
    - Rule table deciding when to open a probing dialogue instead of the
      next question
"""

import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .config import BehaviorParams, DEFAULT_BEHAVIOR
from .irt_model import ItemParameters, three_param_logistic


@dataclass
class SessionResponse:
    """One answer as seen by the analyzer."""
    question_id: str
    selected_option: int  # 0-3
    is_correct: bool
    response_time_ms: float
    difficulty: str  # easy / medium / hard
    concept: str = "general"
    theta: Optional[float] = None  # Ability estimate before this answer
    item: Optional[ItemParameters] = None


@dataclass
class BehaviorSignals:
    """Session-wide counts from client instrumentation."""
    tab_switches: int = 0
    paste_events: int = 0
    fast_hard_answers: int = 0  # Hard questions answered in < 3s
    total_questions: int = 0

    def __post_init__(self):
        for name in ("tab_switches", "paste_events", "fast_hard_answers", "total_questions"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")


@dataclass
class GuessingResult:
    probability: float
    speed_flag: bool
    pattern_flag: bool
    mismatch_flag: bool
    reasons: List[str] = field(default_factory=list)


@dataclass
class CheatRiskResult:
    score: float
    flagged: bool
    breakdown: Dict[str, float]


@dataclass
class InterventionContext:
    """Signals already computed for the latest answer."""
    mode: str  # exam / practice
    is_correct: bool
    current_p: float
    prev_p: float
    wrong_streak: int
    guess_probability: float
    confidence: float
    time_remaining_ms: Optional[float] = None

    @property
    def mastery_delta(self) -> float:
        return self.current_p - self.prev_p


@dataclass
class InterventionDecision:
    trigger: bool
    reasons: List[str]
    priority: str  # low / medium / high
    score: int = 0


def sigmoid(x: float) -> float:
    return 1.0 / (1.0 + math.exp(-x))


# ==================== Guessing Detection ====================

def speed_anomaly_flag(response_time_ms: float, difficulty: str,
                       params: BehaviorParams = DEFAULT_BEHAVIOR) -> bool:
    """Answered far faster than expected for the tier (z-score above 2.5)."""
    expected = params.expected_time_ms.get(difficulty, params.default_expected_time_ms)
    z_score = (expected - response_time_ms) / params.sigma_time_ms
    return z_score > params.speed_z_threshold


def option_entropy(selections: Sequence[int], n_options: int = 4) -> float:
    """
    Shannon entropy (bits) of the selected option indices.

    Range [0, log2(n_options)]. With nothing to measure the maximum is
    returned: insufficient data is treated as "no pattern".
    """
    valid = [s for s in selections if 0 <= s < n_options]
    if not valid:
        return math.log2(n_options)

    total = len(valid)
    entropy = 0.0
    for count in Counter(valid).values():
        p = count / total
        entropy -= p * math.log2(p)
    return entropy


def selection_pattern_flag(history: Sequence[SessionResponse],
                           params: BehaviorParams = DEFAULT_BEHAVIOR) -> bool:
    """Same option several times in a row, or low entropy over a window."""
    if len(history) < params.pattern_run_length:
        return False

    recent = [r.selected_option for r in history[-params.pattern_run_length:]]
    if len(set(recent)) == 1:
        return True

    window = [r.selected_option for r in history[-params.entropy_window:]]
    if len(window) < params.entropy_min_samples:
        return False
    return option_entropy(window, params.n_options) < params.entropy_threshold


def ability_mismatch_flag(response: SessionResponse,
                          params: BehaviorParams = DEFAULT_BEHAVIOR) -> bool:
    """Correct although the 3PL model gave this learner < 30% on the item."""
    if not response.is_correct or response.theta is None or response.item is None:
        return False
    item = response.item
    p_correct = three_param_logistic(response.theta, item.a, item.b, item.c)
    return p_correct < params.mismatch_threshold


def detect_guessing(response: SessionResponse, history: Sequence[SessionResponse],
                    params: BehaviorParams = DEFAULT_BEHAVIOR) -> GuessingResult:
    """
    Probability that an answer was a guess.

    P(guess) = sigmoid(1.2 speed + 1.0 pattern + 0.8 mismatch - 1.5)

    Args:
        response: The answer being judged
        history: Session answers up to and including `response`
    """
    speed = speed_anomaly_flag(response.response_time_ms, response.difficulty, params)
    pattern = selection_pattern_flag(history, params)
    mismatch = ability_mismatch_flag(response, params)

    reasons = []
    if speed:
        seconds = round(response.response_time_ms / 1000)
        reasons.append(f"Answered in {seconds}s, much faster than expected")
    if pattern:
        reasons.append("Repetitive option selection pattern detected")
    if mismatch:
        reasons.append("Answered correctly despite low predicted ability for this item")

    raw = (
        params.speed_weight * speed +
        params.pattern_weight * pattern +
        params.mismatch_weight * mismatch
    )
    probability = sigmoid(raw + params.guess_offset)

    return GuessingResult(
        probability=min(1.0, max(0.0, probability)),
        speed_flag=speed,
        pattern_flag=pattern,
        mismatch_flag=mismatch,
        reasons=reasons,
    )


# ==================== Cheating Risk ====================

def detect_cheating(signals: BehaviorSignals,
                    params: BehaviorParams = DEFAULT_BEHAVIOR) -> CheatRiskResult:
    """
    Cheating-risk score (CRS) in [0, 1]; flagged above 0.5.

    CRS = 0.3 tab + 0.3 paste + 0.4 fast_hard, each rate normalized to the
    session length and capped at 1.
    """
    n = signals.total_questions
    if n == 0:
        return CheatRiskResult(
            score=0.0,
            flagged=False,
            breakdown={"tab": 0.0, "paste": 0.0, "fast_hard": 0.0},
        )

    tab = min(1.0, signals.tab_switches / (n * 2))
    paste = min(1.0, signals.paste_events / n)
    fast_hard = min(1.0, signals.fast_hard_answers / max(1.0, n * 0.3))

    score = min(1.0, params.tab_weight * tab +
                params.paste_weight * paste +
                params.fast_hard_weight * fast_hard)

    return CheatRiskResult(
        score=score,
        flagged=score > params.cheat_threshold,
        breakdown={"tab": tab, "paste": paste, "fast_hard": fast_hard},
    )


# ==================== Intervention Rules ====================

def is_exam_mode(ctx: InterventionContext, params: BehaviorParams) -> bool:
    return ctx.mode == "exam"


def is_already_mastered(ctx: InterventionContext, params: BehaviorParams) -> bool:
    return ctx.current_p > params.mastered_exit


def is_out_of_time(ctx: InterventionContext, params: BehaviorParams) -> bool:
    return (ctx.time_remaining_ms is not None and
            ctx.time_remaining_ms < params.min_time_remaining_ms)


def is_likely_guess(ctx: InterventionContext, params: BehaviorParams) -> bool:
    return ctx.guess_probability > params.guess_trigger


def is_repeated_wrong(ctx: InterventionContext, params: BehaviorParams) -> bool:
    return ctx.wrong_streak >= params.wrong_streak_trigger


def is_mastery_drop(ctx: InterventionContext, params: BehaviorParams) -> bool:
    return ctx.mastery_delta < -params.mastery_drop_trigger


def is_active_zone_miss(ctx: InterventionContext, params: BehaviorParams) -> bool:
    low, high = params.active_zone
    return low <= ctx.current_p <= high and not ctx.is_correct


def is_unsure_but_correct(ctx: InterventionContext, params: BehaviorParams) -> bool:
    return ctx.confidence < params.low_confidence and ctx.is_correct


Predicate = Callable[[InterventionContext, BehaviorParams], bool]

HARD_EXITS: List[Tuple[Predicate, Callable[[InterventionContext], str]]] = [
    (is_exam_mode, lambda ctx: "Exam mode, no interruptions"),
    (is_already_mastered, lambda ctx: "Concept already mastered"),
    (is_out_of_time, lambda ctx: "Less than 60s remaining"),
]

TRIGGER_RULES: List[Tuple[Predicate, int, Callable[[InterventionContext], str]]] = [
    (is_likely_guess, 3,
     lambda ctx: f"Guessing detected (P={ctx.guess_probability:.2f}), check understanding"),
    (is_repeated_wrong, 3,
     lambda ctx: f"Wrong on this concept {ctx.wrong_streak} times, likely misconception"),
    (is_mastery_drop, 2,
     lambda ctx: f"Mastery dropped {ctx.mastery_delta * 100:.1f}%, concept confusion"),
    (is_active_zone_miss, 1,
     lambda ctx: "In active learning zone, deepen with questions"),
    (is_unsure_but_correct, 2,
     lambda ctx: f"Low confidence ({ctx.confidence:.2f}) despite correct answer, ask for reasoning"),
]


def should_trigger_intervention(ctx: InterventionContext,
                                params: BehaviorParams = DEFAULT_BEHAVIOR) -> InterventionDecision:
    """
    Decide whether to interrupt with a probing dialogue after an answer.

    Hard exits never trigger. Otherwise every rule that fires adds its
    weight; trigger at 2, medium priority from 3, high from 5.
    """
    for predicate, reason in HARD_EXITS:
        if predicate(ctx, params):
            return InterventionDecision(trigger=False, reasons=[reason(ctx)], priority="low")

    reasons = []
    score = 0
    for predicate, weight, reason in TRIGGER_RULES:
        if predicate(ctx, params):
            reasons.append(reason(ctx))
            score += weight

    if score >= params.high_priority_score:
        priority = "high"
    elif score >= params.medium_priority_score:
        priority = "medium"
    else:
        priority = "low"

    return InterventionDecision(
        trigger=score >= params.trigger_score,
        reasons=reasons,
        priority=priority,
        score=score,
    )


def wrong_streak(responses: Sequence[SessionResponse], concept: str) -> int:
    """Trailing consecutive wrong answers on one concept."""
    streak = 0
    for response in reversed(responses):
        if response.concept != concept:
            continue
        if response.is_correct:
            break
        streak += 1
    return streak
