"""
Mastery Engine - Bayesian Knowledge Tracing with forgetting curves.

Features:
    - BKT posterior update with a learning transition
    - Ebbinghaus forgetting curve for memory decay
    - Stability growth on successful reviews
    - Effective mastery (knowledge x retention) for display

Two tracks are kept per concept: P(L), the slow-moving "was it learned",
and retention, the fast-moving "can it still be recalled". Their product is
what the graph shows, so "never learned" and "learned but rusty" look
different.
"""

import math
import time
from dataclasses import dataclass, replace
from typing import Optional

from .config import BKTParams, GALAXY_BKT

MS_PER_DAY = 86_400_000
MIN_DENOMINATOR = 1e-9


@dataclass(frozen=True)
class MasteryState:
    """Mastery state for a single learner/concept pair."""
    p_mastered: float  # BKT posterior P(L)
    stability: float = 1.0  # Memory stability S, in days
    review_count: int = 0  # Successful reinforcing reviews
    last_review_at: float = 0.0  # Epoch milliseconds

    def __post_init__(self):
        if not 0.0 <= self.p_mastered <= 1.0:
            raise ValueError(f"p_mastered must be in [0, 1], got {self.p_mastered}")
        if self.stability <= 0:
            raise ValueError(f"stability must be positive, got {self.stability}")
        if self.review_count < 0:
            raise ValueError("review_count must be non-negative")

    def to_dict(self) -> dict:
        return {
            "p_mastered": self.p_mastered,
            "stability": self.stability,
            "review_count": self.review_count,
            "last_review_at": self.last_review_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MasteryState":
        return cls(
            p_mastered=float(data["p_mastered"]),
            stability=float(data.get("stability", 1.0)),
            review_count=int(data.get("review_count", 0)),
            last_review_at=float(data.get("last_review_at", 0.0)),
        )


def now_ms() -> float:
    return time.time() * 1000


def days_between(earlier_ms: float, later_ms: float) -> float:
    """Elapsed days between two epoch-millisecond timestamps (never negative)."""
    return max(0.0, (later_ms - earlier_ms) / MS_PER_DAY)


# ==================== Knowledge Tracing ====================

def update_mastery(prev_p: float, correct: bool, params: BKTParams = GALAXY_BKT) -> float:
    """
    Update P(L) after one observed answer.

    P(correct) = P(L)(1 - slip) + (1 - P(L)) guess
    P(L | obs) is the Bayesian posterior, then the learning transition
    P(L') = P(L | obs) + (1 - P(L | obs)) p_learn is applied.

    Args:
        prev_p: Previous P(L) for the concept
        correct: Whether the answer was correct
        params: BKT calibration (GALAXY_BKT or EXAM_BKT)

    Returns:
        Updated P(L), clamped to [epsilon, 1 - epsilon]
    """
    slip, guess = params.p_slip, params.p_guess

    p_correct = prev_p * (1 - slip) + (1 - prev_p) * guess
    p_wrong = prev_p * slip + (1 - prev_p) * (1 - guess)

    if correct:
        posterior = prev_p * (1 - slip) / max(p_correct, MIN_DENOMINATOR)
    else:
        posterior = prev_p * slip / max(p_wrong, MIN_DENOMINATOR)

    p_next = posterior + (1 - posterior) * params.p_learn
    return min(1 - params.epsilon, max(params.epsilon, p_next))


# ==================== Forgetting Curves ====================

def forgetting_decay(state: MasteryState, days_since_review: float,
                     difficulty: float = 0.5) -> float:
    """
    Retention R(t) = exp(-t / (S * difficulty_factor)).

    The difficulty factor is 1 + (1 - P(L)), so a lower P(L) stretches the
    time constant and the retention curve of a weak concept falls more slowly.
    `difficulty` is accepted for call-site compatibility with item-level
    callers; the decay rate is driven by mastery alone.
    """
    difficulty_factor = 1 + (1 - state.p_mastered)
    t = max(0.0, days_since_review)
    return math.exp(-t / (state.stability * difficulty_factor))


def effective_mastery(state: MasteryState, days_since_review: float) -> float:
    """Effective mastery = P(L) x R(t). Used for graph node color and size."""
    retention = forgetting_decay(state, days_since_review)
    return max(0.0, state.p_mastered * retention)


def update_stability(state: MasteryState, correct: bool,
                     at_ms: Optional[float] = None,
                     params: BKTParams = GALAXY_BKT) -> MasteryState:
    """
    Grow memory stability after a successful review.

    S_n = S_{n-1} * exp(0.1 * P(L)), capped at 365 days. Wrong answers leave
    S untouched; the BKT update already penalized P(L).
    """
    if not correct:
        return state

    stability = state.stability * math.exp(params.stability_growth * state.p_mastered)
    return replace(
        state,
        stability=min(stability, params.max_stability),
        review_count=state.review_count + 1,
        last_review_at=now_ms() if at_ms is None else at_ms,
    )


# ==================== State Lifecycle ====================

def create_mastery_state(at_ms: Optional[float] = None,
                         params: BKTParams = GALAXY_BKT) -> MasteryState:
    """Initial state for a concept seen for the first time."""
    return MasteryState(
        p_mastered=params.p_init,
        stability=params.initial_stability,
        review_count=0,
        last_review_at=now_ms() if at_ms is None else at_ms,
    )


def observe(state: Optional[MasteryState], correct: bool,
            at_ms: Optional[float] = None,
            params: BKTParams = GALAXY_BKT) -> MasteryState:
    """
    Apply one answer to a learner/concept state.

    Creates the state from the prior on first observation, runs the BKT
    update, then grows stability from the updated P(L).
    """
    at_ms = now_ms() if at_ms is None else at_ms
    if state is None:
        state = create_mastery_state(at_ms, params)

    updated = replace(
        state,
        p_mastered=update_mastery(state.p_mastered, correct, params),
        last_review_at=at_ms,
    )
    return update_stability(updated, correct, at_ms, params)


# ==================== Labels & Confidence ====================

def mastery_label(p_mastered: float) -> str:
    """Human-readable mastery label from P(L)."""
    if p_mastered >= 0.95:
        return "Mastered"
    if p_mastered >= 0.75:
        return "Proficient"
    if p_mastered >= 0.5:
        return "Learning"
    if p_mastered >= 0.3:
        return "Developing"
    return "New"


def confidence_score(accuracy: float, normalized_response_time: float,
                     consistency: float, guess_probability: float) -> float:
    """
    Weighted confidence from ability signals, all in [0, 1].

    0.4 accuracy + 0.2 speed + 0.25 consistency + 0.15 (1 - P(guess)),
    where speed = 1 - normalized_response_time (faster = more confident).
    """
    speed = 1 - min(1.0, max(0.0, normalized_response_time))
    score = (
        0.4 * accuracy +
        0.2 * speed +
        0.25 * consistency +
        0.15 * (1 - guess_probability)
    )
    return max(0.0, min(1.0, score))
