"""
IRT Model - 3-Parameter Logistic ability estimation.

Features:
    - 3PL response probability
    - Expected A Posteriori (EAP) theta over a fixed quadrature grid
    - Fisher information and standard error of measurement
    - Maximum-information item selection (Computerized Adaptive Testing)

    P(correct | theta, a, b, c) = c + (1 - c) / (1 + exp(-a (theta - b)))
        theta = learner ability
        a     = discrimination (slope)
        b     = difficulty (threshold)
        c     = pseudo-guessing floor (~1 / n_options)
"""

import logging
import math
import random
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set

from .config import IRTParams, DEFAULT_IRT

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ItemParameters:
    """3PL parameters for one question instance."""
    id: str
    a: float  # Discrimination, typically 0.2-2.0
    b: float  # Difficulty, standard normal scale
    c: float  # Guessing floor in [0, 0.5]

    def __post_init__(self):
        if self.a <= 0:
            raise ValueError(f"discrimination must be positive, got {self.a}")
        if not 0.0 <= self.c <= 0.5:
            raise ValueError(f"guess floor must be in [0, 0.5], got {self.c}")


@dataclass(frozen=True)
class ItemResponse:
    """One answered item."""
    item: ItemParameters
    correct: bool


@dataclass(frozen=True)
class AbilityEstimate:
    """Latent ability for a learner within a session."""
    theta: float
    standard_error: float
    score: int
    n_items: int


def three_param_logistic(theta: float, a: float, b: float, c: float) -> float:
    """3PL probability of a correct response."""
    z = -a * (theta - b)
    # exp overflows past ~709
    if z > 700:
        return c
    return c + (1 - c) / (1 + math.exp(z))


def fisher_information(theta: float, a: float, b: float, c: float,
                       params: IRTParams = DEFAULT_IRT) -> float:
    """
    Fisher information of an item at theta.

    I(theta) = a^2 (P - c)^2 / ((1 - c)^2 P (1 - P))
    """
    p = three_param_logistic(theta, a, b, c)
    denominator = (1 - c) ** 2 * p * (1 - p)
    if denominator < params.min_information:
        return 0.0
    return a * a * (p - c) ** 2 / denominator


def theta_grid(params: IRTParams = DEFAULT_IRT) -> List[float]:
    n = params.grid_size
    span = params.theta_max - params.theta_min
    return [params.theta_min + span * i / (n - 1) for i in range(n)]


def clamp_theta(theta: float, params: IRTParams = DEFAULT_IRT) -> float:
    return max(params.theta_min, min(params.theta_max, theta))


# ==================== Ability Estimation ====================

def estimate_theta(responses: List[ItemResponse], prior_theta: float = 0.0,
                   params: IRTParams = DEFAULT_IRT) -> float:
    """
    EAP estimate of theta from the full response history.

    Posterior over the grid is likelihood x N(0, 1) prior; the estimate is
    the posterior mean. Log-likelihoods are summed and shifted by their
    maximum before exponentiating so long sessions do not underflow.

    Returns prior_theta unchanged for an empty history or a degenerate
    posterior.
    """
    if not responses:
        return prior_theta

    grid = theta_grid(params)
    log_posterior = []
    for theta in grid:
        log_p = -0.5 * theta * theta  # Standard normal prior, constant dropped
        for response in responses:
            item = response.item
            p = three_param_logistic(theta, item.a, item.b, item.c)
            p = p if response.correct else 1 - p
            if p <= 0:
                log_p = float("-inf")
                break
            log_p += math.log(p)
        log_posterior.append(log_p)

    peak = max(log_posterior)
    if peak == float("-inf"):
        logger.debug("Degenerate posterior over %d responses, keeping prior", len(responses))
        return prior_theta

    weights = [math.exp(lp - peak) for lp in log_posterior]
    total = sum(weights)

    eap = sum(theta * w for theta, w in zip(grid, weights)) / total
    return clamp_theta(eap, params)


def standard_error(theta: float, responses: Iterable[ItemResponse],
                   params: IRTParams = DEFAULT_IRT) -> float:
    """
    SE(theta) = 1 / sqrt(sum of information).

    Infinite when nothing informative has been answered yet: the ability
    is unknown, not zero.
    """
    total_info = sum(
        fisher_information(theta, r.item.a, r.item.b, r.item.c, params)
        for r in responses
    )
    if total_info < params.min_information:
        return float("inf")
    return 1.0 / math.sqrt(total_info)


def theta_to_score(theta: float) -> int:
    """Rescale theta in [-4, 4] to a 0-100 ability score."""
    return int(round(((theta + 4) / 8) * 100))


def estimate_ability(responses: List[ItemResponse], prior_theta: float = 0.0,
                     params: IRTParams = DEFAULT_IRT) -> AbilityEstimate:
    """Theta, its standard error and the 0-100 score in one call."""
    theta = estimate_theta(responses, prior_theta, params)
    return AbilityEstimate(
        theta=theta,
        standard_error=standard_error(theta, responses, params),
        score=theta_to_score(theta),
        n_items=len(responses),
    )


# ==================== Item Selection ====================

def select_next_item(theta: float, bank: Iterable[ItemParameters],
                     used_ids: Set[str],
                     params: IRTParams = DEFAULT_IRT) -> Optional[ItemParameters]:
    """
    Pick the unused item with maximum Fisher information at theta.

    Ties go to the first item encountered. Returns None when the bank is
    exhausted.
    """
    best_item = None
    best_info = -1.0

    for item in bank:
        if item.id in used_ids:
            continue
        info = fisher_information(theta, item.a, item.b, item.c, params)
        if info > best_info:
            best_item, best_info = item, info

    return best_item


# ==================== Difficulty Mapping ====================

def difficulty_label(b: float) -> str:
    """Difficulty tier from the b parameter."""
    if b < -0.5:
        return "easy"
    if b < 0.5:
        return "medium"
    return "hard"


def difficulty_to_b(label: str, rng: Optional[random.Random] = None,
                    params: IRTParams = DEFAULT_IRT) -> float:
    """
    Draw a b parameter inside the band for a difficulty tier.

        easy   -> [-1.0, -0.5]
        medium -> [-0.25, 0.25]
        hard   -> [0.5, 1.5]
    """
    if label not in params.difficulty_bands:
        raise ValueError(f"Unknown difficulty tier: {label!r}")
    rng = rng or random.Random()
    low, high = params.difficulty_bands[label]
    return low + rng.random() * (high - low)
