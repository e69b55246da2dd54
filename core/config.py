"""
Config - Calibration constants and service settings.

Features:
    - Named, versioned calibration parameters for every engine
    - Two BKT presets (graph view vs. in-session trajectory)
    - Environment-driven service settings (.env supported)
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dotenv import load_dotenv

# Load environment variables from .env
load_dotenv()

# Bump whenever a calibration value below changes.
CALIBRATION_VERSION = "2024.1"


@dataclass(frozen=True)
class BKTParams:
    """Bayesian Knowledge Tracing parameters."""
    p_init: float = 0.3  # Prior probability of knowing a new concept
    p_learn: float = 0.09  # P(transit) from one attempt
    p_guess: float = 0.2  # Correct without knowing
    p_slip: float = 0.1  # Wrong despite knowing
    epsilon: float = 1e-4  # Keeps P(L) away from absorbing 0/1

    # Forgetting curve
    initial_stability: float = 1.0  # Days
    max_stability: float = 365.0
    stability_growth: float = 0.1  # S *= exp(growth * P(L)) on a correct answer

    def __post_init__(self):
        for name in ("p_init", "p_learn", "p_guess", "p_slip"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be in [0, 1], got {value}")
        if self.initial_stability <= 0:
            raise ValueError("initial_stability must be positive")


# Graph ("galaxy") view and persisted learner state: slow learning transition.
GALAXY_BKT = BKTParams(p_learn=0.09)

# In-session exam / practice trajectory: fast learning transition.
EXAM_BKT = BKTParams(p_learn=0.3)


@dataclass(frozen=True)
class IRTParams:
    """3PL item response theory parameters."""
    theta_min: float = -4.0
    theta_max: float = 4.0
    grid_size: int = 41  # Quadrature points over [theta_min, theta_max]
    min_information: float = 1e-12

    # Item parameter generation
    default_guess: float = 0.25  # 1 / four options
    discrimination_low: float = 0.8
    discrimination_high: float = 1.6
    difficulty_bands: Dict[str, tuple] = field(default_factory=lambda: {
        "easy": (-1.0, -0.5),
        "medium": (-0.25, 0.25),
        "hard": (0.5, 1.5),
    })


@dataclass(frozen=True)
class BehaviorParams:
    """Guessing, cheating and intervention calibration."""
    expected_time_ms: Dict[str, float] = field(default_factory=lambda: {
        "easy": 15_000,
        "medium": 25_000,
        "hard": 40_000,
    })
    default_expected_time_ms: float = 25_000
    sigma_time_ms: float = 10_000
    speed_z_threshold: float = 2.5

    # Selection pattern
    pattern_run_length: int = 4
    entropy_window: int = 10
    entropy_min_samples: int = 5
    entropy_threshold: float = 0.5  # Bits; max is 2.0 for four options
    n_options: int = 4

    # Ability mismatch
    mismatch_threshold: float = 0.3
    default_discrimination: float = 1.0
    default_guess: float = 0.25

    # P(guess) = sigmoid(w . flags + offset)
    speed_weight: float = 1.2
    pattern_weight: float = 1.0
    mismatch_weight: float = 0.8
    guess_offset: float = -1.5

    # Cheating risk score
    tab_weight: float = 0.3
    paste_weight: float = 0.3
    fast_hard_weight: float = 0.4
    cheat_threshold: float = 0.5

    # Intervention rules
    mastered_exit: float = 0.9
    min_time_remaining_ms: float = 60_000
    guess_trigger: float = 0.6
    wrong_streak_trigger: int = 2
    mastery_drop_trigger: float = 0.15
    active_zone: tuple = (0.4, 0.7)
    low_confidence: float = 0.3
    trigger_score: int = 2
    medium_priority_score: int = 3
    high_priority_score: int = 5


@dataclass(frozen=True)
class GraphParams:
    """Knowledge graph construction parameters."""
    alpha: float = 0.5  # Prerequisite strength
    beta: float = 0.3  # Co-occurrence
    gamma: float = 0.2  # Confusion correlation
    edge_threshold: float = 0.05
    prerequisite_type_cutoff: float = 0.7
    application_type_cutoff: float = 0.3
    max_iterations: int = 20  # Louvain sweep cap
    load_ceiling_ms: float = 60_000
    stability_per_log: float = 0.8
    forgetting_display_weight: float = 0.4  # Node colour: mastery * (1 - 0.4 * forgetting risk)
    mastered_threshold: float = 0.95  # Summary count on mean logged P(L)
    max_logs: int = 5_000  # Most recent logs kept per request

    def __post_init__(self):
        if abs(self.alpha + self.beta + self.gamma - 1.0) > 1e-9:
            raise ValueError("alpha + beta + gamma must sum to 1")


DEFAULT_IRT = IRTParams()
DEFAULT_BEHAVIOR = BehaviorParams()
DEFAULT_GRAPH = GraphParams()


@dataclass
class Settings:
    """Service settings loaded from the environment."""
    redis_host: str = field(default_factory=lambda: os.getenv("REDIS_HOST", "localhost"))
    redis_port: int = field(default_factory=lambda: int(os.getenv("REDIS_PORT", 6379)))
    redis_password: Optional[str] = field(default_factory=lambda: os.getenv("REDIS_PASSWORD", None))
    redis_db: int = field(default_factory=lambda: int(os.getenv("REDIS_DB", 0)))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    cors_origins: List[str] = field(
        default_factory=lambda: os.getenv("CORS_ORIGINS", "*").split(",")
    )
    max_log_window: int = field(
        default_factory=lambda: int(os.getenv("MAX_LOG_WINDOW", DEFAULT_GRAPH.max_logs))
    )
    max_session_responses: int = field(
        default_factory=lambda: int(os.getenv("MAX_SESSION_RESPONSES", 200))
    )


settings = Settings()
