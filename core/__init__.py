"""
Core module - Learner modeling engines.

Components:
    - mastery_engine: Bayesian Knowledge Tracing + forgetting curves
    - irt_model: 3PL ability estimation and adaptive item selection
    - behavioral_analyzer: Guessing, cheating risk and intervention rules
    - knowledge_graph: Weighted concept graph + Louvain communities
    - curriculum: Hand-authored prerequisite strengths
    - question_items: Generated-question schema and item parameters
    - exam_history: Exam summaries and score prediction
    - config: Calibration constants and service settings

All engines are pure functions over explicit arguments.
"""

from .mastery_engine import (
    MasteryState,
    update_mastery,
    forgetting_decay,
    effective_mastery,
    update_stability,
    create_mastery_state,
    observe,
)
from .irt_model import (
    ItemParameters,
    ItemResponse,
    AbilityEstimate,
    estimate_theta,
    estimate_ability,
    fisher_information,
    standard_error,
    select_next_item,
    theta_to_score,
)
from .behavioral_analyzer import (
    SessionResponse,
    BehaviorSignals,
    InterventionContext,
    detect_guessing,
    detect_cheating,
    option_entropy,
    should_trigger_intervention,
)
from .knowledge_graph import KnowledgeGraph, SessionLog, build_graph, louvain_cluster

__all__ = [
    "MasteryState",
    "update_mastery",
    "forgetting_decay",
    "effective_mastery",
    "update_stability",
    "create_mastery_state",
    "observe",
    "ItemParameters",
    "ItemResponse",
    "AbilityEstimate",
    "estimate_theta",
    "estimate_ability",
    "fisher_information",
    "standard_error",
    "select_next_item",
    "theta_to_score",
    "SessionResponse",
    "BehaviorSignals",
    "InterventionContext",
    "detect_guessing",
    "detect_cheating",
    "option_entropy",
    "should_trigger_intervention",
    "KnowledgeGraph",
    "SessionLog",
    "build_graph",
    "louvain_cluster",
]
