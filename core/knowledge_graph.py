"""
Knowledge Graph - Weighted, clustered concept graph built from answer logs.

Features:
    - Edge weight from prerequisite strength, co-occurrence and confusion
    - Bounded greedy Louvain community detection
    - Node enrichment with BKT x forgetting-curve effective mastery
    - Root cause tracing along the prerequisite DAG

    w(i, j) = alpha * prerequisite + beta * co_occurrence + gamma * confusion
"""

import logging
import math
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import networkx as nx
from networkx.algorithms.community import modularity

from .config import GraphParams, DEFAULT_GRAPH
from .curriculum import PREREQUISITE_STRENGTH, PrerequisiteTable, prerequisite_dag
from .mastery_engine import (
    MS_PER_DAY,
    MasteryState,
    days_between,
    effective_mastery,
    forgetting_decay,
)

logger = logging.getLogger(__name__)


@dataclass
class SessionLog:
    """One answer event."""
    concept: str
    category: str
    is_correct: bool
    response_time_ms: float
    mastery_pl: float  # P(L) recorded after the answer
    timestamp: float  # Epoch milliseconds

    def __post_init__(self):
        if not self.concept or not self.concept.strip():
            raise ValueError("concept must be a non-empty string")
        if not 0.0 <= self.mastery_pl <= 1.0:
            raise ValueError(f"mastery_pl must be in [0, 1], got {self.mastery_pl}")
        if self.response_time_ms < 0:
            raise ValueError("response_time_ms must be non-negative")

    @property
    def key(self) -> str:
        return normalize_concept(self.concept)

    @property
    def day(self) -> int:
        return int(self.timestamp // MS_PER_DAY)


@dataclass
class ConceptEdge:
    source: str
    target: str
    weight: float
    prerequisite_strength: float
    co_occurrence_rate: float
    confusion_correlation: float
    type: str  # prerequisite / application / similar


@dataclass
class ConceptNode:
    id: str
    name: str
    category: str
    mastery: float  # Mean logged P(L)
    effective_mastery: float
    retention_rate: float
    days_since_review: float
    cognitive_load: float
    forgetting_risk: float
    observations: int
    community: int = 0
    degree: int = 0
    state: str = "developing"
    color: str = "#cc44ff"
    size: float = 3.0


def normalize_concept(name: str) -> str:
    return name.strip().lower()


# ==================== Edge Components ====================

def prerequisite_strength(concept_a: str, concept_b: str,
                          table: Optional[PrerequisiteTable] = None) -> float:
    """Curriculum strength between two concepts, checked in both directions."""
    table = PREREQUISITE_STRENGTH if table is None else table
    a, b = normalize_concept(concept_a), normalize_concept(concept_b)
    if b in table.get(a, {}):
        return table[a][b]
    return table.get(b, {}).get(a, 0.0)


class SessionIndex:
    """
    Day-bucket index over a batch of logs.

    A calendar day (UTC) stands in for a study session. Built once per
    request so pairwise lookups are set operations, not log scans.
    """

    def __init__(self, logs: Iterable[SessionLog]):
        self.concept_days: Dict[str, Set[int]] = defaultdict(set)
        self.wrong_days: Dict[str, Set[int]] = defaultdict(set)

        for log in logs:
            self.concept_days[log.key].add(log.day)
            if not log.is_correct:
                self.wrong_days[log.key].add(log.day)

    def co_occurrence(self, concept_a: str, concept_b: str) -> float:
        """Days with both concepts / days with either (Jaccard)."""
        days_a = self.concept_days.get(normalize_concept(concept_a), set())
        days_b = self.concept_days.get(normalize_concept(concept_b), set())
        either = days_a | days_b
        if not either:
            return 0.0
        return len(days_a & days_b) / len(either)

    def confusion(self, concept_a: str, concept_b: str) -> float:
        """Of the days A was answered wrong, the fraction B was also answered wrong."""
        wrong_a = self.wrong_days.get(normalize_concept(concept_a), set())
        if not wrong_a:
            return 0.0
        wrong_b = self.wrong_days.get(normalize_concept(concept_b), set())
        return len(wrong_a & wrong_b) / len(wrong_a)


def co_occurrence_rate(concept_a: str, concept_b: str, logs: Sequence[SessionLog]) -> float:
    return SessionIndex(logs).co_occurrence(concept_a, concept_b)


def confusion_correlation(concept_a: str, concept_b: str, logs: Sequence[SessionLog]) -> float:
    return SessionIndex(logs).confusion(concept_a, concept_b)


def combine_edge_weight(prerequisite: float, co_occurrence: float, confusion: float,
                        params: GraphParams = DEFAULT_GRAPH) -> float:
    weight = (params.alpha * prerequisite +
              params.beta * co_occurrence +
              params.gamma * confusion)
    return max(0.0, min(1.0, weight))


def calculate_edge_weight(concept_a: str, concept_b: str, logs: Sequence[SessionLog],
                          table: Optional[PrerequisiteTable] = None,
                          params: GraphParams = DEFAULT_GRAPH) -> float:
    """w(a, b) for one pair, straight from raw logs."""
    index = SessionIndex(logs)
    return combine_edge_weight(
        prerequisite_strength(concept_a, concept_b, table),
        index.co_occurrence(concept_a, concept_b),
        index.confusion(concept_a, concept_b),
        params,
    )


def edge_type(prerequisite: float, params: GraphParams = DEFAULT_GRAPH) -> str:
    if prerequisite > params.prerequisite_type_cutoff:
        return "prerequisite"
    if prerequisite > params.application_type_cutoff:
        return "application"
    return "similar"


# ==================== Community Detection ====================

def louvain_cluster(graph: nx.Graph,
                    max_iterations: int = DEFAULT_GRAPH.max_iterations) -> Dict[str, int]:
    """
    Single-level greedy modularity optimization.

    Every node starts alone. Each sweep visits nodes in sorted order and
    moves a node to the neighboring community with the largest positive
    gain

        gain = k_i,in / m - sigma_tot * k_i / (2m)^2

    where sigma_tot excludes the node itself for its own community. Equal
    gains keep the current community, then the first community found.
    Stops when a sweep moves nothing or after `max_iterations` sweeps; the
    result is a local optimum, not the global one.

    Returns:
        node -> community id, densely numbered from 0 in sorted node order
    """
    nodes = sorted(graph.nodes)
    communities = {node: i for i, node in enumerate(nodes)}

    total_weight = graph.size(weight="weight")
    if total_weight <= 0:
        return communities

    m2 = 2 * total_weight
    degree = {node: graph.degree(node, weight="weight") for node in nodes}
    community_degree = {communities[node]: degree[node] for node in nodes}

    for iteration in range(max_iterations):
        moved = False

        for node in nodes:
            current = communities[node]
            k_i = degree[node]

            weight_to: Dict[int, float] = {}
            for neighbor in sorted(graph.neighbors(node)):
                if neighbor == node:
                    continue
                community = communities[neighbor]
                weight_to[community] = (weight_to.get(community, 0.0) +
                                        graph[node][neighbor].get("weight", 0.0))

            def gain(community: int) -> float:
                sigma = community_degree.get(community, 0.0)
                if community == current:
                    sigma -= k_i
                return weight_to[community] / total_weight - sigma * k_i / (m2 * m2)

            best, best_gain = current, 0.0
            if current in weight_to:
                best_gain = max(0.0, gain(current))

            for community in weight_to:
                if community == current:
                    continue
                candidate = gain(community)
                if candidate > best_gain:
                    best, best_gain = community, candidate

            if best != current:
                community_degree[current] -= k_i
                community_degree[best] = community_degree.get(best, 0.0) + k_i
                communities[node] = best
                moved = True

        if not moved:
            break
    else:
        logger.debug("Louvain stopped at the %d-sweep cap", max_iterations)

    # Renumber 0, 1, 2... in node order
    renumbered: Dict[int, int] = {}
    for node in nodes:
        community = communities[node]
        if community not in renumbered:
            renumbered[community] = len(renumbered)
        communities[node] = renumbered[community]

    return communities


def graph_modularity(graph: nx.Graph, communities: Dict[str, int]) -> float:
    """Newman modularity of a partition; 0 for a graph without weight."""
    if graph.size(weight="weight") <= 0:
        return 0.0
    groups: Dict[int, Set[str]] = defaultdict(set)
    for node, community in communities.items():
        groups[community].add(node)
    return modularity(graph, list(groups.values()), weight="weight")


# ==================== Node State ====================

NODE_STATES = {
    "mastered": "#00ff88",
    "proficient": "#ffff00",
    "overloaded": "#ff4400",
    "fading": "#ff8800",
    "learning": "#44aaff",
    "developing": "#cc44ff",
}


def node_state(mastery: float, cognitive_load: float, forgetting_risk: float) -> Tuple[str, str]:
    """
    Visual state for a node.

    `mastery` is the colour-track value, mean P(L) discounted by forgetting
    risk.

    Priority: mastered > proficient > overloaded > fading > learning > developing.

    Returns:
        (state, color)
    """
    if mastery >= 0.9:
        state = "mastered"
    elif mastery >= 0.7:
        state = "proficient"
    elif cognitive_load > 0.8:
        state = "overloaded"
    elif forgetting_risk > 0.5:
        state = "fading"
    elif mastery >= 0.5:
        state = "learning"
    else:
        state = "developing"
    return state, NODE_STATES[state]


def _build_node(concept_id: str, logs: List[SessionLog], now_ms: float,
                params: GraphParams) -> ConceptNode:
    n = len(logs)
    latest = max(logs, key=lambda log: log.timestamp)
    mastery = sum(log.mastery_pl for log in logs) / n
    days = days_between(latest.timestamp, now_ms)

    # Stability is not logged; estimate it from how often the concept was practiced
    estimated = MasteryState(
        p_mastered=mastery,
        stability=1 + n * params.stability_per_log,
        review_count=n,
        last_review_at=latest.timestamp,
    )
    retention = forgetting_decay(estimated, days)
    effective = effective_mastery(estimated, days)
    load = min(1.0, sum(log.response_time_ms for log in logs) / (n * params.load_ceiling_ms))

    # Colour track: risk grows with idle days per practice session
    forgetting_risk = 1 - math.exp(-days / max(1, n))
    display = mastery * (1 - params.forgetting_display_weight * forgetting_risk)
    state, color = node_state(display, load, forgetting_risk)

    return ConceptNode(
        id=concept_id,
        name=concept_id[:1].upper() + concept_id[1:],
        category=latest.category,
        mastery=mastery,
        effective_mastery=effective,
        retention_rate=retention,
        days_since_review=days,
        cognitive_load=load,
        forgetting_risk=forgetting_risk,
        observations=n,
        state=state,
        color=color,
        size=3 + mastery * 8 + load * 2,
    )


# ==================== Graph ====================

@dataclass
class KnowledgeGraph:
    """
    Concept graph derived from a batch of logs.

    A view, rebuilt per request; community ids are only stable within one
    build.
    """
    graph: nx.Graph
    nodes: List[ConceptNode]
    edges: List[ConceptEdge]
    communities: Dict[str, int]
    prerequisites: PrerequisiteTable = field(default_factory=lambda: PREREQUISITE_STRENGTH)
    mastered_threshold: float = DEFAULT_GRAPH.mastered_threshold

    def get_node(self, concept: str) -> Optional[ConceptNode]:
        key = normalize_concept(concept)
        for node in self.nodes:
            if node.id == key:
                return node
        return None

    def get_community_members(self) -> Dict[int, List[str]]:
        members: Dict[int, List[str]] = defaultdict(list)
        for node in self.nodes:
            members[node.community].append(node.id)
        return dict(members)

    def get_summary(self) -> dict:
        """Counts and averages for the graph header."""
        n = len(self.nodes)
        return {
            "total_nodes": n,
            "total_edges": len(self.edges),
            "communities": len(set(self.communities.values())),
            "mastered_count": sum(1 for node in self.nodes if node.mastery >= self.mastered_threshold),
            "fading_count": sum(1 for node in self.nodes if node.effective_mastery < 0.5),
            "avg_mastery": sum(node.mastery for node in self.nodes) / max(1, n),
            "modularity": graph_modularity(self.graph, self.communities),
        }

    # ==================== Prerequisite Reasoning ====================

    def trace_root_cause(self, failed_concept: str, threshold: float = 0.6) -> str:
        """
        Earliest weak prerequisite of a failed concept.

        Walks the curriculum DAG restricted to observed concepts, in
        topological order, and returns the first one whose effective
        mastery is below `threshold`. Falls back to the failed concept.
        """
        failed = normalize_concept(failed_concept)
        dag = self._observed_dag()
        if failed not in dag:
            return failed

        ancestors = nx.ancestors(dag, failed)
        for concept in nx.lexicographical_topological_sort(dag):
            if concept in ancestors and self._effective(concept) < threshold:
                return concept
        return failed

    def get_learning_path(self, target_concept: str, threshold: float = 0.6) -> List[str]:
        """Weak prerequisites of the target (and the target itself), in study order."""
        target = normalize_concept(target_concept)
        dag = self._observed_dag()
        if target not in dag:
            return [target] if self._effective(target) < threshold else []

        wanted = nx.ancestors(dag, target) | {target}
        return [
            concept for concept in nx.lexicographical_topological_sort(dag)
            if concept in wanted and self._effective(concept) < threshold
        ]

    def _observed_dag(self) -> nx.DiGraph:
        observed = {node.id for node in self.nodes}
        return prerequisite_dag(self.prerequisites).subgraph(observed).copy()

    def _effective(self, concept: str) -> float:
        node = self.get_node(concept)
        return node.effective_mastery if node else 0.0


def build_graph(logs: Sequence[SessionLog], now_ms: Optional[float] = None,
                prerequisites: Optional[PrerequisiteTable] = None,
                params: GraphParams = DEFAULT_GRAPH) -> KnowledgeGraph:
    """
    Build the clustered concept graph from answer logs.

    Every observed concept becomes a node, with or without edges. Pairs
    are scored in sorted id order and only edges with w >= 0.05 are kept.

    Args:
        logs: Answer events; only the most recent `params.max_logs` are used
        now_ms: Reference time for forgetting (defaults to the wall clock)
        prerequisites: Curriculum table (defaults to the built-in one)
    """
    now_ms = time.time() * 1000 if now_ms is None else now_ms
    table = PREREQUISITE_STRENGTH if prerequisites is None else prerequisites

    if len(logs) > params.max_logs:
        logger.debug("Trimming %d logs to the most recent %d", len(logs), params.max_logs)
        logs = sorted(logs, key=lambda log: log.timestamp)[-params.max_logs:]

    by_concept: Dict[str, List[SessionLog]] = defaultdict(list)
    for log in logs:
        by_concept[log.key].append(log)
    concept_ids = sorted(by_concept)

    index = SessionIndex(logs)
    graph = nx.Graph()
    graph.add_nodes_from(concept_ids)
    edges: List[ConceptEdge] = []

    for i, a in enumerate(concept_ids):
        for b in concept_ids[i + 1:]:
            prereq = prerequisite_strength(a, b, table)
            co_occur = index.co_occurrence(a, b)
            confusion = index.confusion(a, b)
            weight = combine_edge_weight(prereq, co_occur, confusion, params)
            if weight < params.edge_threshold:
                continue

            graph.add_edge(a, b, weight=weight)
            edges.append(ConceptEdge(
                source=a,
                target=b,
                weight=weight,
                prerequisite_strength=prereq,
                co_occurrence_rate=co_occur,
                confusion_correlation=confusion,
                type=edge_type(prereq, params),
            ))

    communities = louvain_cluster(graph, params.max_iterations)

    nodes = []
    for concept_id in concept_ids:
        node = _build_node(concept_id, by_concept[concept_id], now_ms, params)
        node.community = communities[concept_id]
        node.degree = graph.degree(concept_id)
        nodes.append(node)

    logger.debug("Built graph: %d nodes, %d edges, %d communities",
                 len(nodes), len(edges), len(set(communities.values())))

    return KnowledgeGraph(
        graph=graph,
        nodes=nodes,
        edges=edges,
        communities=communities,
        prerequisites=table,
        mastered_threshold=params.mastered_threshold,
    )
