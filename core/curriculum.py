"""
Curriculum - Hand-authored prerequisite strengths between concepts.

Maps concept -> {successor: strength in [0, 1]}. Keys are normalized
(lower-case, trimmed). A JSON file with the same shape can replace the
built-in table.
"""

import json
from pathlib import Path
from typing import Dict, Union

import networkx as nx

PrerequisiteTable = Dict[str, Dict[str, float]]

PREREQUISITE_STRENGTH: PrerequisiteTable = {
    # Mathematics
    "limits": {"derivatives": 0.95, "continuity": 0.85},
    "derivatives": {"integration": 0.90, "differential equations": 0.80},
    "integration": {"differential equations": 0.85},
    "algebra": {"calculus": 0.80, "linear algebra": 0.75},
    "calculus": {"differential equations": 0.80, "statistics": 0.60},
    "linear algebra": {"statistics": 0.70, "algorithms": 0.55},
    "statistics": {"machine learning": 0.80, "probability": 0.85},
    "probability": {"statistics": 0.75},
    # Physics
    "kinematics": {"newton's laws": 0.90, "energy": 0.70},
    "newton's laws": {"energy": 0.85, "momentum": 0.80, "waves": 0.60},
    "energy": {"thermodynamics": 0.70, "waves": 0.65},
    "waves": {"optics": 0.80, "electromagnetism": 0.60},
    # Computer science
    "data structures": {"algorithms": 0.90, "graph theory": 0.75},
    "algorithms": {"graph theory": 0.70, "machine learning": 0.60},
    "graph theory": {"algorithms": 0.65},
}


def prerequisite_dag(table: PrerequisiteTable) -> nx.DiGraph:
    """
    Directed prerequisite graph (prerequisite -> successor).

    When both directions of a pair are listed, only the stronger one is
    kept (the first listed on a tie), so reciprocal entries such as
    statistics <-> probability do not form a cycle.
    """
    dag = nx.DiGraph()
    for concept, successors in table.items():
        dag.add_node(concept)
        for successor, strength in successors.items():
            reverse = table.get(successor, {}).get(concept)
            if reverse is not None and (reverse > strength or
                                        (reverse == strength and dag.has_edge(successor, concept))):
                continue
            dag.add_edge(concept, successor, strength=strength)

    if not nx.is_directed_acyclic_graph(dag):
        cycle = nx.find_cycle(dag)
        raise ValueError(f"Prerequisite table contains a cycle: {cycle}")
    return dag


def load_prerequisites(path: Union[str, Path]) -> PrerequisiteTable:
    """Load a prerequisite table from JSON, normalizing keys and checking bounds."""
    with open(path, "r") as f:
        data = json.load(f)

    table: PrerequisiteTable = {}
    for concept, successors in data.items():
        key = concept.strip().lower()
        table[key] = {}
        for successor, strength in successors.items():
            strength = float(strength)
            if not 0.0 <= strength <= 1.0:
                raise ValueError(
                    f"Prerequisite strength {concept} -> {successor} out of [0, 1]: {strength}"
                )
            table[key][successor.strip().lower()] = strength

    prerequisite_dag(table)
    return table
