"""Tests for core/curriculum.py"""

import sys
sys.path.append(".")

import json

import networkx as nx
import pytest

from core.curriculum import PREREQUISITE_STRENGTH, load_prerequisites, prerequisite_dag


def test_built_in_table_is_acyclic():
    dag = prerequisite_dag(PREREQUISITE_STRENGTH)
    assert nx.is_directed_acyclic_graph(dag)
    assert dag.has_edge("limits", "derivatives")
    assert dag["limits"]["derivatives"]["strength"] == 0.95


def test_reciprocal_pairs_keep_stronger_direction():
    dag = prerequisite_dag(PREREQUISITE_STRENGTH)
    assert dag.has_edge("statistics", "probability")
    assert not dag.has_edge("probability", "statistics")
    assert dag.has_edge("algorithms", "graph theory")
    assert not dag.has_edge("graph theory", "algorithms")


def test_reciprocal_tie_keeps_first_listed():
    dag = prerequisite_dag({"sets": {"logic": 0.5}, "logic": {"sets": 0.5}})
    assert list(dag.edges) == [("sets", "logic")]


def test_cycle_is_rejected():
    table = {"a": {"b": 0.5}, "b": {"c": 0.5}, "c": {"a": 0.5}}
    with pytest.raises(ValueError):
        prerequisite_dag(table)


def test_load_prerequisites_normalizes(tmp_path):
    path = tmp_path / "curriculum.json"
    path.write_text(json.dumps({" Sets ": {"Functions": 0.8}, "functions": {"limits": "0.6"}}))

    table = load_prerequisites(path)
    assert table == {"sets": {"functions": 0.8}, "functions": {"limits": 0.6}}


def test_load_prerequisites_rejects_out_of_range(tmp_path):
    path = tmp_path / "curriculum.json"
    path.write_text(json.dumps({"sets": {"functions": 1.5}}))
    with pytest.raises(ValueError):
        load_prerequisites(path)


def test_load_prerequisites_rejects_cycles(tmp_path):
    path = tmp_path / "curriculum.json"
    path.write_text(json.dumps({"a": {"b": 0.5}, "b": {"c": 0.5}, "c": {"a": 0.4}}))
    with pytest.raises(ValueError):
        load_prerequisites(path)
