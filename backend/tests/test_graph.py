"""Tests for step graph normalization, successors and validation."""

import pytest

from workflow.graph import StepGraph, normalize_definition, validate_definition


@pytest.mark.unit
class TestNormalizeDefinition:

    def test_ids_synthesized_and_type_defaults(self):
        normalized = normalize_definition({"steps": [{"type": "noop"}, {"key": "k2"}, {"id": "c"}]})
        assert [s["id"] for s in normalized["steps"]] == ["step_1", "k2", "c"]
        assert [s["type"] for s in normalized["steps"]] == ["noop", "noop", "noop"]
        assert normalized["start"] == "step_1"

    def test_branch_targets_read_from_config(self):
        normalized = normalize_definition({
            "steps": [{"id": "c", "type": "condition", "config": {"on_true": "a", "on_false": "b"}}]
        })
        assert normalized["steps"][0]["on_true"] == "a"
        assert normalized["steps"][0]["on_false"] == "b"

    def test_empty_or_garbage_definition(self):
        assert normalize_definition(None) == {"start": None, "steps": []}
        assert normalize_definition({"steps": "nope"}) == {"start": None, "steps": []}

    def test_canvas_format_converted(self):
        canvas = {
            "nodes": [
                {"id": "t", "type": "trigger"},
                {"id": "cond", "type": "condition", "data": {"config": {"left": "x", "op": "exists"}}},
                {"id": "yes", "type": "notify", "data": {"config": {"title": "hi"}}},
                {"id": "no", "type": "action"},
            ],
            "edges": [
                {"source": "t", "target": "cond"},
                {"source": "cond", "target": "yes", "sourceHandle": "true"},
                {"source": "cond", "target": "no", "label": "false"},
            ],
        }
        normalized = normalize_definition(canvas)
        assert normalized["start"] == "cond"
        steps = {s["id"]: s for s in normalized["steps"]}
        assert set(steps) == {"cond", "yes", "no"}
        assert steps["cond"]["on_true"] == "yes"
        assert steps["cond"]["on_false"] == "no"
        assert steps["no"]["type"] == "noop"
        assert steps["yes"]["config"] == {"title": "hi"}


@pytest.mark.unit
class TestStepGraph:

    def test_default_successor_is_next_array_element(self):
        graph = StepGraph.from_definition({"steps": [{"id": "a"}, {"id": "b"}]})
        a, b = graph.get("a"), graph.get("b")
        assert graph.successor(a) == "b"
        assert graph.successor(b) is None

    def test_explicit_next_wins(self):
        graph = StepGraph.from_definition({"steps": [{"id": "a", "next": "c"}, {"id": "b"}, {"id": "c"}]})
        assert graph.successor(graph.get("a")) == "c"

    def test_explicit_null_next_ends_run(self):
        graph = StepGraph.from_definition({"steps": [{"id": "a", "next": None}, {"id": "b"}]})
        assert graph.get("a").end is True
        assert graph.successor(graph.get("a")) is None
        assert graph.get("b").end is False

    def test_branch_falls_back_to_successor(self):
        graph = StepGraph.from_definition({
            "steps": [{"id": "c", "type": "condition", "on_true": "t"}, {"id": "n"}, {"id": "t"}]
        })
        step = graph.get("c")
        assert graph.branch_successor(step, True) == "t"
        assert graph.branch_successor(step, False) == "n"

    def test_explicit_start(self):
        graph = StepGraph.from_definition({"start": "b", "steps": [{"id": "a"}, {"id": "b"}]})
        assert graph.start == "b"
        assert len(graph) == 2


@pytest.mark.unit
class TestValidateDefinition:

    def test_valid_definition(self):
        definition = {
            "steps": [
                {"id": "c", "type": "condition", "on_true": "n", "on_false": "x"},
                {"id": "n", "type": "notify", "next": None},
                {"id": "x", "type": "create_entity", "config": {"entity": "partner_contracts"}},
            ]
        }
        assert validate_definition(definition) == []

    def test_collects_problems(self):
        definition = {
            "start": "zzz",
            "steps": [
                {"id": "a", "type": "http_request"},
                {"id": "a", "type": "noop", "next": "ghost"},
                {"id": "w", "type": "create_entity", "config": {"entity": "users"}},
            ],
        }
        errors = validate_definition(definition)
        assert "Duplicate step id: a" in errors
        assert "Start step not found: zzz" in errors
        assert "Unsupported step type: http_request" in errors
        assert "Entity not allowed for w: users" in errors
        assert "Step a next points at missing step: ghost" in errors

    def test_empty_and_oversized(self):
        assert validate_definition({"steps": []}) == ["Definition.steps must be a non-empty array"]
        assert validate_definition("nope") == ["Definition must be an object"]
        many = {"steps": [{"id": f"s{i}"} for i in range(4)]}
        assert "Too many steps (max 3)" in validate_definition(many, max_steps=3)
