"""Workflow step graph: normalization, successor resolution and validation.

Definitions are stored as an ordered step list (an arena) and steps
refer to each other by id only:

{
    "start": "check_tier",                # optional, defaults to the first step
    "steps": [
        {
            "id": "check_tier",
            "type": "condition",
            "config": {"left": "{{ event_metadata.tier }}", "op": "eq", "right": "high"},
            "on_true": "alert",
            "on_false": "ignore"
        },
        {"id": "alert", "type": "notify", "config": {"title": "High tier"}, "next": null},
        {"id": "ignore", "type": "noop"}
    ]
}

A step without a ``next`` key continues with the following array
element, so reordering steps without updating ``next`` changes the run
order. ``"next": null`` ends the run after that step. The older canvas format ``{"nodes": [...], "edges": [...]}`` is
converted into the same shape.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from app.config import get_settings
from core.constants import StepType

SUPPORTED_STEP_TYPES = frozenset(t.value for t in StepType)
ENTITY_STEP_TYPES = frozenset({StepType.CREATE_ENTITY.value, StepType.UPDATE_ENTITY.value})


def _ref(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


@dataclass
class StepDef:
    """One normalized step."""

    id: str
    type: str
    index: int
    config: dict = field(default_factory=dict)
    next: Optional[str] = None
    on_true: Optional[str] = None
    on_false: Optional[str] = None
    end: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "config": self.config,
            "next": self.next,
            "on_true": self.on_true,
            "on_false": self.on_false,
            "end": self.end,
        }


class StepGraph:
    """Ordered steps addressed by id, plus successor resolution."""

    def __init__(self, steps: list[StepDef], start: Optional[str] = None):
        self.steps = steps
        self._by_id: dict[str, StepDef] = {}
        for step in steps:
            self._by_id.setdefault(step.id, step)
        self.start = start or (steps[0].id if steps else None)

    def __len__(self) -> int:
        return len(self.steps)

    def get(self, step_id: Optional[str]) -> Optional[StepDef]:
        if step_id is None:
            return None
        return self._by_id.get(step_id)

    def default_successor(self, step: StepDef) -> Optional[str]:
        """The next array element after ``step``, or None if it is last."""
        following = step.index + 1
        if following < len(self.steps):
            return self.steps[following].id
        return None

    def successor(self, step: StepDef) -> Optional[str]:
        if step.next:
            return step.next
        if step.end:
            return None
        return self.default_successor(step)

    def branch_successor(self, step: StepDef, result: bool) -> Optional[str]:
        target = step.on_true if result else step.on_false
        return target or self.successor(step)

    @classmethod
    def from_definition(cls, definition: Optional[dict]) -> "StepGraph":
        normalized = normalize_definition(definition)
        steps = [
            StepDef(
                id=s["id"],
                type=s["type"],
                index=i,
                config=s["config"],
                next=s["next"],
                on_true=s["on_true"],
                on_false=s["on_false"],
                end=s["end"],
            )
            for i, s in enumerate(normalized["steps"])
        ]
        return cls(steps, start=normalized["start"])


def _normalize_step(raw: Any, index: int) -> dict:
    raw = raw if isinstance(raw, dict) else {}
    config = raw.get("config") if isinstance(raw.get("config"), dict) else {}
    step_id = raw.get("id") or raw.get("key") or f"step_{index + 1}"
    next_ref = _ref(raw.get("next"))
    return {
        "id": str(step_id),
        "type": str(raw.get("type") or StepType.NOOP.value),
        "config": config,
        "next": next_ref,
        "end": "next" in raw and next_ref is None,
        # Branch targets may live on the step or inside its config
        "on_true": _ref(raw.get("on_true") or config.get("on_true")),
        "on_false": _ref(raw.get("on_false") or config.get("on_false")),
    }


def _from_canvas(definition: dict) -> dict:
    """Convert the ``{nodes, edges}`` canvas format into a step list."""
    nodes = [n for n in definition.get("nodes") or [] if isinstance(n, dict) and n.get("id")]
    edges = [e for e in definition.get("edges") or [] if isinstance(e, dict)]
    trigger_ids = {str(n["id"]) for n in nodes if n.get("type") == "trigger"}

    outgoing: dict[str, list[dict]] = {}
    for edge in edges:
        if edge.get("source") and edge.get("target"):
            outgoing.setdefault(str(edge["source"]), []).append(edge)

    steps = []
    for node in nodes:
        node_id = str(node["id"])
        if node_id in trigger_ids:
            continue
        data = node.get("data") if isinstance(node.get("data"), dict) else {}
        config = dict(data.get("config") or {})
        step_type = config.pop("type", None) or node.get("type")
        if step_type == "action":
            step_type = StepType.NOOP.value
        step = {"id": node_id, "type": step_type, "config": config}

        for edge in outgoing.get(node_id, []):
            handle = str(edge.get("sourceHandle") or edge.get("label") or "").lower()
            target = str(edge["target"])
            if handle == "true":
                step.setdefault("on_true", target)
            elif handle == "false":
                step.setdefault("on_false", target)
            else:
                step.setdefault("next", target)
        # Canvas edges are explicit: a node without an outgoing edge is terminal
        step.setdefault("next", None)
        steps.append(step)

    start = None
    for trigger_id in trigger_ids:
        for edge in outgoing.get(trigger_id, []):
            start = str(edge["target"])
            break
    return {"start": start, "steps": steps}


def normalize_definition(definition: Optional[dict]) -> dict:
    """Return ``{"start", "steps"}`` with every step fully populated."""
    definition = definition if isinstance(definition, dict) else {}
    if not isinstance(definition.get("steps"), list) and isinstance(definition.get("nodes"), list):
        definition = _from_canvas(definition)

    raw_steps = definition.get("steps") if isinstance(definition.get("steps"), list) else []
    steps = [_normalize_step(s, i) for i, s in enumerate(raw_steps)]
    start = _ref(definition.get("start")) or (steps[0]["id"] if steps else None)
    return {"start": start, "steps": steps}


def validate_definition(definition: Optional[dict], max_steps: Optional[int] = None) -> list[str]:
    """Collect problems that would make the definition fail at run time.

    Returns an empty list for a valid definition.
    """
    from workflow.entity_registry import ENTITY_REGISTRY

    if not isinstance(definition, dict):
        return ["Definition must be an object"]

    normalized = normalize_definition(definition)
    steps = normalized["steps"]
    if not steps:
        return ["Definition.steps must be a non-empty array"]

    errors: list[str] = []
    max_steps = max_steps or get_settings().WORKFLOW_MAX_STEPS
    if len(steps) > max_steps:
        errors.append(f"Too many steps (max {max_steps})")

    ids = [s["id"] for s in steps]
    known = set(ids)
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    for dup in duplicates:
        errors.append(f"Duplicate step id: {dup}")

    if normalized["start"] not in known:
        errors.append(f"Start step not found: {normalized['start']}")

    for step in steps:
        step_type = step["type"]
        if step_type not in SUPPORTED_STEP_TYPES:
            errors.append(f"Unsupported step type: {step_type}")

        if step_type in ENTITY_STEP_TYPES:
            entity = step["config"].get("entity")
            if str(entity or "") not in ENTITY_REGISTRY:
                errors.append(f"Entity not allowed for {step['id']}: {entity}")

        for ref_name in ("next", "on_true", "on_false"):
            target = step[ref_name]
            if target is not None and target not in known:
                errors.append(f"Step {step['id']} {ref_name} points at missing step: {target}")

    return errors
