"""Template resolution and condition evaluation for workflow steps.

Both evaluators operate over plain JSON-like values (None, bool, int,
float, str, list, dict) and are total: bad paths, odd types or unknown
operators degrade to absent values or ``False``, never to an exception.

Template syntax:
    "{{ event_metadata.tier }}"          → typed value at that path (None if missing)
    "Student {{ entity_id }} missed"     → string with each fragment substituted
    {"a": "{{ x }}", "b": ["{{ y }}"]}  → resolved recursively, structure preserved
"""

import json
import logging
import math
import re
from typing import Any, Optional

logger = logging.getLogger(__name__)

_FRAGMENT = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")
_EXACT = re.compile(r"^\s*\{\{\s*([^{}]+?)\s*\}\}\s*$")

_MISSING = object()


class TemplateResolver:
    """Resolves ``{{path.to.value}}`` placeholders against a run context."""

    @staticmethod
    def get_path(context: Any, path: str, default: Any = None) -> Any:
        """Walk a dot-separated path through dicts and lists.

        List segments must be integer indexes. Anything that cannot be
        followed yields ``default``.
        """
        value = TemplateResolver._lookup(context, path)
        return default if value is _MISSING else value

    @staticmethod
    def _lookup(context: Any, path: str) -> Any:
        parts = [p for p in str(path).strip().split(".") if p]
        if not parts:
            return _MISSING

        current = context
        for part in parts:
            if isinstance(current, dict):
                if part not in current:
                    return _MISSING
                current = current[part]
            elif isinstance(current, list):
                try:
                    current = current[int(part)]
                except (ValueError, IndexError):
                    return _MISSING
            else:
                return _MISSING
        return current

    @staticmethod
    def resolve(value: Any, context: dict) -> Any:
        """Resolve every template in ``value`` against ``context``."""
        if isinstance(value, str):
            return TemplateResolver.resolve_string(value, context)
        if isinstance(value, dict):
            return {k: TemplateResolver.resolve(v, context) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [TemplateResolver.resolve(v, context) for v in value]
        return value

    @staticmethod
    def resolve_string(template: str, context: dict) -> Any:
        exact = _EXACT.match(template)
        if exact:
            return TemplateResolver.get_path(context, exact.group(1))

        if "{{" not in template:
            return template

        def _substitute(match: re.Match) -> str:
            return _stringify(TemplateResolver.get_path(context, match.group(1)))

        return _FRAGMENT.sub(_substitute, template)


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        return str(value)


# ─── Condition Evaluator ──────────────────────────────────────


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def strict_equals(left: Any, right: Any) -> bool:
    """Equality without cross-type coercion (``1 != "1"``, ``True != 1``)."""
    if _is_number(left) and _is_number(right):
        return left == right
    if type(left) is not type(right):
        return False
    return left == right


def to_number(value: Any) -> float:
    """Numeric coercion: "" → 0, bool → 0/1, numeric strings parsed, else NaN.

    A missing value (None) is NaN, so every comparison against it is false.
    """
    if value is None:
        return math.nan
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if _is_number(value):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            return math.nan
    return math.nan


def _to_text(value: Any) -> str:
    return _stringify(value)


class ConditionEvaluator:
    """Applies a fixed operator set to two already-resolved operands."""

    OPERATORS = (
        "eq", "neq", "ne", "gt", "gte", "lt", "lte",
        "contains", "ncontains", "in", "exists",
    )

    @staticmethod
    def evaluate(left: Any, op: Optional[str], right: Any = None) -> bool:
        """Return the boolean result of ``left <op> right``.

        Unknown operators fall back to strict equality.
        """
        op = (op or "eq").strip().lower() if isinstance(op, str) else "eq"
        try:
            if op == "eq":
                return strict_equals(left, right)
            if op in ("neq", "ne"):
                return not strict_equals(left, right)
            if op in ("gt", "gte", "lt", "lte"):
                a, b = to_number(left), to_number(right)
                if math.isnan(a) or math.isnan(b):
                    return False
                if op == "gt":
                    return a > b
                if op == "gte":
                    return a >= b
                if op == "lt":
                    return a < b
                return a <= b
            if op == "contains":
                return _to_text(right) in _to_text(left)
            if op == "ncontains":
                return _to_text(right) not in _to_text(left)
            if op == "in":
                if not isinstance(right, (list, tuple)):
                    return False
                return any(strict_equals(left, item) for item in right)
            if op == "exists":
                return left is not None and left != ""
            return strict_equals(left, right)
        except Exception as exc:
            logger.warning("Condition evaluation failed: op=%s error=%s", op, exc)
            return False
