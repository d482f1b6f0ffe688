"""Quality filter expressions.

A filter specification is a nested mapping such as::

    {"$and": [{"mood": "open"}, {"$not": {"focus": "narrow"}}], "time": {"present": True}}

It is parsed into an immutable expression tree and evaluated against a
record's QualitySignature. Leaf keys are quality dimensions; leaf values
take one of these shapes:

- ``{"present": bool}`` for presence or absence of the dimension
- ``"open"`` for one subtype
- ``["open", "closed"]`` for any of several subtypes
- ``{"values": [...], "operator": "contains"}`` for substring matching

Keys at the same level combine with AND.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from bridge.exceptions import QualityFilterError
from bridge.models import KNOWN_QUALITIES, ExperienceRecord, QualitySignature

logger = logging.getLogger(__name__)

Operator = Literal["exact", "contains"]
BOOLEAN_OPERATORS = ("$and", "$or", "$not")


@dataclass(frozen=True)
class Presence:
    quality: str
    present: bool


@dataclass(frozen=True)
class Value:
    quality: str
    values: tuple[str, ...]
    operator: Operator = "exact"


@dataclass(frozen=True)
class And:
    children: tuple[Expression, ...]


@dataclass(frozen=True)
class Or:
    children: tuple[Expression, ...]


@dataclass(frozen=True)
class Not:
    child: Expression


Expression = Presence | Value | And | Or | Not


@dataclass
class FilterValidation:
    """Result of validating a filter specification."""

    valid: bool
    errors: list[str] = field(default_factory=list)


def _split_quality(key: str) -> tuple[str, str | None]:
    dimension, _, subtype = key.strip().lower().partition(".")
    return dimension, subtype or None


def _normalize_value(dimension: str, raw: str) -> str:
    value = raw.strip().lower()
    prefix = f"{dimension}."
    return value[len(prefix) :] if value.startswith(prefix) else value


class QualityFilterService:
    """Parse, evaluate, validate and describe quality filters.

    Example:
        ```python
        service = QualityFilterService()
        expr = service.parse({"mood": "open", "focus": {"present": False}})
        if service.evaluate(record, expr):
            ...
        ```
    """

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse(self, spec: Any) -> Expression:
        """Parse a filter specification into an expression tree.

        Raises:
            QualityFilterError: ``EMPTY_FILTER`` for an empty spec,
                ``INVALID_FILTER_VALUE`` for a malformed leaf or operator,
                ``NO_VALID_FILTERS`` when nothing recognizable remains.
        """
        if spec is None or (isinstance(spec, Mapping) and not spec):
            raise QualityFilterError(QualityFilterError.EMPTY_FILTER, "Filter cannot be empty")
        if not isinstance(spec, Mapping):
            raise QualityFilterError(
                QualityFilterError.INVALID_FILTER_VALUE, "Filter must be an object", "root"
            )
        return self._parse_node(spec, "root")

    def _parse_node(self, spec: Mapping[str, Any], path: str) -> Expression:
        nodes: list[Expression] = []
        for raw_key, value in spec.items():
            key = str(raw_key)
            child_path = f"{path}.{key}"
            if key in ("$and", "$or"):
                children = self._parse_children(key, value, child_path)
                nodes.append(And(children) if key == "$and" else Or(children))
            elif key == "$not":
                if not isinstance(value, Mapping):
                    raise QualityFilterError(
                        QualityFilterError.INVALID_FILTER_VALUE,
                        f"$not must contain a filter object at {path}",
                        child_path,
                    )
                nodes.append(Not(self._parse_node(value, child_path)))
            elif key.startswith("$"):
                # Unknown operators are reported by validate()
                continue
            else:
                nodes.append(self._parse_leaf(key, value, child_path))

        if not nodes:
            raise QualityFilterError(
                QualityFilterError.NO_VALID_FILTERS, f"No valid filters found at {path}", path
            )
        return nodes[0] if len(nodes) == 1 else And(tuple(nodes))

    def _parse_children(self, key: str, value: Any, path: str) -> tuple[Expression, ...]:
        if not isinstance(value, list) or not value:
            raise QualityFilterError(
                QualityFilterError.INVALID_FILTER_VALUE,
                f"{key} must be a non-empty array of filters",
                path,
            )
        children: list[Expression] = []
        for index, item in enumerate(value):
            if not isinstance(item, Mapping):
                raise QualityFilterError(
                    QualityFilterError.INVALID_FILTER_VALUE,
                    f"{key}[{index}] must be a filter object",
                    f"{path}[{index}]",
                )
            children.append(self._parse_node(item, f"{path}[{index}]"))
        return tuple(children)

    def _invalid(self, key: str, path: str) -> QualityFilterError:
        return QualityFilterError(
            QualityFilterError.INVALID_FILTER_VALUE, f"Invalid filter value for {key}", path
        )

    def _parse_leaf(self, key: str, value: Any, path: str) -> Expression:
        if key.strip().lower() not in KNOWN_QUALITIES:
            raise QualityFilterError(
                QualityFilterError.INVALID_FILTER_VALUE, f"Unknown quality: {key}", path
            )
        dimension, subtype = _split_quality(key)

        if isinstance(value, Mapping) and "present" in value:
            present = value["present"]
            if not isinstance(present, bool):
                raise self._invalid(key, path)
            if subtype is None:
                return Presence(dimension, present)
            # "mood.open": {"present": false} reads as NOT mood.open
            node: Expression = Value(dimension, (subtype,))
            return node if present else Not(node)

        if subtype is not None:
            raise self._invalid(key, path)

        if isinstance(value, str):
            if not value.strip():
                raise self._invalid(key, path)
            return Value(dimension, (_normalize_value(dimension, value),))

        if isinstance(value, list):
            return Value(dimension, self._parse_values(key, value, path))

        if isinstance(value, Mapping) and ("values" in value or "value" in value):
            operator = value.get("operator", "exact")
            if operator not in ("exact", "contains"):
                raise self._invalid(key, path)
            raw = value.get("values", value.get("value"))
            raw_list = [raw] if isinstance(raw, str) else raw
            if not isinstance(raw_list, list):
                raise self._invalid(key, path)
            return Value(dimension, self._parse_values(key, raw_list, path), operator)

        raise self._invalid(key, path)

    def _parse_values(self, key: str, values: list[Any], path: str) -> tuple[str, ...]:
        if not values or not all(isinstance(v, str) and v.strip() for v in values):
            raise self._invalid(key, path)
        dimension, _ = _split_quality(key)
        return tuple(_normalize_value(dimension, v) for v in values)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self, record: ExperienceRecord | QualitySignature, expression: Expression) -> bool:
        """Evaluate an expression against a record.

        Args:
            record: The record, or its precomputed signature.
            expression: A tree produced by :meth:`parse`.

        Raises:
            QualityFilterError: ``UNKNOWN_EXPRESSION_TYPE`` for a foreign node,
                ``EVALUATION_ERROR`` for any other failure.
        """
        try:
            signature = record if isinstance(record, QualitySignature) else record.signature
            return self._evaluate(signature, expression)
        except QualityFilterError:
            raise
        except Exception as e:
            logger.warning("Quality filter evaluation failed: %s", e)
            raise QualityFilterError(
                QualityFilterError.EVALUATION_ERROR, f"Filter evaluation failed: {e}"
            ) from e

    def _evaluate(self, signature: QualitySignature, expression: Expression) -> bool:
        if isinstance(expression, Presence):
            return signature.has(expression.quality) == expression.present
        if isinstance(expression, Value):
            return self._matches_value(signature, expression)
        if isinstance(expression, And):
            return all(self._evaluate(signature, child) for child in expression.children)
        if isinstance(expression, Or):
            return any(self._evaluate(signature, child) for child in expression.children)
        if isinstance(expression, Not):
            return not self._evaluate(signature, expression.child)
        raise QualityFilterError(
            QualityFilterError.UNKNOWN_EXPRESSION_TYPE,
            f"Unknown expression type: {type(expression).__name__}",
        )

    @staticmethod
    def _matches_value(signature: QualitySignature, expression: Value) -> bool:
        subtypes = signature.subtypes(expression.quality)
        if expression.operator == "exact":
            return any(value in subtypes for value in expression.values)
        text = (signature.text_for(expression.quality) or "").lower()
        return any(
            any(value in subtype for subtype in subtypes) or (text and value in text)
            for value in expression.values
        )

    def matches(self, record: ExperienceRecord | QualitySignature, spec: Mapping[str, Any]) -> bool:
        """Parse ``spec`` and evaluate it against ``record``."""
        return self.evaluate(record, self.parse(spec))

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, spec: Any) -> FilterValidation:
        """Report every structural problem in a filter specification.

        Unlike :meth:`parse`, this never stops at the first error.
        """
        errors: list[str] = []
        if isinstance(spec, Mapping) and not spec:
            errors.append("Filter must not be empty")
        else:
            self._validate_node(spec, "root", errors)
        return FilterValidation(valid=not errors, errors=errors)

    def _validate_node(self, node: Any, path: str, errors: list[str]) -> None:
        if not isinstance(node, Mapping):
            errors.append(f"Filter must be an object at {path}")
            return
        if not node:
            errors.append(f"Filter must not be empty at {path}")
            return

        for raw_key, value in node.items():
            key = str(raw_key)
            child_path = f"{path}.{key}"
            if key.startswith("$"):
                if key not in BOOLEAN_OPERATORS:
                    errors.append(f"Unknown boolean operator: {key} at {path}")
                elif key == "$not":
                    if isinstance(value, Mapping):
                        self._validate_node(value, child_path, errors)
                    else:
                        errors.append(f"$not must contain a filter object at {path}")
                elif not isinstance(value, list):
                    errors.append(f"{key} must be an array at {path}")
                elif not value:
                    errors.append(f"{key} must contain at least one filter at {path}")
                else:
                    for index, item in enumerate(value):
                        if isinstance(item, Mapping):
                            self._validate_node(item, f"{child_path}[{index}]", errors)
                        else:
                            errors.append(f"{key}[{index}] must be a filter object at {path}")
                continue

            if key.strip().lower() not in KNOWN_QUALITIES:
                errors.append(f"Unknown quality: {key} at {path}")
            self._validate_value(key, value, child_path, errors)

    @staticmethod
    def _validate_value(key: str, value: Any, path: str, errors: list[str]) -> None:
        dotted = "." in key
        if isinstance(value, Mapping):
            if "present" in value:
                if not isinstance(value["present"], bool):
                    errors.append(f"present must be a boolean at {path}")
            elif not dotted and ("values" in value or "value" in value):
                if value.get("operator", "exact") not in ("exact", "contains"):
                    errors.append(f"Unknown operator at {path}")
                raw = value.get("values", value.get("value"))
                items = [raw] if isinstance(raw, str) else raw
                if not isinstance(items, list):
                    errors.append(f"Invalid filter value type at {path}")
                elif not items:
                    errors.append(f"Empty array not allowed at {path}")
                elif not all(isinstance(i, str) for i in items):
                    errors.append(f"Array item must be string at {path}")
            else:
                errors.append(f"Invalid filter value at {path}")
        elif dotted:
            errors.append(f"Invalid filter value at {path}")
        elif isinstance(value, str):
            if not value.strip():
                errors.append(f"Empty value not allowed at {path}")
        elif isinstance(value, list):
            if not value:
                errors.append(f"Empty array not allowed at {path}")
            for index, item in enumerate(value):
                if not isinstance(item, str):
                    errors.append(f"Array item must be string at {path}[{index}]")
        else:
            errors.append(f"Invalid filter value type at {path}")

    # ------------------------------------------------------------------
    # Description
    # ------------------------------------------------------------------

    def describe(self, spec: Any) -> str:
        """Render a filter specification as readable text.

        Returns:
            For example ``(mood.open AND NOT focus.narrow)``, or
            ``"Invalid filter"`` if the spec does not parse.
        """
        try:
            return self.render(self.parse(spec))
        except QualityFilterError:
            return "Invalid filter"

    def render(self, expression: Expression) -> str:
        if isinstance(expression, Presence):
            return f"{expression.quality} {'present' if expression.present else 'absent'}"
        if isinstance(expression, Value):
            joiner = "." if expression.operator == "exact" else " contains "
            if len(expression.values) == 1:
                return f"{expression.quality}{joiner}{expression.values[0]}"
            if expression.operator == "exact":
                return f"{expression.quality} ({' OR '.join(expression.values)})"
            return f"{expression.quality} contains ({' OR '.join(expression.values)})"
        if isinstance(expression, And):
            return "(" + " AND ".join(self.render(c) for c in expression.children) + ")"
        if isinstance(expression, Or):
            return "(" + " OR ".join(self.render(c) for c in expression.children) + ")"
        if isinstance(expression, Not):
            return f"NOT {self.render(expression.child)}"
        raise QualityFilterError(
            QualityFilterError.UNKNOWN_EXPRESSION_TYPE,
            f"Unknown expression type: {type(expression).__name__}",
        )
