"""Activation conditions for workflow definitions.

A definition's stored JSON condition is parsed into a small expression tree
and evaluated in process against an ``EvaluationContext``. Accepted shapes:

    {"monto": {">=": 5000}}                       field → operator map
    {"monto": {"gte": 5000}, "urgente": true}     several keys are AND-ed
    {"and": [...]}, {"or": [...]}, {"not": {...}}
    {"campo": "total", "operador": ">", "valor_tipo": "referencia",
     "valor_ref": "limite_aprobacion_usuario"}    designer row
    {"condiciones": [...], "operador_logico": "OR"}  designer group

An empty or absent condition always applies. Missing fields and values that
cannot be compared evaluate to False; only malformed JSON raises.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import ConfigurationError


class Operator(str, Enum):
    """Comparison operators."""
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


OPERATOR_ALIASES: Dict[str, Operator] = {
    "=": Operator.EQ,
    "==": Operator.EQ,
    "!=": Operator.NE,
    "<>": Operator.NE,
    ">": Operator.GT,
    ">=": Operator.GTE,
    "<": Operator.LT,
    "<=": Operator.LTE,
    "contiene": Operator.CONTAINS,
    "empieza_con": Operator.STARTS_WITH,
    "termina_con": Operator.ENDS_WITH,
    "existe": Operator.EXISTS,
    "no_existe": Operator.NOT_EXISTS,
}


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


def parse_operator(raw: Any) -> Operator:
    if isinstance(raw, Operator):
        return raw
    key = str(raw).strip().lower()
    if key in OPERATOR_ALIASES:
        return OPERATOR_ALIASES[key]
    try:
        return Operator(key)
    except ValueError:
        raise ConfigurationError(f"Unknown condition operator: {raw!r}")


@dataclass(frozen=True)
class EvaluationContext:
    """
    Everything a condition may look at.

    Field paths resolve against ``entity`` first (dotted paths walk nested
    mappings), then ``usuario_id``, ``sucursal_id`` and ``usuario.<attr>``.
    References (``valor_ref``) resolve against ``references``.
    """
    entity: Mapping[str, Any] = field(default_factory=dict)
    actor_id: Optional[int] = None
    branch_id: Optional[int] = None
    actor: Mapping[str, Any] = field(default_factory=dict)
    references: Mapping[str, Any] = field(default_factory=dict)

    def lookup(self, path: str) -> Any:
        value = _dig(self.entity, path)
        if value is not MISSING:
            return value
        if path == "usuario_id":
            return MISSING if self.actor_id is None else self.actor_id
        if path == "sucursal_id":
            return MISSING if self.branch_id is None else self.branch_id
        if path.startswith("usuario."):
            return _dig(self.actor, path[len("usuario."):])
        return MISSING

    def reference(self, name: str) -> Any:
        value = self.references.get(name, MISSING)
        return MISSING if value is None else value


def _dig(data: Mapping[str, Any], path: str) -> Any:
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return MISSING
        current = current[part]
    return current


class Condition(ABC):
    """Node of a condition tree."""

    @abstractmethod
    def evaluate(self, context: EvaluationContext) -> bool:
        ...

    @abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        ...


@dataclass(frozen=True)
class Always(Condition):
    def evaluate(self, context: EvaluationContext) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {}


@dataclass(frozen=True)
class Comparison(Condition):
    field: str
    operator: Operator
    value: Any = None
    reference: Optional[str] = None

    def evaluate(self, context: EvaluationContext) -> bool:
        actual = context.lookup(self.field)
        expected = context.reference(self.reference) if self.reference else self.value
        return _compare(actual, self.operator, expected)

    def to_dict(self) -> Dict[str, Any]:
        if self.reference:
            return {
                "campo": self.field,
                "operador": self.operator.value,
                "valor_tipo": "referencia",
                "valor_ref": self.reference,
            }
        return {self.field: {self.operator.value: self.value}}


@dataclass(frozen=True)
class AllOf(Condition):
    conditions: Tuple[Condition, ...]

    def evaluate(self, context: EvaluationContext) -> bool:
        return all(c.evaluate(context) for c in self.conditions)

    def to_dict(self) -> Dict[str, Any]:
        return {"and": [c.to_dict() for c in self.conditions]}


@dataclass(frozen=True)
class AnyOf(Condition):
    conditions: Tuple[Condition, ...]

    def evaluate(self, context: EvaluationContext) -> bool:
        return any(c.evaluate(context) for c in self.conditions)

    def to_dict(self) -> Dict[str, Any]:
        return {"or": [c.to_dict() for c in self.conditions]}


@dataclass(frozen=True)
class Not(Condition):
    condition: Condition

    def evaluate(self, context: EvaluationContext) -> bool:
        return not self.condition.evaluate(context)

    def to_dict(self) -> Dict[str, Any]:
        return {"not": self.condition.to_dict()}


def parse_condition(raw: Any) -> Condition:
    """
    Parse a stored activation condition.

    Raises:
        ConfigurationError: If the condition is malformed
    """
    if raw is None:
        return Always()
    if isinstance(raw, Condition):
        return raw
    if isinstance(raw, str):
        if not raw.strip():
            return Always()
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise ConfigurationError(f"Condition is not valid JSON: {e}") from e
    if isinstance(raw, list):
        return _combine([parse_condition(item) for item in raw])
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"Condition must be an object, got {type(raw).__name__}")
    if not raw:
        return Always()

    if "condiciones" in raw:
        return _parse_group(raw)
    if "campo" in raw:
        return _parse_row(raw)

    parts: List[Condition] = []
    for key, clause in raw.items():
        lowered = str(key).lower()
        if lowered == "and":
            parts.append(AllOf(tuple(parse_condition(c) for c in _as_list(clause, key))))
        elif lowered == "or":
            parts.append(AnyOf(tuple(parse_condition(c) for c in _as_list(clause, key))))
        elif lowered == "not":
            parts.append(Not(parse_condition(clause)))
        else:
            parts.extend(_parse_field(str(key), clause))
    return _combine(parts)


def evaluate(condition: Any, context: EvaluationContext) -> bool:
    """Evaluate a condition (tree or stored JSON) against a context."""
    return parse_condition(condition).evaluate(context)


def _combine(parts: List[Condition]) -> Condition:
    if not parts:
        return Always()
    if len(parts) == 1:
        return parts[0]
    return AllOf(tuple(parts))


def _as_list(clause: Any, key: str) -> List[Any]:
    if not isinstance(clause, list):
        raise ConfigurationError(f"'{key}' expects a list of conditions")
    return clause


def _parse_group(raw: Mapping[str, Any]) -> Condition:
    children = [parse_condition(c) for c in _as_list(raw["condiciones"] or [], "condiciones")]
    if not children:
        return Always()
    logic = str(raw.get("operador_logico") or raw.get("logica") or "AND").upper()
    if logic == "AND":
        return AllOf(tuple(children))
    if logic == "OR":
        return AnyOf(tuple(children))
    raise ConfigurationError(f"Unknown logical operator: {logic!r}")


def _parse_row(row: Mapping[str, Any]) -> Condition:
    campo = row.get("campo")
    if not campo:
        raise ConfigurationError("Condition row without 'campo'")
    operator = parse_operator(row.get("operador") or "=")

    if row.get("valor_tipo") == "referencia":
        ref = row.get("valor_ref")
        if not ref:
            raise ConfigurationError(f"Condition on '{campo}' references nothing")
        return Comparison(campo, operator, reference=ref)

    value = row["valor_fijo"] if "valor_fijo" in row else row.get("valor")
    return Comparison(campo, operator, value)


def _parse_field(name: str, clause: Any) -> List[Condition]:
    if isinstance(clause, Mapping):
        if not clause:
            raise ConfigurationError(f"No operator given for '{name}'")
        comparisons = []
        for op, value in clause.items():
            operator = parse_operator(op)
            if isinstance(value, Mapping) and set(value) == {"ref"}:
                comparisons.append(Comparison(name, operator, reference=value["ref"]))
            else:
                comparisons.append(Comparison(name, operator, value))
        return comparisons
    if isinstance(clause, list):
        return [Comparison(name, Operator.IN, clause)]
    return [Comparison(name, Operator.EQ, clause)]


def _as_number(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            return value
    return value


def _equals(actual: Any, expected: Any) -> bool:
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual == expected
    left, right = _as_number(actual), _as_number(expected)
    if isinstance(left, Decimal) and isinstance(right, Decimal):
        return left == right
    return actual == expected


def _compare(actual: Any, operator: Operator, expected: Any) -> bool:
    """Compare values using the specified operator."""
    if operator == Operator.EXISTS:
        return actual is not MISSING and actual is not None
    if operator == Operator.NOT_EXISTS:
        return actual is MISSING or actual is None
    if actual is MISSING or actual is None or expected is MISSING:
        return False

    try:
        if operator == Operator.EQ:
            return _equals(actual, expected)
        elif operator == Operator.NE:
            return not _equals(actual, expected)
        elif operator in (Operator.IN, Operator.NOT_IN):
            candidates = expected if isinstance(expected, (list, tuple, set)) else [expected]
            found = any(_equals(actual, c) for c in candidates)
            return found if operator == Operator.IN else not found
        elif operator == Operator.CONTAINS:
            if isinstance(actual, str):
                return str(expected) in actual
            if isinstance(actual, (list, tuple, set)):
                return any(_equals(item, expected) for item in actual)
            return False
        elif operator == Operator.STARTS_WITH:
            return isinstance(actual, str) and actual.startswith(str(expected))
        elif operator == Operator.ENDS_WITH:
            return isinstance(actual, str) and actual.endswith(str(expected))

        left, right = _as_number(actual), _as_number(expected)
        if operator == Operator.GT:
            return left > right
        elif operator == Operator.GTE:
            return left >= right
        elif operator == Operator.LT:
            return left < right
        elif operator == Operator.LTE:
            return left <= right
    except (TypeError, ValueError, ArithmeticError):
        return False
    return False
