"""
Rule Evaluator — pure computation shared by all rule executors.

Decides whether an entity qualifies for a rule (conjunctive thresholds over
raw and derived metrics) and computes adjusted bids/budgets. No I/O.
"""

import operator
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

_OPERATORS = {
    ">=": operator.ge,
    "<=": operator.le,
    ">": operator.gt,
    "<": operator.lt,
    "==": operator.eq,
}


def calculate_acos(spend: float, sales: float) -> Optional[float]:
    """ACOS = spend / sales * 100. None when there are no sales."""
    if not sales or sales <= 0:
        return None
    return (spend or 0) / sales * 100


def calculate_roas(spend: float, sales: float) -> Optional[float]:
    """ROAS = sales / spend. None when there is no spend."""
    if not spend or spend <= 0:
        return None
    return (sales or 0) / spend


@dataclass(frozen=True)
class EntityMetrics:
    impressions: int = 0
    clicks: int = 0
    spend: float = 0.0
    sales: float = 0.0
    conversions: int = 0

    @classmethod
    def from_entity(cls, entity) -> "EntityMetrics":
        """Build from a Keyword / Campaign row or a search term aggregate."""
        return cls(
            impressions=getattr(entity, "impressions", None) or 0,
            clicks=getattr(entity, "clicks", None) or 0,
            spend=getattr(entity, "spend", None) or 0.0,
            sales=getattr(entity, "sales", None) or 0.0,
            conversions=getattr(entity, "conversions", None) or 0,
        )

    @property
    def acos(self) -> Optional[float]:
        return calculate_acos(self.spend, self.sales)

    @property
    def roas(self) -> Optional[float]:
        return calculate_roas(self.spend, self.sales)

    def value_of(self, metric: str) -> Optional[float]:
        return getattr(self, metric)


@dataclass(frozen=True)
class Threshold:
    """A single condition such as `acos <= 30`."""
    metric: str
    op: str
    value: float

    def __post_init__(self):
        if self.op not in _OPERATORS:
            raise ValueError(f"Unsupported operator: {self.op}")

    def holds(self, metrics: EntityMetrics) -> bool:
        actual = metrics.value_of(self.metric)
        # Undefined ACOS/ROAS matches no bound
        if actual is None:
            return False
        return _OPERATORS[self.op](actual, self.value)


def qualifies(metrics: EntityMetrics, thresholds: list[Threshold]) -> bool:
    """True when every threshold holds. An empty list always qualifies."""
    return all(t.holds(metrics) for t in thresholds)


def round_currency(value: float) -> float:
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def compute_adjusted_value(
    current_value: float,
    adjustment_type: str,
    adjustment_value: float,
    min_value: Optional[float] = None,
    max_value: Optional[float] = None,
) -> float:
    """
    Apply a PERCENTAGE / FIXED / SET adjustment, clamp to [min_value, max_value]
    and round to cents.
    """
    current_value = current_value or 0.0
    if adjustment_type == "PERCENTAGE":
        new_value = current_value * (1 + adjustment_value / 100)
    elif adjustment_type == "FIXED":
        new_value = current_value + adjustment_value
    elif adjustment_type == "SET":
        new_value = adjustment_value
    else:
        raise ValueError(f"Unknown adjustment type: {adjustment_type}")

    if min_value is not None:
        new_value = max(new_value, min_value)
    if max_value is not None:
        new_value = min(new_value, max_value)
    return round_currency(new_value)


def is_accepted_change(current_value: Optional[float], new_value: float) -> bool:
    """No-op changes are never applied, logged or counted."""
    return new_value != (current_value or 0.0)
