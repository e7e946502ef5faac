"""
Rule definitions — one strongly-typed conditions/actions shape per rule kind.

Rules are stored with free-form JSON `conditions` / `actions` (camelCase keys,
as the dashboard sends them). They are parsed into a discriminated union on
`rule_type` before execution so each executor receives exactly the shape it
needs, and malformed rules fail as configuration errors.
"""

from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from rule_engine.errors import RuleConfigurationError, UnknownRuleTypeError
from rule_engine.models import RuleType
from rule_engine.services.rule_evaluator import Threshold

AdjustmentType = Literal["PERCENTAGE", "FIXED", "SET"]
BudgetAdjustmentType = Literal["PERCENTAGE", "FIXED"]


class _RuleModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data):
        """A null threshold means "not set", so field defaults apply."""
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


def _check_bounds(low: Optional[float], high: Optional[float], label: str) -> None:
    if low is not None and high is not None and low > high:
        raise ValueError(f"min {label} ({low}) is greater than max {label} ({high})")


# ── BID_ADJUSTMENT ────────────────────────────────────────────────────

class BidAdjustmentConditions(_RuleModel):
    min_impressions: Optional[int] = Field(None, ge=0)
    min_clicks: Optional[int] = Field(None, ge=0)
    max_acos: Optional[float] = None
    min_acos: Optional[float] = None

    def thresholds(self) -> list[Threshold]:
        checks = []
        if self.min_impressions is not None:
            checks.append(Threshold("impressions", ">=", self.min_impressions))
        if self.min_clicks is not None:
            checks.append(Threshold("clicks", ">=", self.min_clicks))
        if self.max_acos is not None:
            checks.append(Threshold("acos", "<=", self.max_acos))
        if self.min_acos is not None:
            checks.append(Threshold("acos", ">=", self.min_acos))
        return checks


class BidAdjustmentActions(_RuleModel):
    adjustment_type: AdjustmentType
    adjustment_value: float
    min_bid: Optional[float] = Field(None, ge=0)
    max_bid: Optional[float] = Field(None, ge=0)

    @model_validator(mode="after")
    def _bid_bounds(self):
        _check_bounds(self.min_bid, self.max_bid, "bid")
        return self


class BidAdjustmentRule(BaseModel):
    rule_type: Literal["BID_ADJUSTMENT"]
    conditions: BidAdjustmentConditions = Field(default_factory=BidAdjustmentConditions)
    actions: BidAdjustmentActions


# ── KEYWORD_AUTOMATION ────────────────────────────────────────────────

class KeywordAutomationConditions(_RuleModel):
    min_impressions: int = Field(100, ge=0)
    min_clicks: int = Field(5, ge=0)
    max_acos: float = 50.0

    def thresholds(self) -> list[Threshold]:
        return [
            Threshold("impressions", ">=", self.min_impressions),
            Threshold("clicks", ">=", self.min_clicks),
            Threshold("acos", ">", self.max_acos),
        ]


class KeywordAutomationActions(_RuleModel):
    pause_underperforming: bool = False


class KeywordAutomationRule(BaseModel):
    rule_type: Literal["KEYWORD_AUTOMATION"]
    conditions: KeywordAutomationConditions = Field(default_factory=KeywordAutomationConditions)
    actions: KeywordAutomationActions = Field(default_factory=KeywordAutomationActions)


# ── BUDGET_CONTROL ────────────────────────────────────────────────────

class BudgetControlConditions(_RuleModel):
    min_roas: Optional[float] = None
    max_roas: Optional[float] = None

    def thresholds(self) -> list[Threshold]:
        checks = []
        if self.min_roas is not None:
            checks.append(Threshold("roas", ">=", self.min_roas))
        if self.max_roas is not None:
            checks.append(Threshold("roas", "<=", self.max_roas))
        return checks


class BudgetControlActions(_RuleModel):
    budget_adjustment_type: BudgetAdjustmentType
    budget_adjustment_value: float
    min_budget: Optional[float] = Field(None, ge=0)
    max_budget: Optional[float] = Field(None, ge=0)

    @model_validator(mode="after")
    def _budget_bounds(self):
        _check_bounds(self.min_budget, self.max_budget, "budget")
        return self


class BudgetControlRule(BaseModel):
    rule_type: Literal["BUDGET_CONTROL"]
    conditions: BudgetControlConditions = Field(default_factory=BudgetControlConditions)
    actions: BudgetControlActions


# ── NEGATIVE_KEYWORD ──────────────────────────────────────────────────

class NegativeKeywordConditions(_RuleModel):
    min_impressions: int = Field(10, ge=0)
    min_clicks: int = Field(1, ge=0)
    max_acos: float = 100.0

    def thresholds(self) -> list[Threshold]:
        return [
            Threshold("impressions", ">=", self.min_impressions),
            Threshold("clicks", ">=", self.min_clicks),
            Threshold("acos", ">", self.max_acos),
            Threshold("conversions", "==", 0),
        ]


class NegativeKeywordActions(_RuleModel):
    match_type: Literal["NEGATIVE_PHRASE", "NEGATIVE_EXACT"] = "NEGATIVE_PHRASE"


class NegativeKeywordRule(BaseModel):
    rule_type: Literal["NEGATIVE_KEYWORD"]
    conditions: NegativeKeywordConditions = Field(default_factory=NegativeKeywordConditions)
    actions: NegativeKeywordActions = Field(default_factory=NegativeKeywordActions)


RuleDefinition = Annotated[
    Union[BidAdjustmentRule, KeywordAutomationRule, BudgetControlRule, NegativeKeywordRule],
    Field(discriminator="rule_type"),
]

_rule_adapter = TypeAdapter(RuleDefinition)

RULE_TYPES = {t.value for t in RuleType}


def parse_rule_definition(rule_type, conditions: Optional[dict], actions: Optional[dict]):
    """
    Validate a stored rule into its typed definition.

    Raises UnknownRuleTypeError for an unrecognized rule_type and
    RuleConfigurationError for malformed conditions/actions.
    """
    rule_type = getattr(rule_type, "value", rule_type)
    if rule_type not in RULE_TYPES:
        raise UnknownRuleTypeError(rule_type)
    try:
        return _rule_adapter.validate_python({
            "rule_type": rule_type,
            "conditions": conditions or {},
            "actions": actions or {},
        })
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'][1:]) or 'rule'}: {err['msg']}"
            for err in e.errors()
        )
        raise RuleConfigurationError(f"Invalid {rule_type} rule: {problems}") from e


# ══════════════════════════════════════════════════════════════════════
#  CHANGE RECORDS: embedded in ExecutionLog.changes_made
# ══════════════════════════════════════════════════════════════════════

class ChangeRecord(BaseModel):
    """One applied change. Immutable once appended to a log."""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    entity: Literal["keyword", "campaign", "negative_keyword"]
    action: Literal["bid_adjustment", "pause", "budget_adjustment", "add"]
    entity_id: Optional[str] = None
    old_value: Optional[Union[float, str]] = None
    new_value: Optional[Union[float, str]] = None
    reason: Optional[str] = None
    # Negative keyword scope
    keyword: Optional[str] = None
    campaign_id: Optional[str] = None
    ad_group_id: Optional[str] = None
    match_type: Optional[str] = None

    def to_log_entry(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
