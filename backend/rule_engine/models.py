"""
Amazon Ads Rule Engine — Database Models
Advertising entities synced from Amazon Ads plus optimization rules and
their execution history.
"""

import uuid
import enum
from datetime import datetime, timezone
from sqlalchemy import (
    String, Text, Float, Integer, BigInteger, Boolean, DateTime,
    JSON, ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import UUID
from rule_engine.database import Base


def _utcnow() -> datetime:
    """Naive UTC now, matching DB columns (TIMESTAMP WITHOUT TIME ZONE)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ══════════════════════════════════════════════════════════════════════
#  ENUMS
# ══════════════════════════════════════════════════════════════════════

class RuleType(str, enum.Enum):
    BID_ADJUSTMENT = "BID_ADJUSTMENT"
    KEYWORD_AUTOMATION = "KEYWORD_AUTOMATION"
    BUDGET_CONTROL = "BUDGET_CONTROL"
    NEGATIVE_KEYWORD = "NEGATIVE_KEYWORD"


class RuleSchedule(str, enum.Enum):
    HOURLY = "HOURLY"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    CUSTOM = "CUSTOM"


class ExecutionStatus(str, enum.Enum):
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class EntityState(str, enum.Enum):
    ENABLED = "ENABLED"
    PAUSED = "PAUSED"
    ARCHIVED = "ARCHIVED"


# ══════════════════════════════════════════════════════════════════════
#  AMAZON CONNECTIONS: Owned by the identity store, read-only here
# ══════════════════════════════════════════════════════════════════════

class AmazonConnection(Base):
    """A user's linked Amazon Ads profile with a valid access token."""
    __tablename__ = "amazon_connections"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=True)
    client_id: Mapped[str] = mapped_column(String(512), nullable=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    profile_id: Mapped[str] = mapped_column(String(255), nullable=True)
    account_id: Mapped[str] = mapped_column(String(255), nullable=True)
    marketplace: Mapped[str] = mapped_column(String(100), nullable=True)
    region: Mapped[str] = mapped_column(String(10), default="na")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    # Relationships
    campaigns: Mapped[list["Campaign"]] = relationship("Campaign", back_populates="connection", cascade="all, delete-orphan")
    rules: Mapped[list["OptimizationRule"]] = relationship("OptimizationRule", back_populates="connection", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_amazon_connections_user_id", "user_id"),
    )


# ══════════════════════════════════════════════════════════════════════
#  CAMPAIGNS / AD GROUPS / KEYWORDS: Synced metrics
# ══════════════════════════════════════════════════════════════════════

class Campaign(Base):
    """Amazon Ads campaign with trailing performance metrics."""
    __tablename__ = "campaigns"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    connection_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("amazon_connections.id", ondelete="CASCADE"), nullable=False)
    amazon_campaign_id: Mapped[str] = mapped_column(String(255), nullable=False)
    campaign_name: Mapped[str] = mapped_column(String(512), nullable=True)
    state: Mapped[str] = mapped_column(String(50), default=EntityState.ENABLED.value)
    daily_budget: Mapped[float] = mapped_column(Float, nullable=True)
    impressions: Mapped[int] = mapped_column(BigInteger, default=0)
    clicks: Mapped[int] = mapped_column(Integer, default=0)
    spend: Mapped[float] = mapped_column(Float, default=0.0)
    sales: Mapped[float] = mapped_column(Float, default=0.0)
    orders: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    # Relationships
    connection: Mapped["AmazonConnection"] = relationship("AmazonConnection", back_populates="campaigns")
    ad_groups: Mapped[list["AdGroup"]] = relationship("AdGroup", back_populates="campaign", cascade="all, delete-orphan")
    keywords: Mapped[list["Keyword"]] = relationship("Keyword", back_populates="campaign", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("connection_id", "amazon_campaign_id", name="uq_campaign_per_connection"),
        Index("ix_campaigns_connection_id", "connection_id"),
        Index("ix_campaigns_state", "state"),
    )


class AdGroup(Base):
    """Amazon Ads ad group."""
    __tablename__ = "ad_groups"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False)
    amazon_ad_group_id: Mapped[str] = mapped_column(String(255), nullable=False)
    ad_group_name: Mapped[str] = mapped_column(String(512), nullable=True)
    state: Mapped[str] = mapped_column(String(50), default=EntityState.ENABLED.value)
    default_bid: Mapped[float] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    # Relationships
    campaign: Mapped["Campaign"] = relationship("Campaign", back_populates="ad_groups")

    __table_args__ = (
        Index("ix_ad_groups_campaign_id", "campaign_id"),
        Index("ix_ad_groups_amazon_ad_group_id", "amazon_ad_group_id"),
    )


class Keyword(Base):
    """Keyword target with bid, state and trailing performance metrics."""
    __tablename__ = "keywords"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False)
    ad_group_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("ad_groups.id", ondelete="CASCADE"), nullable=True)
    amazon_keyword_id: Mapped[str] = mapped_column(String(255), nullable=False)
    keyword_text: Mapped[str] = mapped_column(Text, nullable=True)
    match_type: Mapped[str] = mapped_column(String(50), nullable=True)  # BROAD, PHRASE, EXACT
    state: Mapped[str] = mapped_column(String(50), default=EntityState.ENABLED.value)
    bid: Mapped[float] = mapped_column(Float, nullable=True)
    impressions: Mapped[int] = mapped_column(BigInteger, default=0)
    clicks: Mapped[int] = mapped_column(Integer, default=0)
    spend: Mapped[float] = mapped_column(Float, default=0.0)
    sales: Mapped[float] = mapped_column(Float, default=0.0)
    orders: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    # Relationships
    campaign: Mapped["Campaign"] = relationship("Campaign", back_populates="keywords")

    __table_args__ = (
        Index("ix_keywords_campaign_id", "campaign_id"),
        Index("ix_keywords_amazon_keyword_id", "amazon_keyword_id"),
        Index("ix_keywords_state", "state"),
    )


class SearchTerm(Base):
    """
    Customer search query performance from search term reports.
    One row per (search_term, campaign, ad_group, date).
    """
    __tablename__ = "search_terms"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False)
    ad_group_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("ad_groups.id", ondelete="CASCADE"), nullable=True)
    search_term: Mapped[str] = mapped_column(Text, nullable=False)
    date: Mapped[str] = mapped_column(String(25), nullable=True)  # YYYY-MM-DD
    impressions: Mapped[int] = mapped_column(BigInteger, default=0)
    clicks: Mapped[int] = mapped_column(Integer, default=0)
    spend: Mapped[float] = mapped_column(Float, default=0.0)
    sales: Mapped[float] = mapped_column(Float, default=0.0)
    conversions: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ix_search_terms_campaign_id", "campaign_id"),
        Index("ix_search_terms_ad_group_id", "ad_group_id"),
        Index("ix_search_terms_search_term", "search_term"),
    )


# ══════════════════════════════════════════════════════════════════════
#  OPTIMIZATION RULES: User-defined automation rules
# ══════════════════════════════════════════════════════════════════════

class OptimizationRule(Base):
    """Automation rule with conditions, actions, schedule and run statistics."""
    __tablename__ = "optimization_rules"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    connection_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("amazon_connections.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    rule_type: Mapped[str] = mapped_column(String(50), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    conditions: Mapped[dict] = mapped_column(JSON, default=dict)
    actions: Mapped[dict] = mapped_column(JSON, default=dict)
    schedule: Mapped[str] = mapped_column(String(20), default=RuleSchedule.DAILY.value)
    custom_cron: Mapped[str] = mapped_column(String(255), nullable=True)
    priority: Mapped[int] = mapped_column(Integer, default=0)
    next_run_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    last_run_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    run_count: Mapped[int] = mapped_column(Integer, default=0)
    success_count: Mapped[int] = mapped_column(Integer, default=0)
    failure_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    # Relationships
    connection: Mapped["AmazonConnection"] = relationship("AmazonConnection", back_populates="rules")
    execution_logs: Mapped[list["ExecutionLog"]] = relationship("ExecutionLog", back_populates="rule", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_optimization_rules_connection_id", "connection_id"),
        Index("ix_optimization_rules_user_id", "user_id"),
        Index("ix_optimization_rules_due", "enabled", "next_run_at"),
    )


# ══════════════════════════════════════════════════════════════════════
#  EXECUTION LOGS: One row per rule invocation
# ══════════════════════════════════════════════════════════════════════

class ExecutionLog(Base):
    """Single execution of an optimization rule, with the changes it made."""
    __tablename__ = "optimization_execution_logs"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    rule_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("optimization_rules.id", ondelete="CASCADE"), nullable=False)
    connection_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("amazon_connections.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=ExecutionStatus.RUNNING.value)
    started_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    completed_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=True)
    entities_affected: Mapped[int] = mapped_column(Integer, default=0)
    changes_made: Mapped[list] = mapped_column(JSON, nullable=True)
    error_message: Mapped[str] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    # Relationships
    rule: Mapped["OptimizationRule"] = relationship("OptimizationRule", back_populates="execution_logs")

    __table_args__ = (
        Index("ix_execution_logs_rule_id", "rule_id"),
        Index("ix_execution_logs_status", "status"),
        Index("ix_execution_logs_started_at", "started_at"),
    )
