"""Create connection, metrics, optimization rule and execution log tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

UUID = postgresql.UUID(as_uuid=True)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
    ]


def _metrics() -> list[sa.Column]:
    return [
        sa.Column("impressions", sa.BigInteger(), nullable=True, server_default="0"),
        sa.Column("clicks", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("spend", sa.Float(), nullable=True, server_default="0"),
        sa.Column("sales", sa.Float(), nullable=True, server_default="0"),
    ]


def upgrade() -> None:
    conn = op.get_bind()
    if "optimization_rules" in sa.inspect(conn).get_table_names():
        return

    op.create_table(
        "amazon_connections",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("client_id", sa.String(512), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("profile_id", sa.String(255), nullable=True),
        sa.Column("account_id", sa.String(255), nullable=True),
        sa.Column("marketplace", sa.String(100), nullable=True),
        sa.Column("region", sa.String(10), nullable=True, server_default="na"),
        *_timestamps(),
    )
    op.create_index("ix_amazon_connections_user_id", "amazon_connections", ["user_id"])

    op.create_table(
        "campaigns",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("connection_id", UUID, sa.ForeignKey("amazon_connections.id", ondelete="CASCADE"), nullable=False),
        sa.Column("amazon_campaign_id", sa.String(255), nullable=False),
        sa.Column("campaign_name", sa.String(512), nullable=True),
        sa.Column("state", sa.String(50), nullable=True, server_default="ENABLED"),
        sa.Column("daily_budget", sa.Float(), nullable=True),
        *_metrics(),
        sa.Column("orders", sa.Integer(), nullable=True, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("connection_id", "amazon_campaign_id", name="uq_campaign_per_connection"),
    )
    op.create_index("ix_campaigns_connection_id", "campaigns", ["connection_id"])
    op.create_index("ix_campaigns_state", "campaigns", ["state"])

    op.create_table(
        "ad_groups",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("campaign_id", UUID, sa.ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False),
        sa.Column("amazon_ad_group_id", sa.String(255), nullable=False),
        sa.Column("ad_group_name", sa.String(512), nullable=True),
        sa.Column("state", sa.String(50), nullable=True, server_default="ENABLED"),
        sa.Column("default_bid", sa.Float(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_ad_groups_campaign_id", "ad_groups", ["campaign_id"])
    op.create_index("ix_ad_groups_amazon_ad_group_id", "ad_groups", ["amazon_ad_group_id"])

    op.create_table(
        "keywords",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("campaign_id", UUID, sa.ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False),
        sa.Column("ad_group_id", UUID, sa.ForeignKey("ad_groups.id", ondelete="CASCADE"), nullable=True),
        sa.Column("amazon_keyword_id", sa.String(255), nullable=False),
        sa.Column("keyword_text", sa.Text(), nullable=True),
        sa.Column("match_type", sa.String(50), nullable=True),
        sa.Column("state", sa.String(50), nullable=True, server_default="ENABLED"),
        sa.Column("bid", sa.Float(), nullable=True),
        *_metrics(),
        sa.Column("orders", sa.Integer(), nullable=True, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_keywords_campaign_id", "keywords", ["campaign_id"])
    op.create_index("ix_keywords_amazon_keyword_id", "keywords", ["amazon_keyword_id"])
    op.create_index("ix_keywords_state", "keywords", ["state"])

    op.create_table(
        "search_terms",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("campaign_id", UUID, sa.ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False),
        sa.Column("ad_group_id", UUID, sa.ForeignKey("ad_groups.id", ondelete="CASCADE"), nullable=True),
        sa.Column("search_term", sa.Text(), nullable=False),
        sa.Column("date", sa.String(25), nullable=True),
        *_metrics(),
        sa.Column("conversions", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
    )
    op.create_index("ix_search_terms_campaign_id", "search_terms", ["campaign_id"])
    op.create_index("ix_search_terms_ad_group_id", "search_terms", ["ad_group_id"])
    op.create_index("ix_search_terms_search_term", "search_terms", ["search_term"])

    op.create_table(
        "optimization_rules",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("connection_id", UUID, sa.ForeignKey("amazon_connections.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("rule_type", sa.String(50), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column("conditions", postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column("actions", postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column("schedule", sa.String(20), nullable=True, server_default="DAILY"),
        sa.Column("custom_cron", sa.String(255), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("next_run_at", sa.DateTime(), nullable=True),
        sa.Column("last_run_at", sa.DateTime(), nullable=True),
        sa.Column("run_count", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("success_count", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("failure_count", sa.Integer(), nullable=True, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_optimization_rules_connection_id", "optimization_rules", ["connection_id"])
    op.create_index("ix_optimization_rules_user_id", "optimization_rules", ["user_id"])
    op.create_index("ix_optimization_rules_due", "optimization_rules", ["enabled", "next_run_at"])

    op.create_table(
        "optimization_execution_logs",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("rule_id", UUID, sa.ForeignKey("optimization_rules.id", ondelete="CASCADE"), nullable=False),
        sa.Column("connection_id", UUID, sa.ForeignKey("amazon_connections.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(20), nullable=True, server_default="RUNNING"),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("entities_affected", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("changes_made", postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("now()")),
    )
    op.create_index("ix_execution_logs_rule_id", "optimization_execution_logs", ["rule_id"])
    op.create_index("ix_execution_logs_status", "optimization_execution_logs", ["status"])
    op.create_index("ix_execution_logs_started_at", "optimization_execution_logs", ["started_at"])


def downgrade() -> None:
    for table in (
        "optimization_execution_logs",
        "optimization_rules",
        "search_terms",
        "keywords",
        "ad_groups",
        "campaigns",
        "amazon_connections",
    ):
        op.drop_table(table)
