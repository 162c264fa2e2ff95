"""initial_schema

Users, allowed domains, detected clones and their logs, plans and
subscriptions, clone actions and the script id lookup table. Seeds the plans.

Revision ID: a1f0c3e2d4b5
Revises:
Create Date: 2026-10-17 10:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

from falconx.schemas.plan import PLAN_CONFIGS

# revision identifiers, used by Alembic.
revision: str = "a1f0c3e2d4b5"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _ts(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def _timestamps() -> list[sa.Column]:
    return [_ts("created_at"), _ts("updated_at")]


def _user_fk() -> sa.Column:
    return sa.Column(
        "user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("full_name", sa.String(255)),
        *_timestamps(),
    )

    op.create_table(
        "allowed_domains",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _user_fk(),
        sa.Column("domain", sa.String(253), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "domain", name="uq_allowed_domains_user_domain"),
    )
    op.create_index("ix_allowed_domains_user_id", "allowed_domains", ["user_id"])

    op.create_table(
        "detected_clones",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _user_fk(),
        sa.Column("clone_domain", sa.String(253), nullable=False),
        sa.Column("original_domain", sa.String(253), nullable=False),
        sa.Column("detection_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("first_detected", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("slugs_data", JSONType),
        *_timestamps(),
    )
    op.create_index("ix_detected_clones_user_id", "detected_clones", ["user_id"])
    op.create_index(
        "uq_detected_clones_active_user_domain",
        "detected_clones",
        ["user_id", "clone_domain"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active"),
    )

    op.create_table(
        "detection_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _user_fk(),
        sa.Column(
            "clone_id", sa.Uuid(), sa.ForeignKey("detected_clones.id", ondelete="SET NULL")
        ),
        sa.Column("ip_address", sa.String(64)),
        sa.Column("user_agent", sa.Text()),
        sa.Column("referrer", sa.Text()),
        sa.Column("page_url", sa.Text()),
        _ts("timestamp"),
    )
    op.create_index("ix_detection_logs_user_id", "detection_logs", ["user_id"])
    op.create_index("ix_detection_logs_clone_id", "detection_logs", ["clone_id"])
    op.create_index("ix_detection_logs_timestamp", "detection_logs", ["timestamp"])

    plans = op.create_table(
        "plans",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("slug", sa.String(32), nullable=False, unique=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("clone_limit", sa.Integer(), nullable=False),
        sa.Column("domain_limit", sa.Integer(), nullable=False),
        sa.Column("extra_clone_price", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("features", JSONType),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    op.create_table(
        "user_subscriptions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _user_fk(),
        sa.Column("plan_id", sa.Integer(), sa.ForeignKey("plans.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("current_clone_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("clone_limit", sa.Integer(), nullable=False),
        sa.Column("extra_clones_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reset_date", sa.DateTime(timezone=True), nullable=False),
        _ts("started_at"),
        *_timestamps(),
    )
    op.create_index("ix_user_subscriptions_user_id", "user_subscriptions", ["user_id"])
    op.create_index(
        "uq_user_subscriptions_active_user",
        "user_subscriptions",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
        sqlite_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "clone_actions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _user_fk(),
        sa.Column(
            "clone_id", sa.Uuid(), sa.ForeignKey("detected_clones.id", ondelete="CASCADE")
        ),
        sa.Column("action_type", sa.String(32), nullable=False),
        sa.Column("redirect_url", sa.Text()),
        sa.Column("custom_message", sa.Text()),
        sa.Column("redirect_percentage", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("trigger_params", JSONType),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint(
            "redirect_percentage BETWEEN 0 AND 100", name="ck_clone_actions_percentage"
        ),
    )
    op.create_index("ix_clone_actions_user_id", "clone_actions", ["user_id"])

    op.create_table(
        "generated_scripts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        _user_fk(),
        sa.Column("script_id", sa.String(15), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_generated_scripts_user_id", "generated_scripts", ["user_id"])
    op.create_index(
        "ix_generated_scripts_script_id", "generated_scripts", ["script_id"], unique=True
    )

    op.bulk_insert(
        plans,
        [
            {
                "slug": config["slug"],
                "name": config["name"],
                "price": config["price"],
                "clone_limit": config["clone_limit"],
                "domain_limit": config["domain_limit"],
                "extra_clone_price": config["extra_clone_price"],
                "features": config["features"],
                "is_active": True,
            }
            for config in PLAN_CONFIGS.values()
        ],
    )


def downgrade() -> None:
    op.drop_table("generated_scripts")
    op.drop_table("clone_actions")
    op.drop_table("user_subscriptions")
    op.drop_table("plans")
    op.drop_table("detection_logs")
    op.drop_table("detected_clones")
    op.drop_table("allowed_domains")
    op.drop_table("users")
