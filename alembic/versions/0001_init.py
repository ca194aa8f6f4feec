"""init

Revision ID: 0001_init
Revises:
Create Date: 2025-01-01 00:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None

NOW = sa.text("CURRENT_TIMESTAMP")


def _tenant_id():
    return sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)


def _timestamp(name: str):
    return sa.Column(name, sa.DateTime(timezone=True), server_default=NOW)


def _stamp(name: str):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=True)


def _composite_fk(columns, table, name, ondelete="CASCADE"):
    return sa.ForeignKeyConstraint(
        [columns, "tenant_id"], [f"{table}.id", f"{table}.tenant_id"], name=name, ondelete=ondelete
    )


def upgrade():
    op.create_table(
        "tenants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("company_name", sa.String(length=255), nullable=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="user"),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("ses_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("has_paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
        sa.CheckConstraint("role IN ('user', 'admin')", name="ck_tenants_role"),
    )
    op.create_index("ix_tenants_id", "tenants", ["id"], unique=False)

    op.create_table(
        "lists",
        sa.Column("id", sa.Integer(), nullable=False),
        _tenant_id(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("subscriber_count", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "name", name="uq_lists_tenant_name"),
        sa.UniqueConstraint("id", "tenant_id", name="uq_lists_id_tenant"),
    )
    op.create_index("ix_lists_tenant_id", "lists", ["tenant_id"], unique=False)

    op.create_table(
        "subscribers",
        sa.Column("id", sa.Integer(), nullable=False),
        _tenant_id(),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("first_name", sa.String(length=120), nullable=True),
        sa.Column("last_name", sa.String(length=120), nullable=True),
        sa.Column("status", sa.String(length=50), nullable=False, server_default="active"),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("consent_given", sa.Boolean(), nullable=False, server_default=sa.false()),
        _stamp("consent_at"),
        sa.Column("confirmed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("confirmation_token", sa.String(length=64), nullable=True),
        _stamp("confirmation_sent_at"),
        _stamp("confirmed_at"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("confirmation_token"),
        sa.UniqueConstraint("tenant_id", "email", name="uq_subscribers_tenant_email"),
        sa.UniqueConstraint("id", "tenant_id", name="uq_subscribers_id_tenant"),
        sa.CheckConstraint(
            "status IN ('active', 'unsubscribed', 'bounced', 'complained')", name="ck_subscribers_status"
        ),
    )
    op.create_index("ix_subscribers_tenant_id", "subscribers", ["tenant_id"], unique=False)
    op.create_index("ix_subscribers_email", "subscribers", ["email"], unique=False)

    op.create_table(
        "list_memberships",
        sa.Column("id", sa.Integer(), nullable=False),
        _tenant_id(),
        sa.Column("list_id", sa.Integer(), nullable=False),
        sa.Column("subscriber_id", sa.Integer(), nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("list_id", "subscriber_id", name="uq_list_memberships_list_subscriber"),
        _composite_fk("list_id", "lists", "fk_list_memberships_list_tenant"),
        _composite_fk("subscriber_id", "subscribers", "fk_list_memberships_subscriber_tenant"),
    )
    op.create_index("ix_list_memberships_tenant_id", "list_memberships", ["tenant_id"], unique=False)
    op.create_index("ix_list_memberships_list_id", "list_memberships", ["list_id"], unique=False)
    op.create_index("ix_list_memberships_subscriber_id", "list_memberships", ["subscriber_id"], unique=False)

    op.create_table(
        "suppression_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        _tenant_id(),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("domain", sa.String(length=255), nullable=True),
        sa.Column("reason", sa.String(length=20), nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("email IS NOT NULL OR domain IS NOT NULL", name="ck_suppression_email_or_domain"),
        sa.CheckConstraint(
            "reason IN ('hard_bounce', 'complaint', 'manual', 'spam')", name="ck_suppression_reason"
        ),
    )
    op.create_index("ix_suppression_entries_tenant_id", "suppression_entries", ["tenant_id"], unique=False)
    op.create_index("ix_suppression_entries_email", "suppression_entries", ["email"], unique=False)
    op.create_index("ix_suppression_entries_domain", "suppression_entries", ["domain"], unique=False)

    op.create_table(
        "templates",
        sa.Column("id", sa.Integer(), nullable=False),
        _tenant_id(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("subject", sa.String(length=255), nullable=False),
        sa.Column("html_content", sa.Text(), nullable=False),
        sa.Column("text_content", sa.Text(), nullable=True),
        sa.Column("thumbnail_url", sa.String(length=1024), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "name", name="uq_templates_tenant_name"),
        sa.UniqueConstraint("id", "tenant_id", name="uq_templates_id_tenant"),
    )
    op.create_index("ix_templates_tenant_id", "templates", ["tenant_id"], unique=False)

    op.create_table(
        "campaigns",
        sa.Column("id", sa.Integer(), nullable=False),
        _tenant_id(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("subject", sa.String(length=255), nullable=False),
        sa.Column("template_id", sa.Integer(), nullable=True),
        sa.Column("from_name", sa.String(length=255), nullable=True),
        sa.Column("from_email", sa.String(length=320), nullable=True),
        sa.Column("reply_to", sa.String(length=320), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        _stamp("scheduled_at"),
        _stamp("sent_at"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("id", "tenant_id", name="uq_campaigns_id_tenant"),
        sa.ForeignKeyConstraint(
            ["template_id", "tenant_id"],
            ["templates.id", "templates.tenant_id"],
            name="fk_campaigns_template_tenant",
        ),
        sa.CheckConstraint(
            "status IN ('draft', 'scheduled', 'sending', 'sent', 'paused', 'failed')", name="ck_campaigns_status"
        ),
    )
    op.create_index("ix_campaigns_tenant_id", "campaigns", ["tenant_id"], unique=False)
    op.create_index("ix_campaigns_template_id", "campaigns", ["template_id"], unique=False)

    op.create_table(
        "campaign_lists",
        sa.Column("id", sa.Integer(), nullable=False),
        _tenant_id(),
        sa.Column("campaign_id", sa.Integer(), nullable=False),
        sa.Column("list_id", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("campaign_id", "list_id", name="uq_campaign_lists_campaign_list"),
        _composite_fk("campaign_id", "campaigns", "fk_campaign_lists_campaign_tenant"),
        _composite_fk("list_id", "lists", "fk_campaign_lists_list_tenant"),
    )
    op.create_index("ix_campaign_lists_tenant_id", "campaign_lists", ["tenant_id"], unique=False)
    op.create_index("ix_campaign_lists_campaign_id", "campaign_lists", ["campaign_id"], unique=False)
    op.create_index("ix_campaign_lists_list_id", "campaign_lists", ["list_id"], unique=False)

    op.create_table(
        "delivery_records",
        sa.Column("id", sa.Integer(), nullable=False),
        _tenant_id(),
        sa.Column("campaign_id", sa.Integer(), nullable=False),
        sa.Column("subscriber_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("message_id", sa.String(length=255), nullable=True),
        sa.Column("bounce_type", sa.String(length=20), nullable=True),
        _stamp("sent_at"),
        _stamp("delivered_at"),
        _stamp("opened_at"),
        _stamp("clicked_at"),
        _stamp("bounced_at"),
        _stamp("complained_at"),
        _stamp("unsubscribed_at"),
        _stamp("failed_at"),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "campaign_id", "subscriber_id", "tenant_id", name="uq_delivery_records_campaign_subscriber_tenant"
        ),
        _composite_fk("campaign_id", "campaigns", "fk_delivery_records_campaign_tenant"),
        _composite_fk("subscriber_id", "subscribers", "fk_delivery_records_subscriber_tenant"),
        sa.CheckConstraint(
            "status IN ('pending', 'sent', 'opened', 'clicked', 'bounced', 'complained', 'failed')",
            name="ck_delivery_records_status",
        ),
    )
    op.create_index("ix_delivery_records_tenant_id", "delivery_records", ["tenant_id"], unique=False)
    op.create_index("ix_delivery_records_campaign_id", "delivery_records", ["campaign_id"], unique=False)
    op.create_index("ix_delivery_records_subscriber_id", "delivery_records", ["subscriber_id"], unique=False)
    op.create_index("ix_delivery_records_message_id", "delivery_records", ["message_id"], unique=False)
    op.create_index("ix_delivery_records_campaign_status", "delivery_records", ["campaign_id", "status"], unique=False)

    for table, stamp in (("link_clicks", "clicked_at"), ("web_views", "viewed_at")):
        extra = (
            [sa.Column("url", sa.Text(), nullable=False)]
            if table == "link_clicks"
            else [
                sa.Column("ip_address", sa.String(length=64), nullable=True),
                sa.Column("user_agent", sa.String(length=512), nullable=True),
            ]
        )
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), nullable=False),
            _tenant_id(),
            sa.Column("campaign_id", sa.Integer(), nullable=False),
            sa.Column("subscriber_id", sa.Integer(), nullable=False),
            *extra,
            _timestamp(stamp),
            sa.PrimaryKeyConstraint("id"),
            sa.ForeignKeyConstraint(
                ["campaign_id", "subscriber_id", "tenant_id"],
                ["delivery_records.campaign_id", "delivery_records.subscriber_id", "delivery_records.tenant_id"],
                name=f"fk_{table}_delivery_record",
                ondelete="CASCADE",
            ),
        )
        op.create_index(f"ix_{table}_tenant_id", table, ["tenant_id"], unique=False)
        op.create_index(f"ix_{table}_campaign_id", table, ["campaign_id"], unique=False)
        op.create_index(f"ix_{table}_subscriber_id", table, ["subscriber_id"], unique=False)

    op.create_table(
        "campaign_analytics",
        sa.Column("id", sa.Integer(), nullable=False),
        _tenant_id(),
        sa.Column("campaign_id", sa.Integer(), nullable=False),
        *[
            sa.Column(counter, sa.Integer(), nullable=False, server_default="0")
            for counter in (
                "total_subscribers",
                "sent",
                "delivered",
                "opened",
                "clicked",
                "bounced",
                "complained",
                "unsubscribed",
                "failed",
            )
        ],
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("campaign_id"),
        _composite_fk("campaign_id", "campaigns", "fk_campaign_analytics_campaign_tenant"),
    )
    op.create_index("ix_campaign_analytics_tenant_id", "campaign_analytics", ["tenant_id"], unique=False)

    op.create_table(
        "automation_rules",
        sa.Column("id", sa.Integer(), nullable=False),
        _tenant_id(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("trigger_type", sa.String(length=50), nullable=False),
        sa.Column("trigger_conditions", sa.JSON(), nullable=False),
        sa.Column("action_type", sa.String(length=50), nullable=False),
        sa.Column("action_data", sa.JSON(), nullable=False),
        sa.Column("action_list_id", sa.Integer(), nullable=True),
        sa.Column("action_template_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("id", "tenant_id", name="uq_automation_rules_id_tenant"),
        _composite_fk("action_list_id", "lists", "fk_automation_rules_list_tenant"),
        _composite_fk("action_template_id", "templates", "fk_automation_rules_template_tenant"),
    )
    op.create_index("ix_automation_rules_tenant_id", "automation_rules", ["tenant_id"], unique=False)
    op.create_index("ix_automation_rules_trigger_type", "automation_rules", ["trigger_type"], unique=False)

    op.create_table(
        "automation_runs",
        sa.Column("id", sa.Integer(), nullable=False),
        _tenant_id(),
        sa.Column("rule_id", sa.Integer(), nullable=False),
        sa.Column("event_key", sa.String(length=255), nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("rule_id", "event_key", name="uq_automation_runs_rule_event"),
        _composite_fk("rule_id", "automation_rules", "fk_automation_runs_rule_tenant"),
    )
    op.create_index("ix_automation_runs_tenant_id", "automation_runs", ["tenant_id"], unique=False)
    op.create_index("ix_automation_runs_rule_id", "automation_runs", ["rule_id"], unique=False)

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), nullable=False),
        _tenant_id(),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "type IN ('campaign_sent', 'bounce', 'complaint', 'info')", name="ck_notifications_type"
        ),
    )
    op.create_index("ix_notifications_tenant_id", "notifications", ["tenant_id"], unique=False)


def downgrade():
    for table in (
        "notifications",
        "automation_runs",
        "automation_rules",
        "campaign_analytics",
        "web_views",
        "link_clicks",
        "delivery_records",
        "campaign_lists",
        "campaigns",
        "templates",
        "suppression_entries",
        "list_memberships",
        "subscribers",
        "lists",
    ):
        op.drop_table(table)
    op.drop_index("ix_tenants_id", table_name="tenants")
    op.drop_table("tenants")
