"""Database models for the email marketing platform.

Every tenant-scoped table carries ``tenant_id``. Referenceable tables expose a
composite unique key ``(id, tenant_id)`` and every relationship between
tenant-scoped rows is a composite foreign key that pairs the foreign id with
the child's own ``tenant_id``. A row can therefore never point at a row that
belongs to another tenant, whatever the application code does.
"""
from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    ForeignKeyConstraint,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

SUBSCRIBER_STATUSES = ("active", "unsubscribed", "bounced", "complained")
SUPPRESSION_REASONS = ("hard_bounce", "complaint", "manual", "spam")
CAMPAIGN_STATUSES = ("draft", "scheduled", "sending", "sent", "paused", "failed")
DELIVERY_STATUSES = ("pending", "sent", "opened", "clicked", "bounced", "complained", "failed")
NOTIFICATION_TYPES = ("campaign_sent", "bounce", "complaint", "info")


def _in(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{value}'" for value in values)
    return f"{column} IN ({quoted})"


def _tenant_fk() -> ForeignKey:
    return ForeignKey("tenants.id", ondelete="CASCADE")


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(320), unique=True, nullable=False)
    name = Column(String(255), nullable=False)
    company_name = Column(String(255), nullable=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default="user")
    is_verified = Column(Boolean, nullable=False, default=False)
    ses_verified = Column(Boolean, nullable=False, default=False)
    has_paid = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (CheckConstraint(_in("role", ("user", "admin")), name="ck_tenants_role"),)

    lists = relationship("MailingList", back_populates="tenant", cascade="all, delete-orphan", passive_deletes=True)
    subscribers = relationship("Subscriber", back_populates="tenant", cascade="all, delete-orphan", passive_deletes=True)
    suppression_entries = relationship(
        "SuppressionEntry", back_populates="tenant", cascade="all, delete-orphan", passive_deletes=True
    )
    templates = relationship("Template", back_populates="tenant", cascade="all, delete-orphan", passive_deletes=True)
    campaigns = relationship("Campaign", back_populates="tenant", cascade="all, delete-orphan", passive_deletes=True)


class MailingList(Base):
    __tablename__ = "lists"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, _tenant_fk(), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    subscriber_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_lists_tenant_name"),
        UniqueConstraint("id", "tenant_id", name="uq_lists_id_tenant"),
    )

    tenant = relationship("Tenant", back_populates="lists")


class Subscriber(Base):
    __tablename__ = "subscribers"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, _tenant_fk(), nullable=False, index=True)
    email = Column(String(320), nullable=False, index=True)
    first_name = Column(String(120), nullable=True)
    last_name = Column(String(120), nullable=True)
    status = Column(String(50), nullable=False, default="active")
    custom_fields = Column("metadata", JSON, nullable=False, default=dict)
    consent_given = Column(Boolean, nullable=False, default=False)
    consent_at = Column(DateTime(timezone=True), nullable=True)
    confirmed = Column(Boolean, nullable=False, default=False)
    confirmation_token = Column(String(64), unique=True, nullable=True)
    confirmation_sent_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_subscribers_tenant_email"),
        UniqueConstraint("id", "tenant_id", name="uq_subscribers_id_tenant"),
        CheckConstraint(_in("status", SUBSCRIBER_STATUSES), name="ck_subscribers_status"),
    )

    tenant = relationship("Tenant", back_populates="subscribers")
    memberships = relationship("ListMembership", back_populates="subscriber", passive_deletes=True, viewonly=True)


class ListMembership(Base):
    __tablename__ = "list_memberships"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, _tenant_fk(), nullable=False, index=True)
    list_id = Column(Integer, nullable=False, index=True)
    subscriber_id = Column(Integer, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("list_id", "subscriber_id", name="uq_list_memberships_list_subscriber"),
        ForeignKeyConstraint(
            ["list_id", "tenant_id"],
            ["lists.id", "lists.tenant_id"],
            name="fk_list_memberships_list_tenant",
            ondelete="CASCADE",
        ),
        ForeignKeyConstraint(
            ["subscriber_id", "tenant_id"],
            ["subscribers.id", "subscribers.tenant_id"],
            name="fk_list_memberships_subscriber_tenant",
            ondelete="CASCADE",
        ),
    )

    subscriber = relationship("Subscriber", back_populates="memberships", viewonly=True)


class SuppressionEntry(Base):
    __tablename__ = "suppression_entries"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, _tenant_fk(), nullable=False, index=True)
    email = Column(String(320), nullable=True, index=True)
    domain = Column(String(255), nullable=True, index=True)
    reason = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("email IS NOT NULL OR domain IS NOT NULL", name="ck_suppression_email_or_domain"),
        CheckConstraint(_in("reason", SUPPRESSION_REASONS), name="ck_suppression_reason"),
    )

    tenant = relationship("Tenant", back_populates="suppression_entries")


class Template(Base):
    __tablename__ = "templates"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, _tenant_fk(), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    subject = Column(String(255), nullable=False)
    html_content = Column(Text, nullable=False)
    text_content = Column(Text, nullable=True)
    thumbnail_url = Column(String(1024), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_templates_tenant_name"),
        UniqueConstraint("id", "tenant_id", name="uq_templates_id_tenant"),
    )

    tenant = relationship("Tenant", back_populates="templates")


class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, _tenant_fk(), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    subject = Column(String(255), nullable=False)
    template_id = Column(Integer, nullable=True, index=True)
    from_name = Column(String(255), nullable=True)
    from_email = Column(String(320), nullable=True)
    reply_to = Column(String(320), nullable=True)
    status = Column(String(20), nullable=False, default="draft")
    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("id", "tenant_id", name="uq_campaigns_id_tenant"),
        # Template deletion clears template_id in the service layer first.
        ForeignKeyConstraint(
            ["template_id", "tenant_id"],
            ["templates.id", "templates.tenant_id"],
            name="fk_campaigns_template_tenant",
        ),
        CheckConstraint(_in("status", CAMPAIGN_STATUSES), name="ck_campaigns_status"),
    )

    tenant = relationship("Tenant", back_populates="campaigns")
    template = relationship(
        "Template",
        primaryjoin="and_(Campaign.template_id == Template.id, Campaign.tenant_id == Template.tenant_id)",
        foreign_keys="[Campaign.template_id, Campaign.tenant_id]",
        viewonly=True,
    )
    target_lists = relationship("CampaignList", back_populates="campaign", passive_deletes=True, viewonly=True)
    analytics = relationship("CampaignAnalytics", uselist=False, passive_deletes=True, viewonly=True)


class CampaignList(Base):
    __tablename__ = "campaign_lists"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, _tenant_fk(), nullable=False, index=True)
    campaign_id = Column(Integer, nullable=False, index=True)
    list_id = Column(Integer, nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("campaign_id", "list_id", name="uq_campaign_lists_campaign_list"),
        ForeignKeyConstraint(
            ["campaign_id", "tenant_id"],
            ["campaigns.id", "campaigns.tenant_id"],
            name="fk_campaign_lists_campaign_tenant",
            ondelete="CASCADE",
        ),
        ForeignKeyConstraint(
            ["list_id", "tenant_id"],
            ["lists.id", "lists.tenant_id"],
            name="fk_campaign_lists_list_tenant",
            ondelete="CASCADE",
        ),
    )

    campaign = relationship("Campaign", back_populates="target_lists", viewonly=True)


class DeliveryRecord(Base):
    __tablename__ = "delivery_records"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, _tenant_fk(), nullable=False, index=True)
    campaign_id = Column(Integer, nullable=False, index=True)
    subscriber_id = Column(Integer, nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending")
    message_id = Column(String(255), nullable=True, index=True)
    bounce_type = Column(String(20), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    opened_at = Column(DateTime(timezone=True), nullable=True)
    clicked_at = Column(DateTime(timezone=True), nullable=True)
    bounced_at = Column(DateTime(timezone=True), nullable=True)
    complained_at = Column(DateTime(timezone=True), nullable=True)
    unsubscribed_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "campaign_id", "subscriber_id", "tenant_id", name="uq_delivery_records_campaign_subscriber_tenant"
        ),
        ForeignKeyConstraint(
            ["campaign_id", "tenant_id"],
            ["campaigns.id", "campaigns.tenant_id"],
            name="fk_delivery_records_campaign_tenant",
            ondelete="CASCADE",
        ),
        ForeignKeyConstraint(
            ["subscriber_id", "tenant_id"],
            ["subscribers.id", "subscribers.tenant_id"],
            name="fk_delivery_records_subscriber_tenant",
            ondelete="CASCADE",
        ),
        CheckConstraint(_in("status", DELIVERY_STATUSES), name="ck_delivery_records_status"),
        Index("ix_delivery_records_campaign_status", "campaign_id", "status"),
    )

    campaign = relationship(
        "Campaign",
        primaryjoin="and_(DeliveryRecord.campaign_id == Campaign.id, DeliveryRecord.tenant_id == Campaign.tenant_id)",
        foreign_keys="[DeliveryRecord.campaign_id, DeliveryRecord.tenant_id]",
        viewonly=True,
    )
    subscriber = relationship(
        "Subscriber",
        primaryjoin="and_(DeliveryRecord.subscriber_id == Subscriber.id, DeliveryRecord.tenant_id == Subscriber.tenant_id)",
        foreign_keys="[DeliveryRecord.subscriber_id, DeliveryRecord.tenant_id]",
        viewonly=True,
    )


def _delivery_fk(table: str) -> ForeignKeyConstraint:
    return ForeignKeyConstraint(
        ["campaign_id", "subscriber_id", "tenant_id"],
        ["delivery_records.campaign_id", "delivery_records.subscriber_id", "delivery_records.tenant_id"],
        name=f"fk_{table}_delivery_record",
        ondelete="CASCADE",
    )


class LinkClickEvent(Base):
    __tablename__ = "link_clicks"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, _tenant_fk(), nullable=False, index=True)
    campaign_id = Column(Integer, nullable=False, index=True)
    subscriber_id = Column(Integer, nullable=False, index=True)
    url = Column(Text, nullable=False)
    clicked_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (_delivery_fk("link_clicks"),)


class WebViewEvent(Base):
    __tablename__ = "web_views"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, _tenant_fk(), nullable=False, index=True)
    campaign_id = Column(Integer, nullable=False, index=True)
    subscriber_id = Column(Integer, nullable=False, index=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    viewed_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (_delivery_fk("web_views"),)


class CampaignAnalytics(Base):
    __tablename__ = "campaign_analytics"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, _tenant_fk(), nullable=False, index=True)
    campaign_id = Column(Integer, nullable=False, unique=True)
    total_subscribers = Column(Integer, nullable=False, default=0)
    sent = Column(Integer, nullable=False, default=0)
    delivered = Column(Integer, nullable=False, default=0)
    opened = Column(Integer, nullable=False, default=0)
    clicked = Column(Integer, nullable=False, default=0)
    bounced = Column(Integer, nullable=False, default=0)
    complained = Column(Integer, nullable=False, default=0)
    unsubscribed = Column(Integer, nullable=False, default=0)
    failed = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        ForeignKeyConstraint(
            ["campaign_id", "tenant_id"],
            ["campaigns.id", "campaigns.tenant_id"],
            name="fk_campaign_analytics_campaign_tenant",
            ondelete="CASCADE",
        ),
    )


class AutomationRule(Base):
    __tablename__ = "automation_rules"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, _tenant_fk(), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    trigger_type = Column(String(50), nullable=False, index=True)
    trigger_conditions = Column(JSON, nullable=False, default=dict)
    action_type = Column(String(50), nullable=False)
    action_data = Column(JSON, nullable=False, default=dict)
    action_list_id = Column(Integer, nullable=True)
    action_template_id = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("id", "tenant_id", name="uq_automation_rules_id_tenant"),
        ForeignKeyConstraint(
            ["action_list_id", "tenant_id"],
            ["lists.id", "lists.tenant_id"],
            name="fk_automation_rules_list_tenant",
            ondelete="CASCADE",
        ),
        ForeignKeyConstraint(
            ["action_template_id", "tenant_id"],
            ["templates.id", "templates.tenant_id"],
            name="fk_automation_rules_template_tenant",
            ondelete="CASCADE",
        ),
    )


class AutomationRun(Base):
    __tablename__ = "automation_runs"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, _tenant_fk(), nullable=False, index=True)
    rule_id = Column(Integer, nullable=False, index=True)
    event_key = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("rule_id", "event_key", name="uq_automation_runs_rule_event"),
        ForeignKeyConstraint(
            ["rule_id", "tenant_id"],
            ["automation_rules.id", "automation_rules.tenant_id"],
            name="fk_automation_runs_rule_tenant",
            ondelete="CASCADE",
        ),
    )


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, _tenant_fk(), nullable=False, index=True)
    type = Column(String(20), nullable=False)
    message = Column(Text, nullable=False)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (CheckConstraint(_in("type", NOTIFICATION_TYPES), name="ck_notifications_type"),)
