# app/db/models.py
import sqlalchemy as sa
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import relationship
import uuid

Base = declarative_base()


def gen_uuid():
    # return a Python uuid.UUID object
    return uuid.uuid4()


def gen_embed_id():
    # public identifier handed to third-party pages
    return str(uuid.uuid4())


WIDGET_STATUSES = ("active", "draft", "archived")
SENDER_TYPES = ("user", "ai")


class Tenant(Base):
    __tablename__ = "tenants"
    id = sa.Column(postgresql.UUID(as_uuid=True),
                   primary_key=True, default=gen_uuid)
    name = sa.Column(sa.String, nullable=False)
    email = sa.Column(sa.String, nullable=True, index=True)
    is_active = sa.Column(sa.Boolean, nullable=False, default=True)
    created_at = sa.Column(sa.DateTime(timezone=True),
                           server_default=func.now())
    updated_at = sa.Column(sa.DateTime(timezone=True),
                           server_default=func.now(), onupdate=func.now())


class ApiKey(Base):
    __tablename__ = "tenant_api_keys"

    id = sa.Column(postgresql.UUID(as_uuid=True),
                   primary_key=True, default=gen_uuid)
    tenant_id = sa.Column(postgresql.UUID(as_uuid=True), sa.ForeignKey(
        "tenants.id", ondelete="CASCADE"), nullable=False, index=True)

    name = sa.Column(sa.String, nullable=True)

    api_key_hash = sa.Column(sa.String, nullable=False, unique=True)
    # First characters of the raw key, used to find the row before verifying the hash
    key_prefix = sa.Column(sa.String, nullable=False, index=True)

    is_active = sa.Column(sa.Boolean, nullable=False, default=True)
    last_used_at = sa.Column(sa.DateTime(timezone=True), nullable=True)

    created_at = sa.Column(sa.DateTime(timezone=True),
                           server_default=func.now())

    tenant = relationship("Tenant")


class ProviderConfiguration(Base):
    __tablename__ = "ai_providers"
    __table_args__ = (
        sa.UniqueConstraint("tenant_id", "provider_type",
                            name="uq_ai_providers_tenant_type"),
    )

    id = sa.Column(postgresql.UUID(as_uuid=True),
                   primary_key=True, default=gen_uuid)
    tenant_id = sa.Column(postgresql.UUID(as_uuid=True), sa.ForeignKey(
        "tenants.id", ondelete="CASCADE"), nullable=False, index=True)

    provider_type = sa.Column(sa.String, nullable=False)
    name = sa.Column(sa.String, nullable=False)
    # Fernet ciphertext, never the raw credential
    api_key = sa.Column(sa.Text, nullable=True)
    model = sa.Column(sa.String, nullable=False)
    temperature = sa.Column(sa.Float, nullable=False, default=0.7)
    max_tokens = sa.Column(sa.Integer, nullable=False, default=2048)
    system_prompt = sa.Column(sa.Text, nullable=True)
    advanced_settings = sa.Column(sa.JSON, nullable=False, default=dict)
    is_active = sa.Column(sa.Boolean, nullable=False, default=True)

    created_at = sa.Column(sa.DateTime(timezone=True),
                           server_default=func.now())
    updated_at = sa.Column(sa.DateTime(timezone=True),
                           server_default=func.now(), onupdate=func.now())

    widgets = relationship("Widget", back_populates="provider_configuration")


class Widget(Base):
    __tablename__ = "widgets"

    id = sa.Column(postgresql.UUID(as_uuid=True),
                   primary_key=True, default=gen_uuid)
    tenant_id = sa.Column(postgresql.UUID(as_uuid=True), sa.ForeignKey(
        "tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    provider_configuration_id = sa.Column(postgresql.UUID(as_uuid=True), sa.ForeignKey(
        "ai_providers.id", ondelete="SET NULL"), nullable=True, index=True)

    name = sa.Column(sa.String, nullable=False)
    description = sa.Column(sa.Text, nullable=True)

    # Free-form JSON groups consumed by the embed loader; stored verbatim
    design = sa.Column(sa.JSON, nullable=False, default=dict)
    behavior = sa.Column(sa.JSON, nullable=False, default=dict)
    placement = sa.Column(sa.JSON, nullable=False, default=dict)

    status = sa.Column(sa.String, nullable=False, default="active", index=True)
    embed_id = sa.Column(sa.String, nullable=False, unique=True,
                         index=True, default=gen_embed_id)

    created_at = sa.Column(sa.DateTime(timezone=True),
                           server_default=func.now())
    updated_at = sa.Column(sa.DateTime(timezone=True),
                           server_default=func.now(), onupdate=func.now())

    provider_configuration = relationship(
        "ProviderConfiguration", back_populates="widgets")
    messages = relationship("Message", back_populates="widget",
                            cascade="all, delete-orphan", passive_deletes=True)


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        sa.Index("ix_messages_session_created", "session_id", "created_at"),
        sa.Index("ix_messages_widget_created", "widget_id", "created_at"),
    )

    id = sa.Column(postgresql.UUID(as_uuid=True),
                   primary_key=True, default=gen_uuid)
    widget_id = sa.Column(postgresql.UUID(as_uuid=True), sa.ForeignKey(
        "widgets.id", ondelete="CASCADE"), nullable=False)
    session_id = sa.Column(sa.String, nullable=False)
    sender_type = sa.Column(sa.String, nullable=False)

    # user turn
    message = sa.Column(sa.Text, nullable=True)
    user_data = sa.Column(sa.JSON, nullable=True)
    ip_address = sa.Column(sa.String, nullable=True)
    user_agent = sa.Column(sa.Text, nullable=True)

    # ai turn
    response = sa.Column(sa.Text, nullable=True)
    response_time_ms = sa.Column(sa.Float, nullable=True)
    token_usage = sa.Column(sa.JSON, nullable=True)
    model_used = sa.Column(sa.String, nullable=True)

    # Set by the writer, not the server: rows from one request share a transaction
    # and now() would give the pair identical timestamps.
    created_at = sa.Column(sa.DateTime(timezone=True), nullable=False)

    widget = relationship("Widget", back_populates="messages")


class AIModel(Base):
    __tablename__ = "ai_models"
    __table_args__ = (
        sa.UniqueConstraint("tenant_id", "model_id", "provider_type",
                            name="uq_ai_models_tenant_model_type"),
    )

    id = sa.Column(postgresql.UUID(as_uuid=True),
                   primary_key=True, default=gen_uuid)
    tenant_id = sa.Column(postgresql.UUID(as_uuid=True), sa.ForeignKey(
        "tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    provider_configuration_id = sa.Column(postgresql.UUID(as_uuid=True), sa.ForeignKey(
        "ai_providers.id", ondelete="SET NULL"), nullable=True, index=True)

    name = sa.Column(sa.String, nullable=False)
    # identifier sent to the vendor, e.g. "gpt-4o"
    model_id = sa.Column(sa.String, nullable=False)
    provider_type = sa.Column(sa.String, nullable=False)
    description = sa.Column(sa.Text, nullable=True)
    temperature = sa.Column(sa.Float, nullable=False, default=0.7)
    max_tokens = sa.Column(sa.Integer, nullable=False, default=1000)
    system_prompt = sa.Column(sa.Text, nullable=True)

    capabilities = sa.Column(sa.JSON, nullable=False, default=list)
    configuration = sa.Column(sa.JSON, nullable=False, default=dict)
    # usage_count, total_response_time, avg_response_time, total_tokens, last_used
    performance_metrics = sa.Column(sa.JSON, nullable=False, default=dict)

    is_active = sa.Column(sa.Boolean, nullable=False, default=True)
    is_featured = sa.Column(sa.Boolean, nullable=False, default=False)

    created_at = sa.Column(sa.DateTime(timezone=True),
                           server_default=func.now())
    updated_at = sa.Column(sa.DateTime(timezone=True),
                           server_default=func.now(), onupdate=func.now())

    provider_configuration = relationship("ProviderConfiguration")


class SystemSetting(Base):
    __tablename__ = "system_settings"

    id = sa.Column(postgresql.UUID(as_uuid=True),
                   primary_key=True, default=gen_uuid)
    key = sa.Column(sa.String, nullable=False, unique=True, index=True)
    value = sa.Column(sa.JSON, nullable=True)
    # string | integer | float | boolean | json | array
    type = sa.Column(sa.String, nullable=False, default="string")
    description = sa.Column(sa.Text, nullable=True)
    category = sa.Column(sa.String, nullable=False, default="general", index=True)
    is_public = sa.Column(sa.Boolean, nullable=False, default=False)

    created_at = sa.Column(sa.DateTime(timezone=True),
                           server_default=func.now())
    updated_at = sa.Column(sa.DateTime(timezone=True),
                           server_default=func.now(), onupdate=func.now())
