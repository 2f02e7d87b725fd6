from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leadcapture.constants.conversation import ConversationState
from leadcapture.constants.statuses import SOURCE_MISSED_CALL
from leadcapture.db.base import Base


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    business_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    owner_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    owner_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # Gets lead summaries

    # WhatsApp connection (Cloud API)
    whatsapp_phone_number_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    whatsapp_access_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    whatsapp_status: Mapped[str] = mapped_column(String(20), default="inactive")  # active, inactive

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    leads: Mapped[list["Lead"]] = relationship("Lead", back_populates="tenant")


class Lead(Base):
    __tablename__ = "leads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, ForeignKey("tenants.id"), index=True)

    # Source tracking
    source: Mapped[str] = mapped_column(String(20), default=SOURCE_MISSED_CALL)
    source_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)  # e.g. call id

    # Customer info (accumulated slots)
    customer_phone: Mapped[str] = mapped_column(String(20), index=True)
    customer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    need: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    contact_preference: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(32), default="new", index=True)

    # Lifecycle timestamps
    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    qualified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    tenant: Mapped["Tenant"] = relationship("Tenant", back_populates="leads")
    conversation: Mapped[Optional["LeadConversation"]] = relationship(
        "LeadConversation", back_populates="lead", uselist=False
    )


class LeadConversation(Base):
    """Chatbot conversation state, one per lead."""

    __tablename__ = "lead_conversations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lead_id: Mapped[int] = mapped_column(Integer, ForeignKey("leads.id"), unique=True, index=True)

    state: Mapped[ConversationState] = mapped_column(
        Enum(
            ConversationState,
            native_enum=False,
            length=32,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        default=ConversationState.AWAITING_RESPONSE,
    )

    # Reminder tracking - each set at most once
    reminder1_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reminder2_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    last_extraction_confidence: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    lead: Mapped["Lead"] = relationship("Lead", back_populates="conversation")
    messages: Mapped[list["ConversationMessage"]] = relationship(
        "ConversationMessage",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="ConversationMessage.id",
    )


class ConversationMessage(Base):
    """Inbound/outbound message log - supplies prior messages to the extractor."""

    __tablename__ = "conversation_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lead_conversation_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("lead_conversations.id"), index=True
    )
    direction: Mapped[str] = mapped_column(String(10))  # inbound, outbound
    body: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    conversation: Mapped["LeadConversation"] = relationship(
        "LeadConversation", back_populates="messages"
    )


class ScheduledJob(Base):
    """
    Durable delayed job. job_key is the dedupe key: a second schedule with the
    same key is rejected by the unique constraint.
    """

    __tablename__ = "scheduled_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_key: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    kind: Mapped[str] = mapped_column(String(50), index=True)
    payload: Mapped[dict] = mapped_column(JSON)
    status: Mapped[str] = mapped_column(String(20), default="PENDING", index=True)
    run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=5)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class ActivityEvent(Base):
    """Tenant-facing activity feed entry."""

    __tablename__ = "activity_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, ForeignKey("tenants.id"), index=True)
    event_type: Mapped[str] = mapped_column(String(100), index=True)
    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source: Mapped[str] = mapped_column(String(100))
    source_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    event_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )


class ProcessedMessage(Base):
    """Idempotency table - stores processed inbound message IDs to prevent duplicates."""

    __tablename__ = "processed_messages"
    __table_args__ = (UniqueConstraint("provider", "message_id", name="uq_processed_provider_message"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    provider: Mapped[str] = mapped_column(String(20), default="whatsapp")
    message_id: Mapped[str] = mapped_column(String(255), index=True)
    event_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    lead_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("leads.id"), nullable=True, index=True
    )
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class SystemEvent(Base):
    """Structured log of key system events and failures."""

    __tablename__ = "system_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )
    level: Mapped[str] = mapped_column(String(10), index=True)
    event_type: Mapped[str] = mapped_column(String(100), index=True)
    lead_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("leads.id"), nullable=True, index=True
    )
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
