from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import String, Text, Boolean, Integer, BigInteger, DateTime, JSON, Enum, Index, or_
from sqlalchemy.orm import Mapped, Query, Session, mapped_column
from .db import Base
from .templates import html_variables, render_string
from shared.clock import as_utc, utcnow

EMAIL_TYPES = (
    "order_confirmation",
    "order_shipped",
    "order_delivered",
    "order_cancelled",
    "password_reset",
    "welcome",
    "general",
)
EMAIL_STATUSES = ("pending", "sending", "sent", "failed", "bounced")

MAX_RETRIES = 5
RETRY_BASE_MINUTES = 5
RETRY_FACTOR = 3


class Email(Base):
    __tablename__ = "emails"
    __table_args__ = (
        Index("ix_emails_reference", "reference_type", "reference_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    recipient_email: Mapped[str] = mapped_column(String(255), index=True)
    recipient_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    subject: Mapped[str] = mapped_column(String(255))
    body_html: Mapped[str | None] = mapped_column(Text, nullable=True)
    body_text: Mapped[str | None] = mapped_column(Text, nullable=True)

    type: Mapped[str] = mapped_column(
        Enum(*EMAIL_TYPES, name="email_type", native_enum=False), default="general", index=True
    )

    # Polymorphic pointer, e.g. ("order", 42)
    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    status: Mapped[str] = mapped_column(
        Enum(*EMAIL_STATUSES, name="email_status", native_enum=False), default="pending", index=True
    )

    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    bounced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    metadata_: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSON, nullable=True)
    email_provider_response: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def is_pending(self) -> bool:
        return self.status == "pending"

    def is_sending(self) -> bool:
        return self.status == "sending"

    def is_sent(self) -> bool:
        return self.status == "sent"

    def is_failed(self) -> bool:
        return self.status == "failed"

    def is_bounced(self) -> bool:
        return self.status == "bounced"

    def mark_sending(self) -> None:
        self.status = "sending"

    def mark_sent(self, now: datetime) -> None:
        self.status = "sent"
        self.sent_at = now
        self.error_message = None

    def retry_delay(self) -> timedelta:
        """5, 15, 45, 135, ... minutes, driven by the attempts made so far."""
        return timedelta(minutes=RETRY_BASE_MINUTES * RETRY_FACTOR ** (self.retry_count or 0))

    def mark_failed(self, error_message: str, now: datetime) -> None:
        # Delay uses the count before this failure is recorded
        delay = self.retry_delay()
        self.status = "failed"
        self.failed_at = now
        self.error_message = error_message
        self.retry_count = (self.retry_count or 0) + 1
        self.next_retry_at = now + delay

    def mark_bounced(self, reason: str, now: datetime) -> None:
        self.status = "bounced"
        self.bounced_at = now
        self.error_message = reason

    def can_retry(self, now: datetime) -> bool:
        return (
            self.is_failed()
            and (self.retry_count or 0) < MAX_RETRIES
            and (self.next_retry_at is None or as_utc(self.next_retry_at) <= as_utc(now))
        )

    @staticmethod
    def with_status(db: Session, status: str) -> Query:
        return db.query(Email).filter(Email.status == status)

    @staticmethod
    def of_type(db: Session, email_type: str) -> Query:
        return db.query(Email).filter(Email.type == email_type)

    @staticmethod
    def for_reference(db: Session, reference_type: str, reference_id: int) -> Query:
        return db.query(Email).filter(
            Email.reference_type == reference_type,
            Email.reference_id == reference_id,
        )

    @staticmethod
    def retryable(db: Session, now: datetime) -> List["Email"]:
        # SQLite stores naive UTC, so compare against a naive value there
        cutoff = now.replace(tzinfo=None) if db.get_bind().dialect.name == "sqlite" else now
        return (
            db.query(Email)
            .filter(
                Email.status == "failed",
                Email.retry_count < MAX_RETRIES,
                or_(Email.next_retry_at.is_(None), Email.next_retry_at <= cutoff),
            )
            .order_by(Email.next_retry_at, Email.id)
            .all()
        )


class EmailTemplate(Base):
    __tablename__ = "email_templates"

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(String(100), unique=True)
    display_name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    subject: Mapped[str] = mapped_column(String(255))
    body_html: Mapped[str] = mapped_column(Text)
    body_text: Mapped[str | None] = mapped_column(Text, nullable=True)

    available_variables: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    category: Mapped[str] = mapped_column(String(50), default="general", index=True)
    version: Mapped[int] = mapped_column(Integer, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @staticmethod
    def active_by_name(db: Session, name: str) -> Optional["EmailTemplate"]:
        return (
            db.query(EmailTemplate)
            .filter(EmailTemplate.name == name, EmailTemplate.is_active.is_(True))
            .first()
        )

    def render(self, variables: Dict[str, Any]) -> Dict[str, Optional[str]]:
        return {
            "subject": render_string(self.subject, variables),
            "body_html": render_string(self.body_html, html_variables(variables)),
            "body_text": render_string(self.body_text, variables) if self.body_text else None,
        }

    def validate_variables(self, provided: Dict[str, Any]) -> List[str]:
        """Names listed in available_variables that the caller did not supply."""
        return [v for v in (self.available_variables or []) if provided.get(v) is None]

    def has_variable(self, name: str) -> bool:
        return name in (self.available_variables or [])
