"""All ORM models.

Tables: tenants, credentials, audit_log
Every credential and audit row carries tenant_id for isolation.
"""

from __future__ import annotations

from sqlalchemy import Column, String, Integer, DateTime, Boolean, Text, LargeBinary, ForeignKey, Index, text
from sqlalchemy.orm import DeclarativeBase
from datetime import datetime, timezone
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class TenantModel(Base):
    __tablename__ = "tenants"
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class CredentialModel(Base):
    __tablename__ = "credentials"
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String, ForeignKey("tenants.id"), nullable=False, index=True)
    service_type = Column(String, nullable=False)         # ServiceType value
    name = Column(String, nullable=False)
    encrypted_data = Column(LargeBinary, nullable=False)  # AES-256-GCM ciphertext
    iv = Column(LargeBinary(16), nullable=False)
    auth_tag = Column(LargeBinary(16), nullable=False)
    key_version = Column(Integer, nullable=False)
    schema_version = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)
    verification_status = Column(String, nullable=False, default="pending")
    last_verified_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        # Unique among active rows only, so a soft-deleted name can be reused.
        Index(
            "uq_credential_active_name",
            "tenant_id", "service_type", "name",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index("ix_credential_tenant_service", "tenant_id", "service_type"),
        Index("ix_credential_key_version", "key_version"),
    )


class AuditLogModel(Base):
    """Append-only. Application code inserts; only the archival job deletes."""
    __tablename__ = "audit_log"
    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String, nullable=False)
    credential_id = Column(String, nullable=True, index=True)
    action = Column(String, nullable=False)               # AuditAction value
    status = Column(String, nullable=False)               # AuditStatus value
    failure_reason = Column(Text, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(Text, nullable=True)
    request_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_audit_tenant_created", "tenant_id", "created_at"),
        Index("ix_audit_status_created", "status", "created_at"),
    )


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
