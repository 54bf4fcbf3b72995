"""Data access layer. Every credential query is tenant-scoped.

This is the ONLY layer that talks to the database.
Credential and audit methods take tenant_id and put it in the WHERE clause.
Nothing here commits: the caller owns the transaction.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, delete
import uuid

from credvault.db.models import TenantModel, CredentialModel, AuditLogModel, utcnow
from credvault.types import EncryptionResult


class Repository:
    """All database operations. Every credential/audit query is tenant-scoped."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ── Tenants ──

    async def get_tenant(self, tenant_id: str) -> Optional[TenantModel]:
        result = await self.session.execute(
            select(TenantModel).where(TenantModel.id == tenant_id)
        )
        return result.scalar_one_or_none()

    async def create_tenant(self, name: str, tenant_id: Optional[str] = None, is_active: bool = True) -> TenantModel:
        tenant = TenantModel(id=tenant_id or str(uuid.uuid4()), name=name, is_active=is_active)
        self.session.add(tenant)
        await self.session.flush()
        return tenant

    async def set_tenant_active(self, tenant_id: str, is_active: bool) -> Optional[TenantModel]:
        tenant = await self.get_tenant(tenant_id)
        if tenant is None:
            return None
        tenant.is_active = is_active
        await self.session.flush()
        return tenant

    # ── Credentials ──

    async def add_credential(
        self,
        tenant_id: str,
        service_type: str,
        name: str,
        sealed: EncryptionResult,
        expires_at: Optional[datetime] = None,
    ) -> CredentialModel:
        """Insert a new active credential row. Raises IntegrityError on a duplicate name."""
        now = utcnow()
        record = CredentialModel(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            service_type=service_type,
            name=name,
            encrypted_data=sealed.ciphertext,
            iv=sealed.iv,
            auth_tag=sealed.auth_tag,
            key_version=sealed.key_version,
            schema_version=1,
            is_active=True,
            verification_status="pending",
            created_at=now,
            updated_at=now,
            expires_at=expires_at,
        )
        self.session.add(record)
        await self.session.flush()
        return record

    async def get_credential(
        self,
        tenant_id: str,
        credential_id: str,
        include_inactive: bool = False,
    ) -> Optional[CredentialModel]:
        """Get credential by ID within tenant."""
        conditions = [
            CredentialModel.tenant_id == tenant_id,
            CredentialModel.id == credential_id,
        ]
        if not include_inactive:
            conditions.append(CredentialModel.is_active == True)  # noqa: E712
        result = await self.session.execute(
            select(CredentialModel).where(*conditions)
        )
        return result.scalar_one_or_none()

    async def list_credentials(
        self,
        tenant_id: str,
        service_type: Optional[str] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> list[CredentialModel]:
        """Active credentials for a tenant, newest first."""
        conditions = [
            CredentialModel.tenant_id == tenant_id,
            CredentialModel.is_active == True,  # noqa: E712
        ]
        if service_type is not None:
            conditions.append(CredentialModel.service_type == service_type)
        result = await self.session.execute(
            select(CredentialModel)
            .where(*conditions)
            .order_by(CredentialModel.created_at.desc(), CredentialModel.id)
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def count_credentials(self, tenant_id: str, service_type: Optional[str] = None) -> int:
        conditions = [
            CredentialModel.tenant_id == tenant_id,
            CredentialModel.is_active == True,  # noqa: E712
        ]
        if service_type is not None:
            conditions.append(CredentialModel.service_type == service_type)
        result = await self.session.execute(
            select(func.count()).select_from(CredentialModel).where(*conditions)
        )
        return result.scalar_one()

    async def update_credential(
        self, tenant_id: str, credential_id: str, updates: dict
    ) -> Optional[CredentialModel]:
        """Apply partial updates to an active credential."""
        allowed = {
            "name", "encrypted_data", "iv", "auth_tag", "key_version",
            "schema_version", "expires_at",
        }
        bad = set(updates) - allowed
        if bad:
            raise ValueError(f"Unknown credential update keys: {bad}")
        record = await self.get_credential(tenant_id, credential_id)
        if record is None:
            return None
        for key, value in updates.items():
            setattr(record, key, value)
        record.updated_at = utcnow()
        await self.session.flush()
        return record

    async def deactivate_credential(self, tenant_id: str, credential_id: str) -> bool:
        """Soft-delete an active credential (sets is_active=False, keeps the row)."""
        record = await self.get_credential(tenant_id, credential_id)
        if record is None:
            return False
        record.is_active = False
        record.updated_at = utcnow()
        await self.session.flush()
        return True

    async def set_verification_status(
        self, tenant_id: str, credential_id: str, status: str
    ) -> Optional[CredentialModel]:
        record = await self.get_credential(tenant_id, credential_id)
        if record is None:
            return None
        now = utcnow()
        record.verification_status = status
        record.last_verified_at = now
        record.updated_at = now
        await self.session.flush()
        return record

    # ── Key rotation (system scope) ──
    # The only cross-tenant reads. They return identifiers, never ciphertext.

    async def list_stale_credentials(self, active_version: int, limit: int = 100) -> list[tuple[str, str]]:
        """(credential_id, tenant_id) of active rows sealed under an older key."""
        result = await self.session.execute(
            select(CredentialModel.id, CredentialModel.tenant_id)
            .where(
                CredentialModel.is_active == True,  # noqa: E712
                CredentialModel.key_version != active_version,
            )
            .order_by(CredentialModel.created_at)
            .limit(limit)
        )
        return [(row[0], row[1]) for row in result.all()]

    async def key_versions_in_use(self) -> set[int]:
        """Every key version a stored row, soft-deleted ones included, is sealed under."""
        result = await self.session.execute(
            select(CredentialModel.key_version).distinct()
        )
        return {row[0] for row in result.all()}

    # ── Audit log ──

    def add_audit_record(self, **fields) -> AuditLogModel:
        """Stage an audit row in the current transaction."""
        fields.setdefault("created_at", utcnow())
        record = AuditLogModel(**fields)
        self.session.add(record)
        return record

    async def list_audit_records(
        self,
        tenant_id: str,
        credential_id: Optional[str] = None,
        limit: int = 50,
    ) -> list[AuditLogModel]:
        """Newest first."""
        conditions = [AuditLogModel.tenant_id == tenant_id]
        if credential_id is not None:
            conditions.append(AuditLogModel.credential_id == credential_id)
        result = await self.session.execute(
            select(AuditLogModel)
            .where(*conditions)
            .order_by(AuditLogModel.created_at.desc(), AuditLogModel.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_failed_audit_since(self, tenant_id: str, since: datetime) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(AuditLogModel).where(
                AuditLogModel.tenant_id == tenant_id,
                AuditLogModel.status == "failed",
                AuditLogModel.created_at > since,
            )
        )
        return result.scalar_one()

    async def count_distinct_ips_since(self, tenant_id: str, since: datetime) -> int:
        result = await self.session.execute(
            select(func.count(func.distinct(AuditLogModel.ip_address))).where(
                AuditLogModel.tenant_id == tenant_id,
                AuditLogModel.ip_address.is_not(None),
                AuditLogModel.created_at > since,
            )
        )
        return result.scalar_one()

    async def audit_counts(
        self,
        tenant_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> list[tuple[str, str, int]]:
        """(action, status, count) groups for reporting."""
        conditions = []
        if tenant_id is not None:
            conditions.append(AuditLogModel.tenant_id == tenant_id)
        if since is not None:
            conditions.append(AuditLogModel.created_at >= since)
        if until is not None:
            conditions.append(AuditLogModel.created_at <= until)
        result = await self.session.execute(
            select(AuditLogModel.action, AuditLogModel.status, func.count())
            .where(*conditions)
            .group_by(AuditLogModel.action, AuditLogModel.status)
        )
        return [(row[0], row[1], row[2]) for row in result.all()]

    async def delete_successful_audit_before(self, cutoff: datetime) -> int:
        """Archival only. Failed rows are never removed."""
        result = await self.session.execute(
            delete(AuditLogModel).where(
                AuditLogModel.status == "success",
                AuditLogModel.created_at < cutoff,
            )
        )
        return result.rowcount or 0
