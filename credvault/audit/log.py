"""Credential audit log — append-only record of every vault operation.

Rows hold who/what/when and a generic failure reason. They never hold
payload values, ciphertext, IVs, tags or key material, not even on failure.

Writes are best-effort: a failed audit insert is logged and swallowed so it
cannot abort the operation being audited. Callers still await the write
before returning, which keeps audit rows in operation order.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from credvault.db.models import AuditLogModel, as_utc, utcnow
from credvault.db.repository import Repository
from credvault.types import (
    AuditAction, AuditRecord, AuditReport, AuditStatus, RequestContext,
)

logger = logging.getLogger(__name__)


def _to_record(m: AuditLogModel) -> AuditRecord:
    return AuditRecord(
        id=m.id,
        tenant_id=m.tenant_id,
        credential_id=m.credential_id,
        action=AuditAction(m.action),
        status=AuditStatus(m.status),
        failure_reason=m.failure_reason,
        ip_address=m.ip_address,
        user_agent=m.user_agent,
        request_id=m.request_id,
        created_at=as_utc(m.created_at),
    )


class AuditLog:
    """Append, query and summarise credential audit rows.

    Args:
        session_factory: async session factory for standalone writes and reads.
        window_minutes: trailing window used by :meth:`detect_suspicious`.
        failure_threshold: more failures than this in the window is suspicious.
        ip_threshold: more distinct IPs than this in the window is suspicious.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        window_minutes: int = 60,
        failure_threshold: int = 10,
        ip_threshold: int = 5,
    ) -> None:
        self._session_factory = session_factory
        self.window = timedelta(minutes=window_minutes)
        self.failure_threshold = failure_threshold
        self.ip_threshold = ip_threshold

    @classmethod
    def from_config(cls, session_factory, cfg) -> "AuditLog":
        return cls(
            session_factory,
            window_minutes=cfg.suspicious_window_minutes,
            failure_threshold=cfg.suspicious_failure_threshold,
            ip_threshold=cfg.suspicious_ip_threshold,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    def _fields(
        tenant_id: str,
        credential_id: Optional[str],
        action: AuditAction,
        status: AuditStatus,
        failure_reason: Optional[str],
        request_context: Optional[RequestContext],
    ) -> dict:
        ctx = request_context or RequestContext()
        return {
            "tenant_id": tenant_id,
            "credential_id": credential_id,
            "action": AuditAction(action).value,
            "status": AuditStatus(status).value,
            "failure_reason": failure_reason,
            "ip_address": ctx.ip_address,
            "user_agent": ctx.user_agent,
            "request_id": ctx.request_id,
        }

    def stage(
        self,
        session: AsyncSession,
        tenant_id: str,
        credential_id: Optional[str],
        action: AuditAction,
        status: AuditStatus,
        failure_reason: Optional[str] = None,
        request_context: Optional[RequestContext] = None,
    ) -> AuditLogModel:
        """Add an audit row to the caller's open transaction.

        The row commits or rolls back together with the caller's write.
        """
        return Repository(session).add_audit_record(
            **self._fields(tenant_id, credential_id, action, status, failure_reason, request_context)
        )

    async def record(
        self,
        tenant_id: str,
        credential_id: Optional[str],
        action: AuditAction,
        status: AuditStatus,
        failure_reason: Optional[str] = None,
        request_context: Optional[RequestContext] = None,
        *,
        session: Optional[AsyncSession] = None,
    ) -> Optional[AuditRecord]:
        """Insert and commit one audit row in its own transaction.

        Uses *session* when given (after the caller has finished with it),
        otherwise opens a fresh one. Returns ``None`` instead of raising if
        the write fails.
        """
        fields = self._fields(tenant_id, credential_id, action, status, failure_reason, request_context)
        try:
            if session is not None:
                return await self._write(session, fields)
            async with self._session_factory() as own:
                return await self._write(own, fields)
        except Exception as exc:
            logger.error(
                "[Audit] Failed to record audit row: tenant=%s action=%s status=%s error=%s",
                tenant_id, fields["action"], fields["status"], exc,
            )
            return None

    async def _write(self, session: AsyncSession, fields: dict) -> AuditRecord:
        try:
            row = Repository(session).add_audit_record(**fields)
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        logger.info(
            "[Audit] tenant=%s credential=%s action=%s status=%s",
            fields["tenant_id"], fields["credential_id"], fields["action"], fields["status"],
        )
        return _to_record(row)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def query(
        self,
        tenant_id: str,
        credential_id: Optional[str] = None,
        limit: int = 50,
    ) -> list[AuditRecord]:
        """Audit rows for a tenant (optionally one credential), newest first."""
        limit = max(1, limit)
        async with self._session_factory() as session:
            rows = await Repository(session).list_audit_records(tenant_id, credential_id, limit)
        return [_to_record(r) for r in rows]

    async def detect_suspicious(self, tenant_id: str, now: Optional[datetime] = None) -> bool:
        """True if the trailing window shows too many failures or too many IPs.

        A signal for rate limiting or alerting. It never blocks anything itself.
        """
        since = (now or utcnow()) - self.window
        async with self._session_factory() as session:
            repo = Repository(session)
            failed = await repo.count_failed_audit_since(tenant_id, since)
            if failed > self.failure_threshold:
                logger.warning("[Audit] Suspicious activity: tenant=%s failed_count=%d", tenant_id, failed)
                return True
            ips = await repo.count_distinct_ips_since(tenant_id, since)
            if ips > self.ip_threshold:
                logger.warning("[Audit] Suspicious activity: tenant=%s distinct_ips=%d", tenant_id, ips)
                return True
        return False

    async def report(
        self,
        tenant_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> AuditReport:
        """Compliance summary: totals and per-action counts."""
        async with self._session_factory() as session:
            groups = await Repository(session).audit_counts(tenant_id, since, until)
        report = AuditReport(tenant_id=tenant_id)
        for action, status, count in groups:
            report.total_actions += count
            if status == AuditStatus.SUCCESS.value:
                report.successful_actions += count
            else:
                report.failed_actions += count
            report.by_action[action] = report.by_action.get(action, 0) + count
        return report

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    async def archive(self, older_than_days: int = 365, now: Optional[datetime] = None) -> int:
        """Delete successful rows older than the cutoff. Failed rows are kept forever.

        Returns the number of rows removed.
        """
        if older_than_days < 0:
            raise ValueError("older_than_days must be non-negative")
        cutoff = (now or utcnow()) - timedelta(days=older_than_days)
        async with self._session_factory() as session:
            async with session.begin():
                removed = await Repository(session).delete_successful_audit_before(cutoff)
        logger.info("[Audit] Archived %d audit row(s) older than %d day(s)", removed, older_than_days)
        return removed
