from credvault.audit.log import AuditLog

__all__ = ["AuditLog"]
