"""JWT token management: create and validate tenant tokens."""

import jwt
from datetime import datetime, timedelta, timezone

from credvault.config import CredVaultConfig, config as default_config
from credvault.exceptions import VaultError


class AuthError(VaultError):
    """Bearer token missing, malformed, expired or forged."""
    error_code = "AUTH_001"
    default_message = "Unauthorized"


class JWTManager:
    """JWT token management."""

    def __init__(self, cfg: CredVaultConfig = None):
        cfg = cfg or default_config
        self._secret = cfg.secret_key.get_secret_value()
        self._algorithm = cfg.jwt_algorithm
        self._expiry = timedelta(minutes=cfg.jwt_expiry_minutes)

    async def create_token(self, tenant_id: str) -> str:
        """Create a JWT token.

        Args:
            tenant_id: Tenant to encode in token

        Returns:
            JWT token string
        """
        now = datetime.now(timezone.utc)
        payload = {
            "tenant_id": tenant_id,
            "exp": now + self._expiry,
            "iat": now,
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    async def verify_token(self, token: str) -> dict:
        """Verify and decode a JWT token.

        Returns:
            {"tenant_id": str}

        Raises:
            AuthError: On invalid/expired token
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthError("Token expired")
        except jwt.InvalidTokenError:
            raise AuthError("Invalid token")
        tenant_id = payload.get("tenant_id")
        if not tenant_id:
            raise AuthError("Invalid token")
        return {"tenant_id": str(tenant_id)}
