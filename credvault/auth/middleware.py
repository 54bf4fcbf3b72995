"""FastAPI authentication middleware.

Checks the Authorization header for a Bearer JWT, loads the tenant, and sets:
- request.state.tenant: TenantContext (tenant id + whether it is active)
- request.state.request_context: RequestContext (IP, user agent, request id)

The tenant id is never read from the request body or query string.
"""

import logging
import uuid

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from credvault.auth.jwt import AuthError, JWTManager
from credvault.db.repository import Repository
from credvault.types import RequestContext, TenantContext

logger = logging.getLogger(__name__)


class AuthMiddleware(BaseHTTPMiddleware):
    """Tenant isolation middleware."""

    # Paths that don't require auth
    PUBLIC_PATHS = {"/v1/health", "/docs", "/openapi.json", "/redoc"}

    def __init__(self, app, jwt_manager: JWTManager = None):
        super().__init__(app)
        self.jwt_manager = jwt_manager or JWTManager()

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_context = RequestContext(
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("User-Agent"),
            request_id=request_id,
        )

        if request.method == "OPTIONS" or request.url.path in self.PUBLIC_PATHS:
            return await call_next(request)

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return self._unauthorized(request_id)

        try:
            payload = await self.jwt_manager.verify_token(auth_header[7:])
        except AuthError as exc:
            logger.info("[Auth] Rejected token: %s (request_id=%s)", exc, request_id)
            return self._unauthorized(request_id)

        vault = getattr(request.app.state, "vault", None)
        if vault is None:
            return JSONResponse({"error": "Vault not initialised", "request_id": request_id}, status_code=503)
        async with vault.session_factory() as session:
            tenant = await Repository(session).get_tenant(payload["tenant_id"])
        if tenant is None:
            logger.info("[Auth] Unknown tenant in token (request_id=%s)", request_id)
            return self._unauthorized(request_id)

        request.state.tenant = TenantContext(tenant_id=tenant.id, is_active=bool(tenant.is_active))
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @staticmethod
    def _unauthorized(request_id: str) -> JSONResponse:
        return JSONResponse(
            {"error": "Unauthorized", "error_code": "AUTH_001", "request_id": request_id},
            status_code=401,
        )
