"""
HMAC Authentication Middleware
==============================
Starlette/FastAPI adapter around the verification pipeline.

Usage:
    from hmacguard import HmacManager
    from hmacguard.middleware import HmacAuthMiddleware

    manager = HmacManager.in_memory(HmacConfig.from_env())
    app.add_middleware(HmacAuthMiddleware, verifier=manager, config=manager.config)

    @app.get("/api/items")
    async def items(request: Request):
        credential = request.state.hmac_credential
"""

from typing import Optional, Set

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from .config import HmacConfig
from .exceptions import BackendUnavailableError
from .verification import Failure, RequestContext

logger = structlog.get_logger(__name__)


class HmacAuthMiddleware(BaseHTTPMiddleware):
    """
    Rejects requests that fail HMAC verification.

    A Failure becomes a JSON error with the reason's status. A backend
    fault from a fail-closed guard becomes 503 so operators can tell an
    outage from an attack.
    """

    DEFAULT_PUBLIC_PATHS: Set[str] = {
        "/health",
        "/ready",
        "/live",
    }

    def __init__(
        self,
        app,
        verifier,
        config: Optional[HmacConfig] = None,
        public_paths: Optional[Set[str]] = None,
        trust_forwarded_for: bool = False,
    ):
        """
        Args:
            app: ASGI application
            verifier: Object with an async verify(RequestContext) method
                (VerificationPipeline or HmacManager)
            config: Configuration (header names, enabled flag)
            public_paths: Paths that bypass verification
            trust_forwarded_for: Take the client IP from X-Forwarded-For;
                enable only behind a trusted proxy
        """
        super().__init__(app)
        self.verifier = verifier
        self.config = config or HmacConfig()
        self.public_paths = self.DEFAULT_PUBLIC_PATHS if public_paths is None else public_paths
        self.trust_forwarded_for = trust_forwarded_for

    def _is_public_path(self, path: str) -> bool:
        return path.rstrip("/") in self.public_paths or path in self.public_paths

    def _get_client_ip(self, request: Request) -> Optional[str]:
        if self.trust_forwarded_for:
            forwarded = request.headers.get("X-Forwarded-For")
            if forwarded:
                return forwarded.split(",")[0].strip()
        if request.client:
            return request.client.host
        return None

    async def build_context(self, request: Request) -> RequestContext:
        return RequestContext.from_headers(
            request.headers,
            self.config.headers,
            method=request.method,
            path=request.url.path,
            query=request.url.query or None,
            body=await request.body(),
            ip_address=self._get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )

    async def dispatch(self, request: Request, call_next):
        if not self.config.enabled or self._is_public_path(request.url.path):
            return await call_next(request)

        context = await self.build_context(request)

        try:
            result = await self.verifier.verify(context)
        except BackendUnavailableError as e:
            logger.error(
                "hmac_backend_unavailable",
                component=e.component,
                operation=e.operation,
                path=request.url.path,
            )
            return JSONResponse(
                status_code=503,
                content={
                    "success": False,
                    "message": "Authentication backend unavailable",
                    "code": "AUTH_BACKEND_UNAVAILABLE",
                    "data": None,
                },
            )

        if isinstance(result, Failure):
            return JSONResponse(
                status_code=result.http_status,
                content={
                    "success": False,
                    "message": result.message,
                    "code": "NOT_AUTHORIZED",
                    "data": None,
                },
            )

        request.state.hmac_credential = result.credential
        request.state.tenant_id = result.credential.tenant_id
        return await call_next(request)
