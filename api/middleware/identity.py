"""
FastAPI middleware for caller identity and request context population.

Resolves the bearer token on every request and attaches a RequestContext to
``request.state.ctx`` for route handlers.
"""

import logging
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.errors import PermissionDenied
from core.identity import ANONYMOUS, Identity, IdentityResolver

logger = logging.getLogger(__name__)


# ============================================================================
# Request State Extensions
# ============================================================================

class RequestContext:
    """
    Request context for caller identity.

    Attached to request.state by the IdentityMiddleware.
    """

    def __init__(self, identity: Identity):
        self.user_id: Optional[str] = identity.user_id
        self.username: Optional[str] = identity.username
        self.auth_method: str = identity.auth_method
        self.is_authenticated: bool = identity.is_authenticated

    def __repr__(self) -> str:
        return f"RequestContext(user_id={self.user_id}, auth_method={self.auth_method})"


# ============================================================================
# Middleware
# ============================================================================

class IdentityMiddleware(BaseHTTPMiddleware):
    """
    Middleware to resolve the caller from the Authorization header.

    Falls back to an anonymous context when the header is missing or the
    token does not verify.
    """

    def __init__(self, app: ASGIApp, resolver: IdentityResolver):
        super().__init__(app)
        self.resolver = resolver

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        identity = self.resolver.resolve_from_header(request.headers.get("Authorization"))
        request.state.ctx = RequestContext(identity)

        logger.debug(
            f"Resolved caller for {request.method} {request.url.path}: "
            f"user_id={identity.user_id}, method={identity.auth_method}"
        )

        # Exceptions from downstream handlers propagate
        return await call_next(request)


# ============================================================================
# Helper Functions
# ============================================================================

def get_current_user(request: Request) -> RequestContext:
    """
    Get current caller context from request.

    Raises:
        AttributeError: If middleware has not been applied
    """
    if not hasattr(request.state, "ctx"):
        raise AttributeError(
            "Request state does not have 'ctx' attribute. "
            "Ensure IdentityMiddleware is configured."
        )
    return request.state.ctx


def require_authenticated(request: Request) -> RequestContext:
    """
    Require that the request is from an authenticated user.

    Raises:
        PermissionDenied: If the caller is anonymous
    """
    ctx = get_current_user(request)
    if not ctx.is_authenticated:
        raise PermissionDenied("Authentication required")
    return ctx


def get_user_id(request: Request) -> Optional[str]:
    ctx = getattr(request.state, "ctx", None) or RequestContext(ANONYMOUS)
    return ctx.user_id
