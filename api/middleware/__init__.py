"""API middleware modules."""

from .identity import (
    IdentityMiddleware,
    RequestContext,
    get_current_user,
    require_authenticated,
    get_user_id,
)

__all__ = [
    "IdentityMiddleware",
    "RequestContext",
    "get_current_user",
    "require_authenticated",
    "get_user_id",
]
