"""
Caller identity resolution.

Resolves the acting user from a bearer JWT (HS256 by default, ``sub`` claim
carries the user id). Requests without a valid token resolve to an
anonymous identity; collection-level roles are resolved separately against
each collection record.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import jwt

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class Identity:
    """Resolved caller identity."""
    user_id: Optional[str]
    username: Optional[str] = None
    auth_method: str = "anonymous"  # 'jwt' or 'anonymous'
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_anonymous(self) -> bool:
        return self.auth_method == "anonymous"

    @property
    def is_authenticated(self) -> bool:
        return not self.is_anonymous


ANONYMOUS = Identity(user_id=None)


# ============================================================================
# Identity Resolver
# ============================================================================

class IdentityResolver:
    """
    Resolves caller identity from an ``Authorization: Bearer <jwt>`` header.

    Invalid, expired or malformed tokens resolve to anonymous; they never
    raise.
    """

    def __init__(self, jwt_secret: Optional[str], jwt_algorithm: str = "HS256"):
        self.jwt_secret = jwt_secret
        self.jwt_algorithm = jwt_algorithm

    def resolve_from_header(self, authorization_header: Optional[str]) -> Identity:
        """
        Resolve identity from an Authorization header value.

        Args:
            authorization_header: Header value (e.g., "Bearer <token>")

        Returns:
            Identity for the token's subject, or an anonymous identity
        """
        if not authorization_header:
            return ANONYMOUS

        if not authorization_header.startswith("Bearer "):
            logger.warning("Invalid Authorization header format (missing 'Bearer')")
            return ANONYMOUS

        token = authorization_header[7:].strip()
        if not token:
            logger.warning("Empty JWT token")
            return ANONYMOUS

        return self.resolve_token(token)

    def resolve_token(self, token: str) -> Identity:
        if not self.jwt_secret:
            logger.warning("No JWT secret configured, skipping JWT verification")
            return ANONYMOUS

        try:
            payload = jwt.decode(
                token,
                self.jwt_secret,
                algorithms=[self.jwt_algorithm],
                options={"verify_exp": True},
            )
        except jwt.ExpiredSignatureError:
            logger.warning("JWT token has expired")
            return ANONYMOUS
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid JWT token: {e}")
            return ANONYMOUS

        user_id = payload.get("sub")
        if not user_id:
            logger.warning("JWT token missing 'sub' claim")
            return ANONYMOUS

        logger.debug(f"Resolved user from JWT: user_id={user_id}")
        return Identity(
            user_id=str(user_id),
            username=payload.get("username") or payload.get("email"),
            auth_method="jwt",
            metadata={
                "token_issued_at": payload.get("iat"),
                "token_expires_at": payload.get("exp"),
            },
        )

    def issue_token(self, user_id: str, **claims: Any) -> str:
        """Sign a token for ``user_id`` (local tooling and tests)."""
        if not self.jwt_secret:
            raise RuntimeError("JWT_SECRET is not configured")
        payload = {"sub": user_id, **claims}
        return jwt.encode(payload, self.jwt_secret, algorithm=self.jwt_algorithm)
