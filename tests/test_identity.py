"""
Tests for JWT caller identity resolution.
"""

import time

import jwt
import pytest

from core.identity import ANONYMOUS, IdentityResolver

SECRET = "test-secret-key-with-at-least-32-bytes"


@pytest.fixture
def resolver():
    return IdentityResolver(SECRET)


class TestResolveFromHeader:

    def test_valid_token(self, resolver):
        token = resolver.issue_token("user-1", username="ann")

        identity = resolver.resolve_from_header(f"Bearer {token}")

        assert identity.user_id == "user-1"
        assert identity.username == "ann"
        assert identity.is_authenticated

    @pytest.mark.parametrize("header", [
        None,
        "",
        "Token abc",
        "Bearer ",
        "Bearer not-a-jwt",
    ])
    def test_unusable_headers_are_anonymous(self, resolver, header):
        assert resolver.resolve_from_header(header) is ANONYMOUS

    def test_wrong_secret(self, resolver):
        token = jwt.encode({"sub": "user-1"}, "another-secret-key-with-32-bytes-plus", algorithm="HS256")
        assert resolver.resolve_token(token).is_anonymous

    def test_expired_token(self, resolver):
        token = resolver.issue_token("user-1", exp=int(time.time()) - 60)
        assert resolver.resolve_token(token).is_anonymous

    def test_missing_subject(self, resolver):
        token = jwt.encode({"username": "ann"}, SECRET, algorithm="HS256")
        assert resolver.resolve_token(token).is_anonymous

    def test_email_used_as_username(self, resolver):
        token = jwt.encode({"sub": "42", "email": "a@b.c"}, SECRET, algorithm="HS256")
        identity = resolver.resolve_token(token)
        assert identity.user_id == "42"
        assert identity.username == "a@b.c"

    def test_no_secret_configured(self):
        resolver = IdentityResolver(None)
        assert resolver.resolve_from_header("Bearer x.y.z").is_anonymous
        with pytest.raises(RuntimeError):
            resolver.issue_token("user-1")
