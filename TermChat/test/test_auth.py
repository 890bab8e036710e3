import time
from unittest.mock import AsyncMock, MagicMock

import jwt
import pytest

from TermChat.core.server.auth import (
    AuthenticationMiddleware,
    DefaultTokenExtractor,
    JWTAuthenticator,
    issue_token,
)

SECRET = "test-secret"


def make_websocket(path="/", cookie=None):
    websocket = MagicMock()
    websocket.request.path = path
    headers = {"Cookie": cookie} if cookie else {}
    websocket.request.headers = headers
    return websocket


class TestJWTAuthenticator:
    """Tests for JWT validation."""

    def setup_method(self):
        self.authenticator = JWTAuthenticator(secret=SECRET, algorithm="HS256")

    @pytest.mark.asyncio
    async def test_issued_token_is_accepted(self):
        token = issue_token("alice", secret=SECRET)

        result = await self.authenticator.authenticate(token)

        assert result.success
        assert result.username == "alice"

    @pytest.mark.asyncio
    async def test_nested_username_claim(self):
        token = jwt.encode({"user": {"username": "bob"}, "exp": int(time.time()) + 60}, SECRET, algorithm="HS256")

        result = await self.authenticator.authenticate(token)

        assert result.username == "bob"

    @pytest.mark.asyncio
    async def test_expired_token(self):
        token = jwt.encode({"sub": "alice", "exp": int(time.time()) - 10}, SECRET, algorithm="HS256")

        result = await self.authenticator.authenticate(token)

        assert not result.success
        assert result.error_code == "TOKEN_EXPIRED"

    @pytest.mark.asyncio
    async def test_wrong_secret(self):
        token = issue_token("alice", secret="another-secret")

        result = await self.authenticator.authenticate(token)

        assert result.error_code == "INVALID_TOKEN"

    @pytest.mark.asyncio
    async def test_payload_without_username(self):
        token = jwt.encode({"role": "admin"}, SECRET, algorithm="HS256")

        result = await self.authenticator.authenticate(token)

        assert result.error_code == "INVALID_PAYLOAD"

    @pytest.mark.asyncio
    async def test_malformed_username(self):
        token = jwt.encode({"sub": "not a name!"}, SECRET, algorithm="HS256")

        result = await self.authenticator.authenticate(token)

        assert not result.success
        assert result.error_code == "INVALID_PAYLOAD"


class TestDefaultTokenExtractor:
    """Tests for pulling tokens out of the handshake."""

    def setup_method(self):
        self.extractor = DefaultTokenExtractor()

    def test_query_parameter(self):
        assert self.extractor.extract(make_websocket("/?token=abc")) == "abc"

    def test_cookie(self):
        websocket = make_websocket("/", cookie="theme=dark; authToken=xyz")

        assert self.extractor.extract(websocket) == "xyz"

    def test_query_takes_precedence(self):
        websocket = make_websocket("/?token=abc", cookie="authToken=xyz")

        assert self.extractor.extract(websocket) == "abc"

    def test_similar_cookie_names_are_ignored(self):
        websocket = make_websocket("/", cookie="oldauthToken=nope")

        assert self.extractor.extract(websocket) is None

    def test_no_token(self):
        assert self.extractor.extract(make_websocket("/chat")) is None


class TestAuthenticationMiddleware:

    @pytest.mark.asyncio
    async def test_missing_token(self):
        authenticator = MagicMock()
        authenticator.extract_token.return_value = None
        authenticator.authenticate = AsyncMock()

        result = await AuthenticationMiddleware(authenticator).authenticate_connection(object())

        assert result.error_code == "NO_TOKEN"
        authenticator.authenticate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_token_is_passed_on(self):
        authenticator = JWTAuthenticator(secret=SECRET)
        middleware = AuthenticationMiddleware(authenticator)
        websocket = make_websocket(f"/?token={issue_token('carol', secret=SECRET)}")

        result = await middleware.authenticate_connection(websocket)

        assert result.success
        assert result.username == "carol"
