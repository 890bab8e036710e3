"""
Handshake authentication for chat connections.

Connections authenticate once, at the WebSocket handshake, with a JWT taken
from the ``token`` query parameter or the ``authToken`` cookie.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from urllib.parse import parse_qs

import jwt

from TermChat.config import config
from TermChat.core.server.interfaces import Authenticator, AuthResult
from TermChat.core.server.utils.helpers import is_valid_username

logger = logging.getLogger(__name__)


def issue_token(
    username: str,
    secret: Optional[str] = None,
    algorithm: Optional[str] = None,
    expire_minutes: Optional[int] = None
) -> str:
    """
    Create a signed token for ``username``.

    The token carries the username both as ``sub`` and as ``user.username``.
    """
    expires = datetime.now(timezone.utc) + timedelta(minutes=expire_minutes or config.JWT_EXPIRE_MINUTES)
    payload = {
        "sub": username,
        "user": {"username": username},
        "exp": expires,
    }
    return jwt.encode(payload, secret or config.JWT_SECRET, algorithm=algorithm or config.JWT_ALGORITHM)


def _username_from_payload(payload: Dict[str, Any]) -> Optional[str]:
    username = payload.get("sub")
    if username:
        return username
    user = payload.get("user")
    if isinstance(user, dict):
        return user.get("username")
    return None


class JWTAuthenticator:
    """
    Validates signed tokens with PyJWT.

    Tokens are read from the handshake by a pluggable extractor and
    must name a well-formed username.
    """

    def __init__(
        self,
        secret: Optional[str] = None,
        algorithm: Optional[str] = None,
        token_extractor=None
    ):
        """
        Initialize JWT authenticator.

        Args:
            secret: Signing key; config.JWT_SECRET when omitted
            algorithm: Signing algorithm; config.JWT_ALGORITHM when omitted
            token_extractor: Object with an ``extract(websocket)`` method
        """
        self._secret = secret or config.JWT_SECRET
        self._algorithm = algorithm or config.JWT_ALGORITHM
        self._token_extractor = token_extractor or DefaultTokenExtractor()

    async def authenticate(self, token: str) -> AuthResult:
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm]
            )
        except jwt.ExpiredSignatureError:
            logger.warning("Rejected token: expired")
            return AuthResult(
                success=False,
                error_message="Token has expired",
                error_code="TOKEN_EXPIRED"
            )
        except jwt.InvalidTokenError as e:
            logger.warning("Rejected token: %s", e)
            return AuthResult(
                success=False,
                error_message=f"Invalid token: {e}",
                error_code="INVALID_TOKEN"
            )

        username = _username_from_payload(payload)
        if not username:
            return AuthResult(
                success=False,
                error_message="No username in token payload",
                error_code="INVALID_PAYLOAD"
            )
        if not is_valid_username(username):
            return AuthResult(
                success=False,
                error_message="Invalid username in token payload",
                error_code="INVALID_PAYLOAD"
            )
        return AuthResult(success=True, username=username)

    def extract_token(self, transport_context: Any) -> Optional[str]:
        return self._token_extractor.extract(transport_context)


class DefaultTokenExtractor:
    """
    Pulls a token out of a WebSocket handshake request.

    Supports extraction from:
    - URL query parameters (?token=xxx)
    - Cookie headers (authToken=xxx)
    """

    COOKIE_NAME = "authToken"

    def extract(self, websocket: Any) -> Optional[str]:
        return self._extract_from_query(websocket) or self._extract_from_cookie(websocket)

    def _extract_from_query(self, websocket: Any) -> Optional[str]:
        path = self._get_path(websocket)
        if path and "?" in path:
            _, query = path.split("?", 1)
            tokens = parse_qs(query).get("token", [])
            if tokens:
                return tokens[0]
        return None

    def _extract_from_cookie(self, websocket: Any) -> Optional[str]:
        request = getattr(websocket, "request", None)
        headers = getattr(request, "headers", None)
        if headers is None:
            return None
        cookie_header = headers.get("Cookie", "") or ""
        for cookie in cookie_header.split(";"):
            name, _, value = cookie.strip().partition("=")
            if name == self.COOKIE_NAME and value:
                return value.strip()
        return None

    def _get_path(self, websocket: Any) -> Optional[str]:
        request = getattr(websocket, "request", None)
        if request is not None:
            path = getattr(request, "path", None)
            if path:
                return path
        return getattr(websocket, "path", None)


class AuthenticationMiddleware:
    """Runs the authenticator against a connection's handshake."""

    def __init__(self, authenticator: Authenticator):
        self._authenticator = authenticator

    async def authenticate_connection(self, transport_context: Any) -> AuthResult:
        """
        Authenticate a connection.

        Args:
            transport_context: The websocket whose handshake carries the token

        Returns:
            The authenticator's verdict, or NO_TOKEN
        """
        token = self._authenticator.extract_token(transport_context)

        if not token:
            return AuthResult(
                success=False,
                error_message="Missing token",
                error_code="NO_TOKEN"
            )

        return await self._authenticator.authenticate(token)


__all__ = [
    'JWTAuthenticator',
    'DefaultTokenExtractor',
    'AuthenticationMiddleware',
    'issue_token',
]
