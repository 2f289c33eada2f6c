"""
Bearer-token identity for the creations API.

Requests authenticate with ``Authorization: Bearer <JWT>``.  Tokens are
verified with PyJWT against the configured shared secret and algorithm
(HS256 by default); the owner identifier is the ``id`` claim, or ``sub``
when ``id`` is absent.  The expiry claim is honoured when present.

Token issuance belongs to the account service; ``issue_access_token`` is
provided for local tooling and the test suite.
"""

import dataclasses
import datetime

import fastapi
import jwt
import structlog

import visioncast.exceptions

logger = structlog.get_logger()

_BEARER_PREFIX = "bearer "


@dataclasses.dataclass(frozen=True)
class AuthenticatedUser:
    identifier: str


class AccessTokenVerifier:
    """Verifies bearer tokens and extracts the owner identifier."""

    def __init__(self, token_secret: str, token_algorithm: str = "HS256") -> None:
        self._token_secret = token_secret
        self._token_algorithm = token_algorithm

    def verify_access_token(self, access_token: str) -> AuthenticatedUser:
        """
        Decode and verify a token.

        Raises:
            AuthenticationError: If the signature, expiry or subject
                claim is invalid.
        """
        try:
            token_claims = jwt.decode(access_token, self._token_secret, algorithms=[self._token_algorithm])
        except jwt.ExpiredSignatureError as expired_error:
            logger.info("access_token_expired")
            raise visioncast.exceptions.AuthenticationError(
                detail="Your token has expired. Please log in again.",
            ) from expired_error
        except jwt.InvalidTokenError as invalid_token_error:
            logger.info("access_token_invalid", error_type=type(invalid_token_error).__name__)
            raise visioncast.exceptions.AuthenticationError(
                detail="Invalid token. Please log in again.",
            ) from invalid_token_error

        user_identifier = token_claims.get("id") or token_claims.get("sub")
        if not isinstance(user_identifier, str) or not user_identifier:
            raise visioncast.exceptions.AuthenticationError(
                detail="The token does not identify a user.",
            )
        return AuthenticatedUser(identifier=user_identifier)

    def issue_access_token(self, user_identifier: str, lifetime: datetime.timedelta | None = None) -> str:
        issued_at = datetime.datetime.now(datetime.UTC)
        token_claims: dict[str, object] = {"id": user_identifier, "iat": issued_at}
        if lifetime is not None:
            token_claims["exp"] = issued_at + lifetime
        return jwt.encode(token_claims, self._token_secret, algorithm=self._token_algorithm)


def extract_bearer_token(authorization_header: str | None) -> str | None:
    """Return the token of a ``Bearer`` authorization header, or ``None``."""
    if not authorization_header or not authorization_header.lower().startswith(_BEARER_PREFIX):
        return None
    return authorization_header[len(_BEARER_PREFIX) :].strip() or None


def _get_access_token_verifier(request: fastapi.Request) -> AccessTokenVerifier:
    return request.app.state.access_token_verifier  # type: ignore[no-any-return]


def get_authenticated_user(request: fastapi.Request) -> AuthenticatedUser:
    """
    FastAPI dependency requiring a valid bearer token.

    Raises:
        AuthenticationError: If the header is missing or the token is invalid.
    """
    access_token = extract_bearer_token(request.headers.get("authorization"))
    if access_token is None:
        raise visioncast.exceptions.AuthenticationError()
    return _get_access_token_verifier(request).verify_access_token(access_token)
