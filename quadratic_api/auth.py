"""
Bearer token validation for Auth0-issued access tokens.

Tokens are validated against the issuer's JWKS (RS256), or against a shared
secret (HS256) when one is configured for local development.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Sequence

import requests
from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError

logger = logging.getLogger(__name__)

JWKS_REQUEST_TIMEOUT = 10


@dataclass(frozen=True)
class TokenClaims:
    """Validated JWT claims."""

    sub: str


class InvalidTokenError(Exception):
    """Raised when JWT validation fails."""


class TokenValidator:
    """Validates bearer tokens and extracts the auth-subject.

    JWKS keys are fetched from the issuer and cached for ``jwks_cache_ttl``.
    """

    def __init__(
        self,
        *,
        issuer: Optional[str] = None,
        audience: Optional[str] = None,
        secret: Optional[str] = None,
        algorithms: Optional[Sequence[str]] = None,
        jwks_cache_ttl: timedelta = timedelta(hours=24),
    ):
        self._issuer = issuer or None
        self._audience = audience or None
        self._secret = secret or None
        if algorithms is None:
            algorithms = ("HS256",) if self._secret else ("RS256",)
        self._algorithms = list(algorithms)
        self._jwks_cache_ttl = jwks_cache_ttl

        self._jwks: dict[str, Any] | None = None
        self._jwks_fetched_at: datetime | None = None
        self._jwks_lock = threading.Lock()

    @property
    def jwks_url(self) -> Optional[str]:
        if not self._issuer:
            return None
        return f"{self._issuer.rstrip('/')}/.well-known/jwks.json"

    def validate_token(self, token: str) -> TokenClaims:
        """Validate a JWT and return its claims.

        Raises:
            InvalidTokenError: If the token is malformed, expired, or fails verification.
        """
        try:
            jwt.get_unverified_header(token)
        except JWTError as e:
            raise InvalidTokenError(f"Invalid token format: {e}") from e

        if self._secret:
            key: Any = self._secret
        elif self._issuer:
            key = self._get_jwks()
        else:
            raise InvalidTokenError("Token validation is not configured")

        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=self._algorithms,
                audience=self._audience,
                issuer=self._issuer,
                options={
                    "verify_aud": self._audience is not None,
                    "verify_iss": self._issuer is not None,
                },
            )
        except ExpiredSignatureError as e:
            raise InvalidTokenError("Token has expired") from e
        except JWTClaimsError as e:
            raise InvalidTokenError(f"Invalid token claims: {e}") from e
        except JWTError as e:
            raise InvalidTokenError(f"Invalid token: {e}") from e

        sub = claims.get("sub")
        if not sub:
            raise InvalidTokenError("Missing required claim: sub")
        return TokenClaims(sub=str(sub))

    def _get_jwks(self) -> dict[str, Any]:
        if self._is_cache_valid():
            return self._jwks  # type: ignore[return-value]

        with self._jwks_lock:
            if self._is_cache_valid():
                return self._jwks  # type: ignore[return-value]
            return self._fetch_jwks()

    def _is_cache_valid(self) -> bool:
        if self._jwks is None or self._jwks_fetched_at is None:
            return False
        now = datetime.now(tz=timezone.utc)
        return (now - self._jwks_fetched_at) < self._jwks_cache_ttl

    def _fetch_jwks(self) -> dict[str, Any]:
        try:
            response = requests.get(self.jwks_url, timeout=JWKS_REQUEST_TIMEOUT)
            response.raise_for_status()
            jwks = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("Failed to fetch JWKS from %s: %s", self.jwks_url, e)
            raise InvalidTokenError(f"Failed to fetch JWKS: {e}") from e

        self._jwks = jwks
        self._jwks_fetched_at = datetime.now(tz=timezone.utc)
        logger.info("Fetched %d signing keys from %s", len(jwks.get("keys", [])), self.jwks_url)
        return jwks
