"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from fastapi import Depends, HTTPException, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from quadratic_api.auth import InvalidTokenError, TokenValidator
from quadratic_api.completions import CompletionClient, OpenAICompletionClient
from quadratic_api.config import get_settings
from quadratic_api.db import DbClient, InMemoryDbClient, PostgresDbClient
from quadratic_api.ratelimit import (
    ANONYMOUS_KEY,
    InMemoryRateLimiter,
    RateLimiter,
    RedisRateLimiter,
)

logger = logging.getLogger(__name__)

_db_client: DbClient | None = None
_rate_limiter: RateLimiter | None = None
_completion_client: CompletionClient | None = None
_token_validator: TokenValidator | None = None

bearer_scheme = HTTPBearer(auto_error=False)


def get_db_client() -> DbClient:
    """
    Return a singleton DB client shared by every request handler.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(settings.database_url)
    return _db_client


def get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter:
        return _rate_limiter

    settings = get_settings()
    if settings.redis_url:
        _rate_limiter = RedisRateLimiter(
            url=settings.redis_url,
            max_requests=settings.rate_limit_ai_requests_max,
            window_ms=settings.rate_limit_ai_window_ms,
            key_prefix=settings.rate_limit_key_prefix,
        )
    else:
        _rate_limiter = InMemoryRateLimiter(
            max_requests=settings.rate_limit_ai_requests_max,
            window_ms=settings.rate_limit_ai_window_ms,
        )
    return _rate_limiter


def get_completion_client() -> CompletionClient:
    global _completion_client
    if _completion_client:
        return _completion_client

    settings = get_settings()
    _completion_client = OpenAICompletionClient(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
    )
    return _completion_client


def get_token_validator() -> TokenValidator:
    global _token_validator
    if _token_validator:
        return _token_validator

    settings = get_settings()
    _token_validator = TokenValidator(
        issuer=settings.auth0_issuer,
        audience=settings.auth0_audience,
        secret=settings.auth_jwt_secret,
        jwks_cache_ttl=timedelta(seconds=settings.jwks_cache_ttl_seconds),
    )
    return _token_validator


def reset_dependencies() -> None:
    """Drop cached clients so the next request rebuilds them from settings."""
    global _db_client, _rate_limiter, _completion_client, _token_validator
    _db_client = None
    _rate_limiter = None
    _completion_client = None
    _token_validator = None


def require_auth_subject(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    validator: TokenValidator = Depends(get_token_validator),
) -> str:
    """Validate the bearer token and return its auth-subject."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        claims = validator.validate_token(credentials.credentials)
    except InvalidTokenError as e:
        logger.info("Rejected bearer token: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e
    return claims.sub


def enforce_ai_rate_limit(
    response: Response,
    subject: str = Depends(require_auth_subject),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> str:
    """Count the request against the caller's window; 429 once it is used up."""
    result = limiter.hit(subject or ANONYMOUS_KEY)
    headers = result.headers()
    if not result.allowed:
        logger.info("Rate limit exceeded for %s", subject or ANONYMOUS_KEY)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests, please try again later.",
            headers=headers,
        )
    response.headers.update(headers)
    return subject
