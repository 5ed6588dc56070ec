"""Bearer token authentication and role checks.

Tokens are JWTs verified with PyJWT against ``AUTH_JWT_SECRET`` using the
algorithms listed in ``AUTH_JWT_ALGORITHMS``. A verified token becomes a
``Principal`` (subject, role, claims); routers only ever see the principal.

Design principles:
- Single Responsibility: Only handles token verification and role checks
- Dependency Injection: Used via FastAPI Depends() for loose coupling
- Configuration-driven: Secret and algorithms managed via env vars
- Testable: ``validate_token`` is a plain function with no FastAPI coupling
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Annotated, Any, Awaitable, Callable

import jwt
from fastapi import Depends, Header

from app.core.config import AuthSettings, settings
from app.core.errors import AuthenticationAppError, AuthorizationAppError
from app.core.logging import hash_identifier

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class Principal:
    """Authenticated caller."""

    subject: str
    role: str
    claims: dict[str, Any] = field(default_factory=dict)


ANONYMOUS_ADMIN = Principal(subject="anonymous", role="admin")


def strip_bearer(token: str) -> str:
    """Remove an optional ``Bearer `` prefix.

    Examples:
        >>> strip_bearer("Bearer abc.def.ghi")
        'abc.def.ghi'
        >>> strip_bearer("abc.def.ghi")
        'abc.def.ghi'
    """

    token = token.strip()
    if token[: len(BEARER_PREFIX)].lower() == BEARER_PREFIX.lower():
        return token[len(BEARER_PREFIX):].strip()
    return token


def validate_token(token: str, auth_settings: AuthSettings | None = None) -> Principal:
    """Verify a bearer token and build the principal it identifies.

    Args:
        token: Raw JWT, with or without the ``Bearer `` prefix.
        auth_settings: Optional settings override (tests); defaults to global settings.

    Returns:
        Principal with ``role`` taken from the ``role`` claim or the default role.

    Raises:
        AuthenticationAppError: If verification is not configured, the token is
            expired or invalid, or it carries no subject.
    """

    cfg = auth_settings or settings.auth

    if not cfg.jwt_secret:
        logger.error("auth.not_configured", extra={"reason": "jwt_secret_missing"})
        raise AuthenticationAppError(
            code="auth_not_configured",
            message="Token authentication is enabled but no verification key is configured",
            details={"hint": "Set AUTH_JWT_SECRET or disable auth with AUTH_REQUIRED=false"},
        )

    raw = strip_bearer(token)
    if not raw:
        raise AuthenticationAppError(code="missing_token", message="Missing bearer token")

    try:
        claims = jwt.decode(raw, cfg.jwt_secret, algorithms=cfg.algorithms)
    except jwt.ExpiredSignatureError as exc:
        logger.warning("auth.token_rejected", extra={"reason": "expired"})
        raise AuthenticationAppError(code="token_expired", message="Token expired") from exc
    except jwt.InvalidTokenError as exc:
        logger.warning(
            "auth.token_rejected",
            extra={"reason": "invalid", "error_type": type(exc).__name__},
        )
        raise AuthenticationAppError(code="invalid_token", message="Invalid token") from exc

    subject = claims.get("sub")
    if not subject or not isinstance(subject, str):
        logger.warning("auth.token_rejected", extra={"reason": "missing_subject"})
        raise AuthenticationAppError(code="invalid_token", message="Invalid token")

    role = str(claims.get("role") or cfg.default_role)
    return Principal(subject=subject, role=role, claims=claims)


async def get_principal(
    authorization: Annotated[str | None, Header(alias="Authorization")] = None,
) -> Principal:
    """FastAPI dependency resolving the caller from the Authorization header.

    With ``AUTH_REQUIRED=false`` every caller is an anonymous admin (local
    development only).

    Raises:
        AuthenticationAppError: 401 when the header is missing or the token is invalid.
    """

    if not settings.auth.required:
        logger.debug("auth.skipped", extra={"reason": "auth_required_false"})
        return ANONYMOUS_ADMIN

    if not authorization:
        logger.warning("auth.missing_token", extra={"auth_required": True})
        raise AuthenticationAppError(
            code="missing_token",
            message="Missing bearer token. Provide an Authorization: Bearer <token> header.",
        )

    principal = validate_token(authorization)
    logger.info(
        "auth.success",
        extra={"subject_hash": hash_identifier(principal.subject), "role": principal.role},
    )
    return principal


def require_role(*roles: str) -> Callable[..., Awaitable[Principal]]:
    """Create a dependency that admits only principals holding one of ``roles``.

    Usage:
        operator_principal = require_role("operator", "admin")

        @router.get("/buses")
        async def list_buses(principal: Annotated[Principal, Depends(operator_principal)]):
            ...
    """

    allowed = frozenset(roles)

    async def _require_role(
        principal: Annotated[Principal, Depends(get_principal)],
    ) -> Principal:
        if principal.role not in allowed:
            logger.warning(
                "auth.forbidden",
                extra={
                    "subject_hash": hash_identifier(principal.subject),
                    "role": principal.role,
                    "required_roles": sorted(allowed),
                },
            )
            raise AuthorizationAppError(
                code="insufficient_role",
                message="Insufficient role for this resource",
                details={"required_roles": sorted(allowed)},
            )
        return principal

    return _require_role
