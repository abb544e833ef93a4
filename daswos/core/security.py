# daswos/core/security.py
"""
JWT access tokens (python-jose, HS*).

Tokens are issued by the DasWos auth service; this module only needs to
create them (tools, tests) and validate them on the coin API.
Claims: sub (user id), type=access, is_admin (optional), iss/aud/iat/nbf/exp/jti.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, Optional, Union

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JOSEError, JWTClaimsError, JWTError

from daswos.core.exceptions import AuthenticationError

if TYPE_CHECKING:  # pragma: no cover
    from daswos.core.config import Settings

JWT_ISSUER = "daswos"
JWT_AUDIENCE = "daswos-api"
JWT_LEEWAY_SECONDS = 10


@dataclass(frozen=True)
class Principal:
    user_id: int
    is_admin: bool = False


def _utcnow() -> datetime:
    return datetime.now(UTC)


def create_access_token(
    settings: "Settings",
    subject: Union[str, int],
    *,
    is_admin: bool = False,
    expires_delta: Optional[timedelta] = None,
    extra: Optional[dict[str, Any]] = None,
) -> str:
    now = _utcnow()
    expires = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    claims: dict[str, Any] = {
        "iss": JWT_ISSUER,
        "aud": JWT_AUDIENCE,
        "sub": str(subject),
        "type": "access",
        "iat": int(now.timestamp()),
        "nbf": int((now - timedelta(seconds=1)).timestamp()),
        "exp": int(expires.timestamp()),
        "jti": secrets.token_urlsafe(16),
    }
    if is_admin:
        claims["is_admin"] = True
    if extra:
        claims.update(extra)
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(settings: "Settings", token: str) -> dict[str, Any]:
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            audience=JWT_AUDIENCE,
            issuer=JWT_ISSUER,
            options={"leeway": JWT_LEEWAY_SECONDS},
        )
    except ExpiredSignatureError as e:
        raise AuthenticationError("Token expired", code="TOKEN_EXPIRED") from e
    except JWTClaimsError as e:
        raise AuthenticationError(f"Invalid claims: {e}", code="INVALID_TOKEN") from e
    except (JWTError, JOSEError) as e:
        raise AuthenticationError("Invalid token", code="INVALID_TOKEN") from e

    if payload.get("type") != "access":
        raise AuthenticationError("Unexpected token type", code="INVALID_TOKEN")
    return payload


def principal_from_token(settings: "Settings", token: str) -> Principal:
    payload = decode_access_token(settings, token)
    sub = str(payload.get("sub") or "")
    if not sub.isdigit():
        raise AuthenticationError("Token subject is not a user id", code="INVALID_TOKEN")
    return Principal(user_id=int(sub), is_admin=bool(payload.get("is_admin", False)))


__all__ = ["Principal", "create_access_token", "decode_access_token", "principal_from_token"]
