from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from jose import JWTError, jwt
from starlette.requests import Request

from bizflow.core.config import get_settings


ANONYMOUS = "anonymous"


@dataclass
class AuthUser:
    sub: str
    roles: list[str]
    tenant_id: str | None = None


def decode_bearer_token(request: Request) -> dict[str, Any] | None:
    """Claims of a valid `Authorization: Bearer` token, or None."""
    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        return None

    settings = get_settings()
    try:
        claims = jwt.decode(
            auth_header.removeprefix("Bearer "),
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        return None
    return claims if isinstance(claims, dict) else None


async def get_current_user(request: Request) -> AuthUser:
    claims = decode_bearer_token(request)
    if claims is None:
        return AuthUser(sub=ANONYMOUS, roles=["guest"])

    roles = claims.get("roles")
    if not isinstance(roles, list):
        roles = ["user"]
    tenant_id = claims.get("tenant_id")
    user = AuthUser(
        sub=str(claims.get("sub", ANONYMOUS)),
        roles=[str(role) for role in roles],
        tenant_id=str(tenant_id) if tenant_id else None,
    )

    context = getattr(request.state, "context", None)
    if context is not None:
        context.user_id = user.sub
        if user.tenant_id:
            context.tenant_id = user.tenant_id
    return user
