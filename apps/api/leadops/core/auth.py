from dataclasses import dataclass
from typing import Any

from jose import JWTError, jwt
from starlette.requests import Request

from leadops.core.config import get_settings


@dataclass
class AuthUser:
    sub: str
    roles: list[str]


def bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    return auth_header[len("Bearer ") :] if auth_header.startswith("Bearer ") else ""


def decode_token(token: str) -> dict[str, Any] | None:
    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


def decode_subject(token: str) -> str | None:
    payload = decode_token(token)
    if payload is None or payload.get("sub") is None:
        return None
    return str(payload["sub"])


def issue_token(sub: str, roles: list[str]) -> str:
    """Signed token whose ``sub`` is a principal id and ``roles`` its granted permissions."""

    settings = get_settings()
    return jwt.encode({"sub": sub, "roles": roles}, settings.jwt_secret, algorithm=settings.jwt_algorithm)


async def get_current_user(request: Request) -> AuthUser:
    token = bearer_token(request)
    payload = decode_token(token) if token else None
    if payload is None:
        return AuthUser(sub="anonymous", roles=[])

    roles = payload.get("roles", [])
    if not isinstance(roles, list):
        roles = []
    return AuthUser(sub=str(payload.get("sub", "anonymous")), roles=[str(role) for role in roles])
