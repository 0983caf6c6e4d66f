from __future__ import annotations

from contextvars import ContextVar, Token

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
principal_id_var: ContextVar[str | None] = ContextVar("principal_id", default=None)


def set_correlation_id(value: str | None) -> Token[str | None]:
    return correlation_id_var.set(value)


def reset_correlation_id(token: Token[str | None]) -> None:
    correlation_id_var.reset(token)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def set_principal_id(value: str | None) -> Token[str | None]:
    return principal_id_var.set(value)


def reset_principal_id(token: Token[str | None]) -> None:
    principal_id_var.reset(token)


def get_principal_id() -> str | None:
    return principal_id_var.get()
