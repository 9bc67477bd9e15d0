from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator


_REQUEST_ID_CTX: ContextVar[str | None] = ContextVar("request_id", default=None)
_USER_ID_CTX: ContextVar[str | None] = ContextVar("user_id", default=None)
_ORDER_ID_CTX: ContextVar[str | None] = ContextVar("order_id", default=None)


def set_request_context(
    *, request_id: str | None = None, user_id: str | None = None, order_id: str | None = None
) -> None:
    if request_id is not None:
        _REQUEST_ID_CTX.set(request_id)
    if user_id is not None:
        _USER_ID_CTX.set(user_id)
    if order_id is not None:
        _ORDER_ID_CTX.set(order_id)


@contextmanager
def request_scope(
    *, request_id: str | None = None, user_id: str | None = None, order_id: str | None = None
) -> Iterator[None]:
    """Vincula request/usuário/comanda aos logs enquanto o bloco roda.

    Na saída os valores anteriores voltam, então um evento processado dentro de
    uma requisição HTTP não apaga o request_id da própria requisição.
    """
    tokens = [
        (_REQUEST_ID_CTX, _REQUEST_ID_CTX.set(request_id or _REQUEST_ID_CTX.get())),
        (_USER_ID_CTX, _USER_ID_CTX.set(user_id or _USER_ID_CTX.get())),
        (_ORDER_ID_CTX, _ORDER_ID_CTX.set(order_id or _ORDER_ID_CTX.get())),
    ]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def get_request_id() -> str | None:
    return _REQUEST_ID_CTX.get()


def get_user_id() -> str | None:
    return _USER_ID_CTX.get()


def get_order_id() -> str | None:
    return _ORDER_ID_CTX.get()
