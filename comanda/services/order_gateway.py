from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

import httpx

from comanda.core.config import ORDER_GATEWAY, POS_BASE_URL, POS_TIMEOUT_SECONDS
from comanda.schemas.conversation import OrderItem
from comanda.services.money import ZERO, format_brl, round_money
from comanda.services.retry import CollaboratorError

logger = logging.getLogger(__name__)


class OrderLookupError(CollaboratorError):
    pass


@dataclass
class OrderSnapshot:
    message: str
    items: list[OrderItem] = field(default_factory=list)
    total: Decimal = ZERO
    discount: Decimal = ZERO


class OrderGateway(Protocol):
    async def fetch_order_snapshot(self, order_id: str) -> OrderSnapshot:
        ...

    async def start_payment(self, order_id: str) -> None:
        ...

    async def close_order(self, order_id: str) -> None:
        ...


def _item_from_payload(raw: dict[str, Any]) -> OrderItem:
    quantity = int(raw.get("quantity") or raw.get("quantidade") or 1)
    unit_price = round_money(raw.get("unit_price") or raw.get("preco_unitario") or raw.get("price") or 0)
    total = raw.get("total") or raw.get("valor_total")
    return OrderItem(
        name=str(raw.get("name") or raw.get("nome") or "Item"),
        quantity=quantity,
        unit_price=unit_price,
        total=round_money(total) if total is not None else round_money(unit_price * quantity),
    )


def snapshot_from_payload(payload: dict[str, Any]) -> OrderSnapshot:
    details = payload.get("details") or {}
    items = [_item_from_payload(item) for item in details.get("orders") or []]
    return OrderSnapshot(
        message=str(payload.get("message") or ""),
        items=items,
        total=round_money(details.get("total") or 0),
        discount=round_money(details.get("discount") or 0),
    )


class PosOrderGateway:
    """Cliente HTTP do PDV: /message, /payment e /close recebem {"table_id": N}."""

    def __init__(self, base_url: str | None = None, *, timeout: float = POS_TIMEOUT_SECONDS) -> None:
        self.base_url = (base_url or POS_BASE_URL).rstrip("/")
        self.timeout = timeout

    async def _post(self, path: str, order_id: str) -> dict[str, Any]:
        url = f"{self.base_url}/{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json={"table_id": int(order_id)})
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise OrderLookupError(f"PDV {path} falhou para a comanda {order_id}: {exc}") from exc
        if not response.content:
            return {}
        return response.json()

    async def fetch_order_snapshot(self, order_id: str) -> OrderSnapshot:
        return snapshot_from_payload(await self._post("message", order_id))

    async def start_payment(self, order_id: str) -> None:
        await self._post("payment", order_id)

    async def close_order(self, order_id: str) -> None:
        await self._post("close", order_id)


def render_order_message(items: list[OrderItem], total: Decimal, discount: Decimal = ZERO) -> str:
    lines = []
    for item in items:
        lines.append(
            f"(🍽️) {item.name}\n{item.quantity} un. x {format_brl(item.unit_price)} = {format_brl(item.total)}"
        )
    body = "\n\n".join(lines)
    body += "\n\n-----------------------------------\n\n"
    if discount > ZERO:
        body += f"🏷️ Desconto: {format_brl(discount)}\n"
    body += f"💳 Total Bruto: {format_brl(total)}"
    return body


class MockOrderGateway:
    """Comandas fixas para dev e simulador."""

    def __init__(self, orders: dict[str, OrderSnapshot] | None = None) -> None:
        self.orders = orders if orders is not None else {}
        self.started: list[str] = []
        self.closed: list[str] = []

    async def fetch_order_snapshot(self, order_id: str) -> OrderSnapshot:
        snapshot = self.orders.get(order_id)
        if snapshot is not None:
            return snapshot
        items = [
            OrderItem(name="Prato 1", quantity=1, unit_price=Decimal("50.00"), total=Decimal("50.00")),
            OrderItem(name="Prato 2", quantity=2, unit_price=Decimal("30.00"), total=Decimal("60.00")),
            OrderItem(name="Taxa de Serviço", quantity=1, unit_price=Decimal("11.00"), total=Decimal("11.00")),
        ]
        total = Decimal("121.00")
        return OrderSnapshot(message=render_order_message(items, total), items=items, total=total)

    async def start_payment(self, order_id: str) -> None:
        self.started.append(order_id)

    async def close_order(self, order_id: str) -> None:
        self.closed.append(order_id)


def build_order_gateway(name: str | None = None) -> OrderGateway:
    gateway = (name or ORDER_GATEWAY or "mock").strip().lower()
    if gateway == "pos":
        return PosOrderGateway()
    return MockOrderGateway()
