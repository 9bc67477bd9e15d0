from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from threading import Lock

from comanda.schemas.conversation import Participant, SplitInfo
from comanda.services.money import ZERO, round_money

logger = logging.getLogger(__name__)


def phone_key(value: str | None) -> str:
    """Só os dígitos do número, sem o sufixo '@s.whatsapp.net'."""
    return re.sub(r"\D", "", (value or "").split("@")[0])


@dataclass
class LedgerPayment:
    payer_id: str
    amount: Decimal
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class OrderLedgerEntry:
    order_id: str
    total: Decimal
    split_info: SplitInfo | None = None
    payments: list[LedgerPayment] = field(default_factory=list)
    settled: bool = False

    @property
    def is_split(self) -> bool:
        return self.split_info is not None and self.split_info.finalized

    @property
    def amount_paid_so_far(self) -> Decimal:
        return round_money(sum((payment.amount for payment in self.payments), ZERO))

    def paid_by(self, payer_id: str) -> Decimal:
        key = phone_key(payer_id)
        return round_money(
            sum((payment.amount for payment in self.payments if phone_key(payment.payer_id) == key), ZERO)
        )

    def participant_for(self, payer_id: str) -> Participant | None:
        if self.split_info is None:
            return None
        key = phone_key(payer_id)
        for participant in self.split_info.participants:
            if phone_key(participant.phone) == key:
                return participant
        return None


def is_fully_paid(entry: OrderLedgerEntry) -> bool:
    """Pedido sem divisão: pagamentos acumulados >= total.

    Pedido dividido: cada participante precisa ter pago a própria parte; o
    excedente de um não cobre a falta de outro.
    """
    if not entry.is_split:
        return entry.amount_paid_so_far >= entry.total
    participants = entry.split_info.participants
    if not participants:
        return False
    return all(participant.paid_amount >= participant.expected_amount for participant in participants)


class ParticipantLedger(ABC):
    @abstractmethod
    def open_order(self, order_id: str, total: Decimal, *, carry_over: bool = False) -> OrderLedgerEntry:
        """Abre um registro novo para a comanda.

        Com carry_over o registro ainda não quitado de quem perdeu a comanda por
        inatividade é mantido; comanda quitada sempre recomeça do zero.
        """

    @abstractmethod
    def finalize_split(self, order_id: str, split_info: SplitInfo) -> OrderLedgerEntry:
        """Fixa os participantes e as partes esperadas de cada um."""

    @abstractmethod
    def record_payment(self, order_id: str, payer_id: str, amount: Decimal) -> OrderLedgerEntry:
        """Soma um pagamento validado ao pagador."""

    @abstractmethod
    def get(self, order_id: str) -> OrderLedgerEntry | None:
        """Retorna o registro atual da comanda."""

    @abstractmethod
    def settle(self, order_id: str) -> bool:
        """Marca a comanda como quitada; True apenas na primeira vez que ela fica totalmente paga."""

    def is_order_paid(self, order_id: str) -> bool:
        entry = self.get(order_id)
        return entry is not None and is_fully_paid(entry)


class InMemoryParticipantLedger(ParticipantLedger):
    def __init__(self) -> None:
        self._entries: dict[str, OrderLedgerEntry] = {}
        self._lock = Lock()

    def open_order(self, order_id: str, total: Decimal, *, carry_over: bool = False) -> OrderLedgerEntry:
        with self._lock:
            entry = self._entries.get(order_id)
            if carry_over and entry is not None and not entry.settled:
                entry.total = round_money(total)
                return entry
            entry = OrderLedgerEntry(order_id=order_id, total=round_money(total))
            self._entries[order_id] = entry
            return entry

    def finalize_split(self, order_id: str, split_info: SplitInfo) -> OrderLedgerEntry:
        with self._lock:
            entry = self._require(order_id)
            entry.split_info = split_info.model_copy(deep=True)
            entry.split_info.finalized = True
            # pagamentos feitos antes da divisão continuam valendo para quem pagou
            for participant in entry.split_info.participants:
                participant.paid_amount = entry.paid_by(participant.phone)
            return entry

    def record_payment(self, order_id: str, payer_id: str, amount: Decimal) -> OrderLedgerEntry:
        amount = round_money(amount)
        if amount <= ZERO:
            raise ValueError("amount deve ser positivo")
        with self._lock:
            entry = self._require(order_id)
            entry.payments.append(LedgerPayment(payer_id=payer_id, amount=amount))
            participant = entry.participant_for(payer_id)
            if participant is not None:
                participant.paid_amount = round_money(participant.paid_amount + amount)
            elif entry.is_split:
                logger.warning(
                    "payment from %s does not match any participant of order %s", payer_id, order_id
                )
            return entry

    def settle(self, order_id: str) -> bool:
        with self._lock:
            entry = self._entries.get(order_id)
            if entry is None or entry.settled or not is_fully_paid(entry):
                return False
            entry.settled = True
            return True

    def get(self, order_id: str) -> OrderLedgerEntry | None:
        with self._lock:
            return self._entries.get(order_id)

    def _require(self, order_id: str) -> OrderLedgerEntry:
        entry = self._entries.get(order_id)
        if entry is None:
            raise KeyError(f"Comanda sem registro de pagamentos: {order_id}")
        return entry
