from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from comanda.core.config import ORDER_CLAIM_INACTIVITY_MINUTES
from comanda.fsm.states import ConversationStep, TERMINAL_STEPS
from comanda.services.conversation_store import ConversationStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ClaimDecision:
    granted: bool
    incumbent_user_id: str | None = None
    incumbent_splitting: bool = False
    evicted_user_id: str | None = None
    evicted_step: str | None = None


@dataclass
class _Reservation:
    user_id: str
    claimed_at: datetime


_SPLIT_STEPS = {
    ConversationStep.SPLIT_BILL_NUMBER,
    ConversationStep.WAITING_FOR_CONTACTS,
}


class OrderClaimArbiter:
    """Garante um único dono ativo por comanda.

    Todas as decisões passam por um asyncio.Lock. As reservas em memória
    cobrem a janela entre a concessão e a primeira gravação da conversa do
    novo dono; depois disso o store é a fonte de verdade.
    """

    def __init__(
        self,
        store: ConversationStore,
        *,
        inactivity_threshold: timedelta = timedelta(minutes=ORDER_CLAIM_INACTIVITY_MINUTES),
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.inactivity_threshold = inactivity_threshold
        self._clock = clock
        self._reservations: dict[str, _Reservation] = {}
        self._lock = asyncio.Lock()

    async def claim(self, order_id: str, user_id: str) -> ClaimDecision:
        async with self._lock:
            now = self._clock()
            incumbent = await self._find_incumbent(order_id, user_id)

            if incumbent is None:
                self._reservations[order_id] = _Reservation(user_id=user_id, claimed_at=now)
                return ClaimDecision(granted=True)

            incumbent_id, last_activity, step, splitting = incumbent
            if now - last_activity > self.inactivity_threshold:
                logger.info(
                    "Previous user %s inactive since %s. Allowing %s to take over order %s.",
                    incumbent_id,
                    last_activity.isoformat(),
                    user_id,
                    order_id,
                )
                await self._evict(incumbent_id)
                self._reservations[order_id] = _Reservation(user_id=user_id, claimed_at=now)
                return ClaimDecision(granted=True, evicted_user_id=incumbent_id, evicted_step=step)

            logger.info("order %s refused to %s: held by %s at %s", order_id, user_id, incumbent_id, step)
            return ClaimDecision(
                granted=False,
                incumbent_user_id=incumbent_id,
                incumbent_splitting=splitting,
            )

    async def release(self, order_id: str, user_id: str) -> None:
        async with self._lock:
            reservation = self._reservations.get(order_id)
            if reservation is not None and reservation.user_id == user_id:
                del self._reservations[order_id]

    async def _find_incumbent(self, order_id: str, user_id: str):
        for state in await self.store.find_by_order(order_id):
            if state.user_id == user_id or state.current_step in TERMINAL_STEPS:
                continue
            splitting = state.current_step in _SPLIT_STEPS
            return state.user_id, state.last_activity_at, state.current_step.value, splitting

        reservation = self._reservations.get(order_id)
        if reservation is not None and reservation.user_id != user_id:
            stored = await self.store.load(reservation.user_id)
            if stored is not None and stored.last_activity_at > reservation.claimed_at:
                # a conversa do dono seguiu em frente depois da reserva (outra comanda ou fim)
                del self._reservations[order_id]
                return None
            return reservation.user_id, reservation.claimed_at, "reserved", False
        return None

    async def _evict(self, user_id: str) -> None:
        state = await self.store.load(user_id)
        if state is None:
            return
        state.current_step = ConversationStep.INCOMPLETE_ORDER
        await self.store.save(state)
