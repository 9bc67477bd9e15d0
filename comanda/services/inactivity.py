from __future__ import annotations

import asyncio
import logging

from comanda.core.config import INACTIVITY_SWEEP_SECONDS
from comanda.schemas.events import InboundEvent
from comanda.services.conversation_store import ConversationStore

logger = logging.getLogger(__name__)


class InactivitySweeper:
    """Entrega um TICK a cada conversa ativa para os lembretes e abandonos.

    Uma conversa com erro não interrompe a varredura das demais.
    """

    def __init__(self, engine, store: ConversationStore, *, interval_seconds: float = INACTIVITY_SWEEP_SECONDS, sleep=asyncio.sleep) -> None:
        self.engine = engine
        self.store = store
        self.interval_seconds = interval_seconds
        self._sleep = sleep

    async def sweep(self) -> int:
        ticked = 0
        for state in await self.store.list_active():
            try:
                await self.engine.handle(InboundEvent.tick(state.user_id))
                ticked += 1
            except Exception:
                logger.exception("inactivity tick failed for %s", state.user_id)
        return ticked

    async def run_forever(self) -> None:
        logger.info("inactivity sweeper started (every %.0fs)", self.interval_seconds)
        while True:
            await self.sweep()
            await self._sleep(self.interval_seconds)
