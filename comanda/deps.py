# comanda/deps.py
from __future__ import annotations

import logging

from fastapi import HTTPException, Request, status

from comanda.core.config import CONVERSATION_STORE
from comanda.extraction.service import get_extractor
from comanda.fsm.engine import ConversationEngine
from comanda.services.attendant import AttendantNotifier, WhatsAppGroupChannel
from comanda.services.conversation_store import InMemoryConversationStore, SqlConversationStore
from comanda.services.ledger import InMemoryParticipantLedger
from comanda.services.order_gateway import build_order_gateway
from comanda.services.processed_messages import InMemoryProcessedMessages, SqlProcessedMessages
from comanda.whatsapp.service import WhatsAppService

logger = logging.getLogger(__name__)


def build_engine(store_kind: str | None = None) -> ConversationEngine:
    """Monta o engine com os colaboradores escolhidos pelas variáveis de ambiente."""
    kind = (store_kind or CONVERSATION_STORE or "memory").strip().lower()
    if kind == "sql":
        store = SqlConversationStore()
        processed = SqlProcessedMessages()
    else:
        store = InMemoryConversationStore()
        processed = InMemoryProcessedMessages()

    sender = WhatsAppService()
    attendant = AttendantNotifier(WhatsAppGroupChannel(sender))
    logger.info("engine built store=%s provider=%s", kind, type(sender.provider).__name__)
    return ConversationEngine(
        store=store,
        sender=sender,
        orders=build_order_gateway(),
        extractor=get_extractor(),
        ledger=InMemoryParticipantLedger(),
        attendant=attendant,
        processed=processed,
    )


def get_engine(request: Request) -> ConversationEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Engine não inicializado",
        )
    return engine
