from __future__ import annotations

import logging
import uuid

from comanda.schemas.events import MediaBlob
from comanda.whatsapp.base import OutboundMessage, WhatsAppProvider, WhatsAppSendResult

logger = logging.getLogger(__name__)


class MockWhatsAppProvider(WhatsAppProvider):
    """Guarda as mensagens em memória; usado em dev e no simulador."""

    def __init__(self) -> None:
        self.sent: list[OutboundMessage] = []
        self.media: dict[str, MediaBlob] = {}

    async def send(self, message: OutboundMessage) -> WhatsAppSendResult:
        self.sent.append(message)
        logger.info("mock whatsapp send to=%s kind=%s", message.to, message.kind)
        return WhatsAppSendResult(status="sent", provider_message_id=f"mock-{uuid.uuid4().hex[:10]}")

    async def download_media(self, media_id: str) -> MediaBlob:
        return self.media.get(media_id) or MediaBlob(media_id=media_id)

    def sent_to(self, to: str) -> list[OutboundMessage]:
        return [message for message in self.sent if message.to == to]
