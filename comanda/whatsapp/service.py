from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from comanda.core.config import IS_DEV, MESSAGE_PACING_SECONDS, WHATSAPP_PROVIDER
from comanda.schemas.events import MediaBlob
from comanda.whatsapp.base import OutboundMessage, WhatsAppProvider, WhatsAppSendResult
from comanda.whatsapp.cloud_provider import CloudWhatsAppProvider
from comanda.whatsapp.mock_provider import MockWhatsAppProvider

logger = logging.getLogger(__name__)


def build_provider(name: str | None = None) -> WhatsAppProvider:
    provider = (name or WHATSAPP_PROVIDER or "mock").strip().lower()
    if provider == "cloud":
        return CloudWhatsAppProvider()
    return MockWhatsAppProvider()


class WhatsAppService:
    """Envio sequencial com pausa fixa entre mensagens para o mesmo destinatário.

    Nenhuma garantia de entrega: falhas do provedor são logadas e o fluxo segue.
    """

    def __init__(
        self,
        provider: WhatsAppProvider | None = None,
        *,
        fallback: WhatsAppProvider | None = None,
        pacing_seconds: float = MESSAGE_PACING_SECONDS,
        sleep=asyncio.sleep,
    ) -> None:
        self.provider = provider or build_provider()
        self._fallback = fallback if fallback is not None else (MockWhatsAppProvider() if IS_DEV else None)
        self.pacing_seconds = pacing_seconds
        self._sleep = sleep

    async def send(self, message: OutboundMessage) -> WhatsAppSendResult:
        try:
            result = await self.provider.send(message)
        except Exception as exc:
            logger.exception("whatsapp send raised to=%s", message.to)
            result = WhatsAppSendResult(status="failed", error=str(exc))

        if result.status == "failed" and self._should_fallback():
            logger.warning("WhatsApp Cloud falhou, usando mock (to=%s)", message.to)
            return await self._fallback.send(message)
        return result

    async def send_all(self, messages: Iterable[OutboundMessage]) -> list[WhatsAppSendResult]:
        results = []
        previous_to = None
        for message in messages:
            if previous_to == message.to and self.pacing_seconds > 0:
                await self._sleep(self.pacing_seconds)
            results.append(await self.send(message))
            previous_to = message.to
        return results

    async def download_media(self, media_id: str) -> MediaBlob:
        return await self.provider.download_media(media_id)

    def _should_fallback(self) -> bool:
        return self._fallback is not None and self.provider is not self._fallback and isinstance(
            self.provider, CloudWhatsAppProvider
        )
