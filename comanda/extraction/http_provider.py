from __future__ import annotations

from typing import Any

import httpx

from comanda.core.config import EXTRACTION_API_KEY, EXTRACTION_API_URL
from comanda.schemas.events import MediaBlob
from comanda.services.retry import CollaboratorError


class HttpProofExtractor:
    """Envia o arquivo do comprovante para o serviço de OCR/LLM e devolve os campos extraídos."""

    name = "http"

    def __init__(self, url: str | None = None, *, api_key: str | None = None, timeout: float = 60.0) -> None:
        self.url = url or EXTRACTION_API_URL
        self.api_key = api_key if api_key is not None else EXTRACTION_API_KEY
        self.timeout = timeout

    async def extract(self, media: MediaBlob) -> dict[str, Any]:
        if not self.url:
            raise CollaboratorError("EXTRACTION_API_URL não configurada")
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        files = {"file": (media.filename or "comprovante", media.content, media.mime_type)}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, headers=headers, files=files)
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise CollaboratorError(f"Falha na extração do comprovante: {exc}") from exc
        # alguns serviços devolvem {"data": {...}}
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            payload = payload["data"]
        if not isinstance(payload, dict):
            raise CollaboratorError("Resposta do extrator em formato inesperado")
        return payload
