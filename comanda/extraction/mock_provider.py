from __future__ import annotations

import json
from typing import Any

from comanda.schemas.events import MediaBlob
from comanda.services.retry import CollaboratorError


class MockProofExtractor:
    """Lê o comprovante como JSON já estruturado (simulador e testes manuais)."""

    name = "mock"

    async def extract(self, media: MediaBlob) -> dict[str, Any]:
        try:
            payload = json.loads(media.content.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise CollaboratorError(f"Comprovante não reconhecido pelo extrator mock: {exc}") from exc
        if not isinstance(payload, dict):
            raise CollaboratorError("Comprovante não reconhecido pelo extrator mock")
        return payload
