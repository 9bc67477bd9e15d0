from __future__ import annotations

from typing import Any, Protocol

from comanda.schemas.events import MediaBlob


class ProofExtractor(Protocol):
    name: str

    async def extract(self, media: MediaBlob) -> dict[str, Any]:
        ...
