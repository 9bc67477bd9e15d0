from __future__ import annotations

import logging

from pydantic import ValidationError

from comanda.core.config import PROOF_EXTRACTOR
from comanda.extraction.base import ProofExtractor
from comanda.extraction.http_provider import HttpProofExtractor
from comanda.extraction.mock_provider import MockProofExtractor
from comanda.schemas.conversation import PaymentProofRecord
from comanda.schemas.events import MediaBlob
from comanda.services.retry import CollaboratorError

logger = logging.getLogger(__name__)


class ProofExtractionError(CollaboratorError):
    pass


def get_extractor(name: str | None = None) -> ProofExtractor:
    provider = (name or PROOF_EXTRACTOR or "mock").strip().lower()
    if provider == "http":
        return HttpProofExtractor()
    return MockProofExtractor()


async def extract_payment_proof(extractor: ProofExtractor, media: MediaBlob) -> PaymentProofRecord:
    try:
        raw_payload = await extractor.extract(media)
    except ProofExtractionError:
        raise
    except CollaboratorError as exc:
        raise ProofExtractionError(str(exc)) from exc

    try:
        return PaymentProofRecord.from_extraction(raw_payload)
    except (ValidationError, ValueError) as exc:
        logger.warning("proof extraction from %s returned invalid payload: %s", extractor.name, exc)
        raise ProofExtractionError(f"validation_error: {exc}") from exc
