import asyncio
import json
from decimal import Decimal

import httpx
import pytest

from comanda.extraction.http_provider import HttpProofExtractor
from comanda.extraction.mock_provider import MockProofExtractor
from comanda.extraction.service import ProofExtractionError, extract_payment_proof, get_extractor
from comanda.schemas.events import MediaBlob
from comanda.services.order_gateway import (
    MockOrderGateway,
    OrderLookupError,
    PosOrderGateway,
    build_order_gateway,
    snapshot_from_payload,
)
from comanda.services.retry import CollaboratorError
from tests.fixtures_data import POS_MESSAGE_RESPONSE, proof_payload


def _patch_httpx(monkeypatch, handler):
    real_client = httpx.AsyncClient

    def _client(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", _client)


def _media(payload) -> MediaBlob:
    return MediaBlob(content=json.dumps(payload).encode("utf-8"), mime_type="image/jpeg", filename="pix.jpg")


def test_mock_extractor_reads_json_content():
    payload = proof_payload("121,00", "E1")

    assert asyncio.run(MockProofExtractor().extract(_media(payload))) == payload


def test_mock_extractor_rejects_binary_content():
    with pytest.raises(CollaboratorError):
        asyncio.run(MockProofExtractor().extract(MediaBlob(content=b"\xff\xd8\xff")))


def test_extract_payment_proof_returns_record():
    proof = asyncio.run(extract_payment_proof(MockProofExtractor(), _media(proof_payload("40,33", "E9"))))

    assert proof.amount == Decimal("40.33")
    assert proof.external_transaction_id == "E9"


def test_extract_payment_proof_wraps_invalid_payloads():
    with pytest.raises(ProofExtractionError) as exc_info:
        asyncio.run(extract_payment_proof(MockProofExtractor(), _media({"valor": "10,00"})))

    assert str(exc_info.value).startswith("validation_error")


def test_extract_payment_proof_wraps_collaborator_errors():
    with pytest.raises(ProofExtractionError):
        asyncio.run(extract_payment_proof(MockProofExtractor(), MediaBlob(content=b"[]")))


def test_get_extractor_by_name():
    assert isinstance(get_extractor("http"), HttpProofExtractor)
    assert isinstance(get_extractor("mock"), MockProofExtractor)


def test_http_extractor_posts_file_and_unwraps_data(monkeypatch):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = request.read()
        return httpx.Response(200, json={"data": proof_payload("121,00", "E1")})

    _patch_httpx(monkeypatch, handler)
    extractor = HttpProofExtractor("https://extrator.local/extract", api_key="chave")

    payload = asyncio.run(extractor.extract(_media({"qualquer": "coisa"})))

    assert payload["id_transacao"] == "E1"
    assert seen["auth"] == "Bearer chave"
    assert b"pix.jpg" in seen["body"]


def test_http_extractor_wraps_http_errors(monkeypatch):
    _patch_httpx(monkeypatch, lambda request: httpx.Response(502, text="bad gateway"))
    extractor = HttpProofExtractor("https://extrator.local/extract", api_key="")

    with pytest.raises(CollaboratorError):
        asyncio.run(extractor.extract(_media({})))


def test_http_extractor_requires_url():
    with pytest.raises(CollaboratorError):
        asyncio.run(HttpProofExtractor("", api_key="").extract(_media({})))


def test_snapshot_from_payload_accepts_portuguese_and_english_items():
    snapshot = snapshot_from_payload(POS_MESSAGE_RESPONSE)

    assert snapshot.total == Decimal("121.00")
    assert [item.name for item in snapshot.items] == ["Picanha", "Taxa de Serviço"]
    assert snapshot.items[0].total == Decimal("110.00")
    assert snapshot.items[1].total == Decimal("11.00")
    assert snapshot.message.startswith("(🍽️) Picanha")


def test_pos_gateway_posts_table_id(monkeypatch):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append((request.url.path, json.loads(request.read())))
        if request.url.path.endswith("/message"):
            return httpx.Response(200, json=POS_MESSAGE_RESPONSE)
        return httpx.Response(204)

    _patch_httpx(monkeypatch, handler)
    gateway = PosOrderGateway("https://pdv.local/api")

    async def _run():
        snapshot = await gateway.fetch_order_snapshot("12")
        await gateway.start_payment("12")
        await gateway.close_order("12")
        return snapshot

    snapshot = asyncio.run(_run())

    assert snapshot.total == Decimal("121.00")
    assert requests == [
        ("/api/message", {"table_id": 12}),
        ("/api/payment", {"table_id": 12}),
        ("/api/close", {"table_id": 12}),
    ]


def test_pos_gateway_raises_lookup_error(monkeypatch):
    _patch_httpx(monkeypatch, lambda request: httpx.Response(500, json={"error": "down"}))

    with pytest.raises(OrderLookupError):
        asyncio.run(PosOrderGateway("https://pdv.local/api").fetch_order_snapshot("12"))


def test_mock_gateway_default_order_and_tracking():
    gateway = MockOrderGateway()

    async def _run():
        snapshot = await gateway.fetch_order_snapshot("12")
        await gateway.start_payment("12")
        await gateway.close_order("12")
        return snapshot

    snapshot = asyncio.run(_run())

    assert snapshot.total == Decimal("121.00")
    assert "Total Bruto: R$ 121,00" in snapshot.message
    assert gateway.started == ["12"]
    assert gateway.closed == ["12"]
    assert isinstance(build_order_gateway("pos"), PosOrderGateway)
