import asyncio
from decimal import Decimal
from types import SimpleNamespace

import pytest

from comanda.schemas.conversation import Participant, SplitInfo
from comanda.services.attendant import (
    AttendantNotifier,
    GroupTopic,
    WhatsAppGroupChannel,
    payment_summary,
    refund_request,
)
from comanda.services.ledger import InMemoryParticipantLedger
from tests.fixtures_data import MARIA_PHONE, ORIGINATOR_PHONE


class FakeSender:
    def __init__(self, status="sent"):
        self.status = status
        self.sent = []

    async def send(self, message):
        self.sent.append(message)
        return SimpleNamespace(status=self.status, error="boom" if self.status == "failed" else None)


class FailingChannel:
    async def notify(self, topic, text):
        raise RuntimeError("grupo indisponível")


def test_group_channel_routes_topics_to_configured_groups():
    sender = FakeSender()
    channel = WhatsAppGroupChannel(
        sender,
        groups={GroupTopic.WAITER: "garcons@g.us", GroupTopic.REFUND: "estornos@g.us"},
    )

    asyncio.run(channel.notify(GroupTopic.REFUND, "estorno"))
    asyncio.run(channel.notify(GroupTopic.OPERATOR, "sem grupo"))

    assert [(message.to, message.text) for message in sender.sent] == [("estornos@g.us", "estorno")]


def test_group_channel_raises_when_provider_fails():
    channel = WhatsAppGroupChannel(FakeSender(status="failed"), groups={GroupTopic.WAITER: "garcons@g.us"})

    with pytest.raises(RuntimeError):
        asyncio.run(channel.notify(GroupTopic.WAITER, "aviso"))


def test_notifier_swallows_channel_errors():
    notifier = AttendantNotifier(FailingChannel())

    asyncio.run(notifier.notify(GroupTopic.WAITER, "aviso"))


def test_single_payer_summary_shows_remaining():
    ledger = InMemoryParticipantLedger()
    ledger.open_order("12", Decimal("121.00"))
    entry = ledger.record_payment("12", ORIGINATOR_PHONE, Decimal("100.00"))

    summary = payment_summary("12", entry, ORIGINATOR_PHONE, Decimal("121.00"))

    assert "STATUS Mesa 12" in summary
    assert "Divisão de pagamento: Não" in summary
    assert "Deveria pagar: R$ 121,00" in summary
    assert "Pagou: R$ 100,00" in summary
    assert "Restante: R$ 21,00" in summary


def test_single_payer_summary_shows_excess():
    ledger = InMemoryParticipantLedger()
    ledger.open_order("12", Decimal("121.00"))
    entry = ledger.record_payment("12", ORIGINATOR_PHONE, Decimal("130.00"))

    summary = payment_summary("12", entry, ORIGINATOR_PHONE, Decimal("121.00"))

    assert "Excedente: R$ 9,00" in summary


def test_split_summary_lists_each_participant():
    ledger = InMemoryParticipantLedger()
    ledger.open_order("12", Decimal("121.00"))
    ledger.finalize_split(
        "12",
        SplitInfo(
            number_of_people=2,
            participants=[
                Participant(name="Maria Souza", phone=MARIA_PHONE, expected_amount=Decimal("60.50")),
                Participant(name="Cliente", phone=ORIGINATOR_PHONE, expected_amount=Decimal("60.50")),
            ],
        ),
    )
    entry = ledger.record_payment("12", MARIA_PHONE, Decimal("60.50"))

    summary = payment_summary("12", entry, MARIA_PHONE, Decimal("60.50"))

    assert "Total: R$ 121,00" in summary
    assert "Divisão entre 2 pessoas" in summary
    assert "*Maria Souza - Pago 🟢*" in summary
    assert "*Cliente - Pendente 🟡*" in summary
    assert "Restante: R$ 60,50" in summary


def test_refund_request_mentions_amount():
    assert "solicitou um estorno de *R$ 9,00*" in refund_request("12", Decimal("9.00"))
