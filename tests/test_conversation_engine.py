import asyncio
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from comanda.extraction.mock_provider import MockProofExtractor
from comanda.fsm import messages
from comanda.fsm.engine import ConversationEngine
from comanda.fsm.states import ConversationStep
from comanda.fsm.transitions import InvariantViolation
from comanda.schemas.conversation import ConversationState
from comanda.schemas.events import InboundEvent, MediaBlob
from comanda.services.attendant import AttendantNotifier, GroupTopic
from comanda.services.conversation_store import InMemoryConversationStore
from comanda.services.inactivity import InactivitySweeper
from comanda.services.ledger import InMemoryParticipantLedger
from comanda.services.order_gateway import MockOrderGateway, OrderLookupError, OrderSnapshot
from comanda.services.proof_validator import ExpectedBeneficiary
from comanda.services.retry import RetryOrchestrator, RetryPolicy, stage_error_message
from comanda.whatsapp.mock_provider import MockWhatsAppProvider
from comanda.whatsapp.service import WhatsAppService
from tests.fixtures_data import (
    BENEFICIARY,
    JOAO_PHONE,
    MARIA_PHONE,
    ORIGINATOR_PHONE,
    VCARD_JOAO_WITHOUT_NAME,
    VCARD_MARIA,
    proof_payload,
)

PHONE = ORIGINATOR_PHONE


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeAttendantChannel:
    def __init__(self):
        self.notices = []

    async def notify(self, topic, text):
        self.notices.append((topic, text))

    def texts(self, topic=None):
        return [text for item_topic, text in self.notices if topic is None or item_topic == topic]


class FakeSleep:
    async def __call__(self, seconds):
        return None


class UnreliableOrderGateway(MockOrderGateway):
    def __init__(self, *, fail_lookup=False, fail_close=False):
        super().__init__()
        self.fail_lookup = fail_lookup
        self.fail_close = fail_close

    async def fetch_order_snapshot(self, order_id):
        if self.fail_lookup:
            raise OrderLookupError("PDV fora do ar")
        return await super().fetch_order_snapshot(order_id)

    async def close_order(self, order_id):
        if self.fail_close:
            raise OrderLookupError("PDV recusou o fechamento")
        await super().close_order(order_id)


def _harness(orders=None):
    clock = FakeClock()
    provider = MockWhatsAppProvider()
    channel = FakeAttendantChannel()
    attendant = AttendantNotifier(channel)
    engine = ConversationEngine(
        store=InMemoryConversationStore(),
        sender=WhatsAppService(provider, pacing_seconds=0),
        orders=orders or MockOrderGateway(),
        extractor=MockProofExtractor(),
        ledger=InMemoryParticipantLedger(),
        attendant=attendant,
        retry=RetryOrchestrator(
            attendant,
            policy=RetryPolicy(max_retries=2, delay_seconds=0, delay_notice_attempt=1),
            sleep=FakeSleep(),
        ),
        clock=clock,
        expected_beneficiary=ExpectedBeneficiary(**BENEFICIARY),
        payment_reminder_after=timedelta(minutes=5),
        abandon_after=timedelta(minutes=30),
        pix_key="PIX-KEY",
    )
    return SimpleNamespace(
        engine=engine,
        store=engine.store,
        orders=engine.orders,
        provider=provider,
        channel=channel,
        clock=clock,
    )


def _text(user_id, text, message_id=None, timestamp=None):
    return InboundEvent(user_id=user_id, raw_text=text, message_id=message_id, timestamp=timestamp)


def _reply(user_id, reply_id, title=""):
    return InboundEvent(user_id=user_id, raw_text=title, structured_reply_id=reply_id)


def _proof(user_id, amount, transaction_id):
    content = json.dumps(proof_payload(amount, transaction_id)).encode("utf-8")
    return InboundEvent(user_id=user_id, media=MediaBlob(content=content, mime_type="image/jpeg"))


def _sent_texts(h, user_id):
    return [message.text for message in h.provider.sent_to(user_id)]


async def _to_waiting_for_payment(h, user_id=PHONE, order_id="12"):
    await h.engine.handle(_text(user_id, f"Gostaria de pagar a comanda {order_id}"))
    await h.engine.handle(_text(user_id, "Sim"))
    await h.engine.handle(_reply(user_id, "split_no", "Não"))
    return await h.engine.handle(_text(user_id, "não"))


def test_single_payer_happy_path():
    h = _harness()

    async def _run():
        return [
            await h.engine.handle(_text(PHONE, "Gostaria de pagar a comanda 12")),
            await h.engine.handle(_text(PHONE, "Sim")),
            await h.engine.handle(_reply(PHONE, "split_no", "Não")),
            await h.engine.handle(_reply(PHONE, "tip_5", "5% 🔥")),
            await h.engine.handle(_proof(PHONE, "127,05", "E1")),
            await h.engine.handle(_text(PHONE, "10")),
        ]

    replies = asyncio.run(_run())

    assert [reply.next_step for reply in replies] == [
        ConversationStep.CONFIRM_ORDER,
        ConversationStep.SPLIT_BILL,
        ConversationStep.EXTRA_TIP,
        ConversationStep.WAITING_FOR_PAYMENT,
        ConversationStep.FEEDBACK,
        ConversationStep.COMPLETED,
    ]
    assert len(replies[0].messages) == 3
    assert "O valor final da sua conta foi de: *R$ 127,05*" in [m.text for m in replies[3].messages]
    assert h.orders.started == ["12"]
    assert h.orders.closed == ["12"]

    waiter_texts = h.channel.texts(GroupTopic.WAITER)
    assert any("iniciou o processo de pagamentos" in text for text in waiter_texts)
    assert any("Pagou: R$ 127,05" in text for text in waiter_texts)
    assert any("foi totalmente paga" in text for text in waiter_texts)

    sent = sum(len(reply.messages) for reply in replies)
    assert len(h.provider.sent_to(PHONE)) == sent

    stored = asyncio.run(h.store.load(PHONE))
    assert stored.feedback.score == 10
    assert stored.tip_amount == Decimal("6.05")


def test_split_bill_fans_out_and_settles_after_every_share():
    h = _harness()

    async def _run():
        await h.engine.handle(_text(PHONE, "pagar a comanda 12"))
        await h.engine.handle(_text(PHONE, "sim"))
        await h.engine.handle(_text(PHONE, "sim"))
        await h.engine.handle(_text(PHONE, "3"))
        split = await h.engine.handle(
            InboundEvent(user_id=PHONE, vcards=[VCARD_MARIA, VCARD_JOAO_WITHOUT_NAME])
        )
        invited = [await h.store.load(MARIA_PHONE), await h.store.load(JOAO_PHONE)]

        closed_before_last = None
        for payer in (PHONE, MARIA_PHONE, JOAO_PHONE):
            if payer == JOAO_PHONE:
                closed_before_last = list(h.orders.closed)
            await h.engine.handle(_reply(payer, "tip_0"))
            paid = await h.engine.handle(_proof(payer, "40,33", f"E-{payer}"))
            assert paid.next_step == ConversationStep.FEEDBACK
        return split, invited, closed_before_last

    split, invited, closed_before_last = asyncio.run(_run())

    assert split.next_step == ConversationStep.EXTRA_TIP
    for state in invited:
        assert state.current_step in {ConversationStep.EXTRA_TIP, ConversationStep.FEEDBACK}
        assert state.user_amount == Decimal("40.33")
        assert state.referrer_user_id == PHONE
    assert any("Sua parte na conta é de *R$ 40,33*" in text for text in _sent_texts(h, MARIA_PHONE))
    assert any("comanda *12*" in text for text in _sent_texts(h, JOAO_PHONE))

    assert closed_before_last == []
    assert h.orders.closed == ["12"]
    assert any("Pago 🟢" in text for text in h.channel.texts(GroupTopic.WAITER))


def test_split_settles_when_the_ledger_is_lost_mid_payment():
    h = _harness()

    async def _run():
        await h.engine.handle(_text(PHONE, "pagar a comanda 12"))
        await h.engine.handle(_text(PHONE, "sim"))
        await h.engine.handle(_text(PHONE, "sim"))
        await h.engine.handle(_text(PHONE, "3"))
        await h.engine.handle(InboundEvent(user_id=PHONE, vcards=[VCARD_MARIA, VCARD_JOAO_WITHOUT_NAME]))
        for payer in (PHONE, MARIA_PHONE):
            await h.engine.handle(_reply(payer, "tip_0"))
            await h.engine.handle(_proof(payer, "40,33", f"E-{payer}"))

        # processo reiniciado: só o store sobrevive
        h.engine.ctx.ledger = InMemoryParticipantLedger()
        await h.engine.handle(_reply(JOAO_PHONE, "tip_0"))
        return await h.engine.handle(_proof(JOAO_PHONE, "40,33", f"E-{JOAO_PHONE}"))

    last = asyncio.run(_run())

    assert last.next_step == ConversationStep.FEEDBACK
    assert h.orders.closed == ["12"]
    summary = h.channel.texts(GroupTopic.WAITER)[-2]
    assert "Maria Souza - Pago 🟢" in summary
    assert "Pendente" not in summary
    assert h.engine.ctx.ledger.get("12").amount_paid_so_far == Decimal("120.99")


def test_next_group_on_a_reused_comanda_closes_it_again():
    h = _harness()

    async def _run():
        await _to_waiting_for_payment(h, PHONE)
        first = await h.engine.handle(_proof(PHONE, "121,00", "E-FIRST"))
        # o primeiro grupo nunca responde a pesquisa e a mesa é reaproveitada
        h.clock.advance(hours=2)
        await _to_waiting_for_payment(h, MARIA_PHONE)
        second = await h.engine.handle(_proof(MARIA_PHONE, "121,00", "E-SECOND"))
        return first, second

    first, second = asyncio.run(_run())

    assert first.next_step == ConversationStep.FEEDBACK
    assert second.next_step == ConversationStep.FEEDBACK
    assert h.orders.closed == ["12", "12"]
    settled = [text for text in h.channel.texts(GroupTopic.WAITER) if "foi totalmente paga" in text]
    assert len(settled) == 2


def test_zero_value_receipt_is_answered_and_handed_off():
    h = _harness()

    async def _run():
        await _to_waiting_for_payment(h)
        return await h.engine.handle(_proof(PHONE, "0,00", "E-ZERO"))

    reply = asyncio.run(_run())

    assert reply.next_step == ConversationStep.PAYMENT_INVALID
    assert [message.text for message in reply.messages] == [messages.INVALID_AMOUNT]
    assert h.orders.closed == []
    assert any("valor R$ 0,00" in text for text in h.channel.texts(GroupTopic.WAITER))


def test_split_invite_skips_participant_in_another_active_conversation():
    h = _harness()
    busy = ConversationState(user_id=MARIA_PHONE, current_step=ConversationStep.WAITING_FOR_PAYMENT, order_id="99")

    async def _run():
        await h.store.save(busy)
        await h.engine.handle(_text(PHONE, "pagar a comanda 12"))
        await h.engine.handle(_text(PHONE, "sim"))
        await h.engine.handle(_text(PHONE, "sim"))
        await h.engine.handle(_text(PHONE, "2"))
        reply = await h.engine.handle(InboundEvent(user_id=PHONE, vcards=[VCARD_MARIA]))
        return reply, await h.store.load(MARIA_PHONE)

    reply, maria = asyncio.run(_run())

    assert reply.next_step == ConversationStep.EXTRA_TIP
    assert maria.order_id == "99"
    assert maria.current_step == ConversationStep.WAITING_FOR_PAYMENT
    assert h.provider.sent_to(MARIA_PHONE) == []


def test_duplicate_and_stale_messages_are_ignored():
    h = _harness()

    async def _run():
        first = await h.engine.handle(_text(PHONE, "oi", message_id="wamid.1"))
        repeated = await h.engine.handle(_text(PHONE, "oi", message_id="wamid.1"))
        stale = await h.engine.handle(
            _text(PHONE, "oi", message_id="wamid.2", timestamp=h.clock.now - timedelta(seconds=31))
        )
        return first, repeated, stale

    first, repeated, stale = asyncio.run(_run())

    assert first.ignored is False
    assert first.next_step == ConversationStep.INITIAL
    assert repeated.ignored is True
    assert stale.ignored is True
    assert _sent_texts(h, PHONE) == [messages.PAY_ORDER_HINT]


def test_restart_from_handoff_step():
    orders = MockOrderGateway({"7": OrderSnapshot(message="", items=[], total=Decimal("0"))})
    h = _harness(orders)

    async def _run():
        empty = await h.engine.handle(_text(PHONE, "pagar a comanda 7"))
        waiting = await h.engine.handle(_text(PHONE, "oi"))
        restarted = await h.engine.handle(_text(PHONE, "pagar a comanda 12"))
        return empty, waiting, restarted, await h.store.load(PHONE)

    empty, waiting, restarted, stored = asyncio.run(_run())

    assert empty.next_step == ConversationStep.EMPTY_ORDER
    assert waiting.next_step == ConversationStep.EMPTY_ORDER
    assert [message.text for message in waiting.messages] == [messages.HANDOFF_WAIT]
    assert restarted.next_step == ConversationStep.CONFIRM_ORDER
    assert stored.order_id == "12"


def test_order_claim_conflict_and_takeover_after_inactivity():
    h = _harness()

    async def _run():
        await h.engine.handle(_text(PHONE, "pagar a comanda 12"))
        refused = await h.engine.handle(_text(MARIA_PHONE, "pagar a comanda 12"))
        h.clock.advance(minutes=6)
        granted = await h.engine.handle(_text(MARIA_PHONE, "pagar a comanda 12"))
        return refused, granted, await h.store.load(PHONE)

    refused, granted, evicted = asyncio.run(_run())

    assert refused.next_step == ConversationStep.INITIAL
    assert [message.text for message in refused.messages] == [messages.ORDER_IN_PROGRESS]
    assert granted.next_step == ConversationStep.CONFIRM_ORDER
    assert evicted.current_step == ConversationStep.INCOMPLETE_ORDER


def test_inactivity_sweeper_reminds_once_then_abandons():
    h = _harness()
    sweeper = InactivitySweeper(h.engine, h.store, interval_seconds=0)

    async def _run():
        await h.engine.handle(_text(PHONE, "pagar a comanda 12"))
        h.clock.advance(minutes=6)
        ticked = await sweeper.sweep()
        after_reminder = len(h.provider.sent_to(PHONE))
        await sweeper.sweep()
        after_second_sweep = len(h.provider.sent_to(PHONE))
        h.clock.advance(minutes=25)
        await sweeper.sweep()
        return ticked, after_reminder, after_second_sweep, await h.store.load(PHONE), await h.store.list_active()

    ticked, after_reminder, after_second_sweep, state, active = asyncio.run(_run())

    texts = _sent_texts(h, PHONE)
    assert ticked == 1
    assert after_second_sweep == after_reminder
    assert any("Está tudo bem?" in text for text in texts)
    assert any("Tudo bem por aí?" in text for text in texts)
    assert state.current_step == ConversationStep.INCOMPLETE_ORDER
    assert active == []


def test_payment_reminder_and_resume():
    h = _harness()
    sweeper = InactivitySweeper(h.engine, h.store, interval_seconds=0)

    async def _run():
        await _to_waiting_for_payment(h)
        h.clock.advance(minutes=6)
        await sweeper.sweep()
        reminded = await h.store.load(PHONE)
        resumed = await h.engine.handle(_reply(PHONE, "reminder_paying", "Estou pagando"))
        return reminded, resumed

    reminded, resumed = asyncio.run(_run())

    assert reminded.current_step == ConversationStep.PAYMENT_REMINDER
    assert resumed.next_step == ConversationStep.WAITING_FOR_PAYMENT


def test_underpayment_then_remaining_payment_settles():
    h = _harness()

    async def _run():
        await _to_waiting_for_payment(h)
        partial = await h.engine.handle(_proof(PHONE, "100,00", "E1"))
        again = await h.engine.handle(_reply(PHONE, "remaining_pay", "Pagar restante"))
        done = await h.engine.handle(_proof(PHONE, "21,00", "E2"))
        return partial, again, done

    partial, again, done = asyncio.run(_run())

    assert partial.next_step == ConversationStep.AWAITING_USER_DECISION
    assert again.next_step == ConversationStep.WAITING_FOR_PAYMENT
    assert "O valor final da sua conta foi de: *R$ 21,00*" in [m.text for m in again.messages]
    assert done.next_step == ConversationStep.FEEDBACK
    assert h.orders.closed == ["12"]


def test_overpayment_refund_alerts_refund_group():
    h = _harness()

    async def _run():
        await _to_waiting_for_payment(h)
        await h.engine.handle(_proof(PHONE, "130,00", "E1"))
        return await h.engine.handle(_reply(PHONE, "excess_refund", "Pedir estorno"))

    reply = asyncio.run(_run())

    assert reply.next_step == ConversationStep.FEEDBACK
    assert any("R$ 9,00" in text for text in h.channel.texts(GroupTopic.REFUND))
    assert h.orders.closed == ["12"]


def test_order_lookup_failure_informs_user_and_hands_off():
    h = _harness(UnreliableOrderGateway(fail_lookup=True))

    reply = asyncio.run(h.engine.handle(_text(PHONE, "pagar a comanda 12")))

    assert reply.next_step == ConversationStep.ORDER_NOT_FOUND
    assert stage_error_message(ConversationStep.PROCESSING_ORDER) in _sent_texts(h, PHONE)
    assert any("Erro no Processamento" in text for text in h.channel.texts(GroupTopic.WAITER))


def test_close_order_failure_alerts_waiters():
    h = _harness(UnreliableOrderGateway(fail_close=True))

    async def _run():
        await _to_waiting_for_payment(h)
        return await h.engine.handle(_proof(PHONE, "121,00", "E1"))

    reply = asyncio.run(_run())

    assert reply.next_step == ConversationStep.FEEDBACK
    assert any("Erro no Pagamento" in text for text in h.channel.texts(GroupTopic.WAITER))


def test_invariant_violation_propagates():
    h = _harness()
    broken = ConversationState(user_id=PHONE, current_step=ConversationStep.WAITING_FOR_PAYMENT)

    async def _run():
        await h.store.save(broken)
        await h.engine.handle(_proof(PHONE, "121,00", "E1"))

    with pytest.raises(InvariantViolation):
        asyncio.run(_run())


def test_tick_without_conversation_does_nothing():
    h = _harness()

    reply = asyncio.run(h.engine.handle(InboundEvent.tick(PHONE)))

    assert reply.next_step is None
    assert reply.messages == []
    assert asyncio.run(h.store.load(PHONE)) is None
