"""Tabela de transições da conversa.

Cada handler recebe (state, event, ctx) e devolve um TransitionResult com as
mensagens, o próximo passo e os comandos a executar. Handlers não enviam
mensagens nem gravam estado: isso fica com o ConversationEngine. A única
exceção são os avisos de demora do RetryOrchestrator, que saem na hora pelo
ctx.send_now.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Awaitable, Callable, Iterable, Union

from comanda.core.config import (
    ABANDON_AFTER_MINUTES,
    PAYMENT_REMINDER_MINUTES,
    PIX_COPY_PASTE_KEY,
)
from comanda.extraction.base import ProofExtractor
from comanda.extraction.service import extract_payment_proof
from comanda.fsm import messages
from comanda.fsm.parsing import (
    extract_order_id,
    is_fee_objection,
    is_pay_order_request,
    mentions_proof,
    parse_excess_choice,
    parse_people_count,
    parse_remaining_choice,
    parse_reminder_choice,
    parse_score,
    parse_tip,
    parse_vcards,
    parse_yes_no,
)
from comanda.fsm.states import HANDOFF_STEPS, ConversationStep, TERMINAL_STEPS
from comanda.schemas.conversation import (
    ConversationState,
    Feedback,
    OrderDetails,
    Participant,
    SplitInfo,
)
from comanda.schemas.events import EventKind, InboundEvent
from comanda.services import attendant
from comanda.services.attendant import GroupTopic
from comanda.services.conversation_store import ConversationStore
from comanda.services.ledger import ParticipantLedger, phone_key
from comanda.services.money import ZERO, apply_tip, compute_share, format_brl, round_money
from comanda.services.order_claims import OrderClaimArbiter
from comanda.services.order_gateway import OrderGateway
from comanda.services.proof_validator import ExpectedBeneficiary, ProofOutcome, validate_proof
from comanda.services.retry import RetryExhaustedError, RetryOrchestrator
from comanda.whatsapp.base import OutboundMessage, text_message

logger = logging.getLogger(__name__)

ORIGINATOR_NAME = "Cliente"


class InvariantViolation(RuntimeError):
    """Estado impossível pela tabela de transições; indica defeito, não erro do usuário."""


@dataclass
class SpawnConversation:
    state: ConversationState
    messages: list[OutboundMessage] = field(default_factory=list)


@dataclass
class NotifyAttendant:
    topic: GroupTopic
    text: str


@dataclass
class CloseOrder:
    order_id: str


Command = Union[SpawnConversation, NotifyAttendant, CloseOrder]


@dataclass
class TransitionResult:
    next_step: ConversationStep
    state: ConversationState
    messages: list[OutboundMessage] = field(default_factory=list)
    commands: list[Command] = field(default_factory=list)
    # pede ao engine que rode o próximo passo na sequência (evento CONTINUE)
    chain: bool = False


@dataclass
class TransitionContext:
    orders: OrderGateway
    extractor: ProofExtractor
    ledger: ParticipantLedger
    arbiter: OrderClaimArbiter
    retry: RetryOrchestrator
    send_now: Callable[[OutboundMessage], Awaitable[object]]
    clock: Callable[[], datetime]
    expected_beneficiary: ExpectedBeneficiary = field(default_factory=ExpectedBeneficiary)
    payment_reminder_after: timedelta = timedelta(minutes=PAYMENT_REMINDER_MINUTES)
    step_reminder_after: timedelta = timedelta(minutes=PAYMENT_REMINDER_MINUTES)
    abandon_after: timedelta = timedelta(minutes=ABANDON_AFTER_MINUTES)
    pix_key: str = PIX_COPY_PASTE_KEY
    # usado para refazer o registro de pagamentos depois de um restart
    store: ConversationStore | None = None

    def notify_user(self, user_id: str):
        async def _notify(text: str) -> None:
            await self.send_now(text_message(user_id, text))

        return _notify


Handler = Callable[[ConversationState, InboundEvent, TransitionContext], Awaitable[TransitionResult]]

TRANSITIONS: dict[tuple[ConversationStep, EventKind], Handler] = {}

USER_INPUT = (EventKind.TEXT, EventKind.REPLY)


def transition(steps: Iterable[ConversationStep], kinds: Iterable[EventKind]):
    steps = list(steps)
    kinds = list(kinds)

    def register(handler: Handler) -> Handler:
        for step in steps:
            for kind in kinds:
                TRANSITIONS[(step, kind)] = handler
        return handler

    return register


def stay(state: ConversationState, *outbound: OutboundMessage | list[OutboundMessage]) -> TransitionResult:
    return TransitionResult(state.current_step, state, _flatten(outbound))


def go(
    state: ConversationState,
    step: ConversationStep,
    *outbound: OutboundMessage | list[OutboundMessage],
    commands: list[Command] | None = None,
    chain: bool = False,
) -> TransitionResult:
    return TransitionResult(step, state, _flatten(outbound), commands or [], chain)


def _flatten(outbound) -> list[OutboundMessage]:
    flat = []
    for item in outbound:
        if isinstance(item, list):
            flat.extend(item)
        else:
            flat.append(item)
    return flat


def _require_order(state: ConversationState) -> OrderDetails:
    if state.order_id is None or state.order_details is None:
        raise InvariantViolation(f"{state.current_step.value} sem comanda carregada")
    return state.order_details


def _require_amount(state: ConversationState) -> Decimal:
    if state.user_amount is None:
        raise InvariantViolation(f"{state.current_step.value} sem valor a pagar")
    return state.user_amount


def _require_split(state: ConversationState) -> SplitInfo:
    if state.split_info is None:
        raise InvariantViolation(f"{state.current_step.value} sem divisão de conta")
    return state.split_info


def _yes_no(event: InboundEvent, yes_id: str, no_id: str) -> bool | None:
    if event.structured_reply_id == yes_id:
        return True
    if event.structured_reply_id == no_id:
        return False
    return parse_yes_no(event.text)


# Clarificações


_CLARIFY_TEXT = {
    ConversationStep.INITIAL: messages.PAY_ORDER_HINT,
    ConversationStep.PROCESSING_ORDER: "Estamos processando seu pedido. Por favor, aguarde um momento.",
    ConversationStep.SPLIT_BILL_NUMBER: messages.INVALID_PEOPLE_COUNT,
    ConversationStep.WAITING_FOR_CONTACTS: messages.CONTACTS_ONLY,
    ConversationStep.WAITING_FOR_PAYMENT: messages.WAITING_PROOF,
    ConversationStep.PAYMENT_REMINDER: messages.REMINDER_INVALID,
    ConversationStep.FEEDBACK: messages.FEEDBACK_INVALID,
    ConversationStep.FEEDBACK_DETAIL: "Pode nos contar em uma mensagem de texto o que faltou para o 10?",
    ConversationStep.COMPLETED: messages.CONVERSATION_FINISHED,
    ConversationStep.INCOMPLETE_ORDER: messages.CONVERSATION_FINISHED,
}

_CLARIFY_BUTTONS = {
    ConversationStep.CONFIRM_ORDER: messages.confirm_prompt,
    ConversationStep.SPLIT_BILL: messages.split_prompt,
    ConversationStep.EXTRA_TIP: messages.tip_invalid,
    ConversationStep.OVERPAYMENT_DECISION: messages.excess_invalid,
    ConversationStep.AWAITING_USER_DECISION: messages.remaining_invalid,
}


async def clarify(state: ConversationState, event: InboundEvent, ctx: TransitionContext) -> TransitionResult:
    """Entrada não reconhecida: repete a orientação do passo sem mudar nada."""
    if event.kind in (EventKind.TICK, EventKind.CONTINUE):
        return stay(state)
    step = state.current_step
    to = state.user_id
    if step in _CLARIFY_BUTTONS:
        return stay(state, _CLARIFY_BUTTONS[step](to))
    if step in HANDOFF_STEPS:
        return stay(state, text_message(to, messages.HANDOFF_WAIT))
    return stay(state, text_message(to, _CLARIFY_TEXT.get(step, messages.PAY_ORDER_HINT)))


def resolve(step: ConversationStep, kind: EventKind) -> Handler:
    return TRANSITIONS.get((step, kind), clarify)


# Initial


_PAYING_STEPS = {
    ConversationStep.WAITING_FOR_PAYMENT.value,
    ConversationStep.PAYMENT_REMINDER.value,
    ConversationStep.AWAITING_USER_DECISION.value,
    ConversationStep.OVERPAYMENT_DECISION.value,
}


async def _join_evicted_session(
    state: ConversationState, order_id: str, evicted_user_id: str, ctx: TransitionContext
) -> None:
    """Quem assume a comanda de um pagador inativo no meio do pagamento continua o mesmo registro."""
    state.taken_over_from = evicted_user_id
    if ctx.store is None:
        return
    evicted = await ctx.store.load(evicted_user_id)
    if evicted is not None and evicted.order_id == order_id:
        state.session_id = evicted.session_id


@transition([ConversationStep.INITIAL], [EventKind.TEXT])
async def start_order(state, event, ctx):
    to = state.user_id
    if not is_pay_order_request(event.text):
        return stay(state, text_message(to, messages.PAY_ORDER_HINT))

    order_id = extract_order_id(event.text)
    if order_id is None:
        return stay(state, text_message(to, messages.ORDER_NUMBER_NOT_UNDERSTOOD))

    decision = await ctx.arbiter.claim(order_id, state.user_id)
    if not decision.granted:
        return stay(state, messages.order_in_progress(to, splitting=decision.incumbent_splitting))
    if decision.evicted_user_id:
        logger.info("order %s taken over from %s", order_id, decision.evicted_user_id)
        if decision.evicted_step in _PAYING_STEPS:
            await _join_evicted_session(state, order_id, decision.evicted_user_id, ctx)

    state.order_id = order_id
    return go(state, ConversationStep.PROCESSING_ORDER, messages.welcome(to), chain=True)


@transition([ConversationStep.INITIAL], [EventKind.TICK])
async def ignore_tick(state, event, ctx):
    return stay(state)


# ProcessingOrder


@transition([ConversationStep.PROCESSING_ORDER], [EventKind.CONTINUE, EventKind.TEXT])
async def process_order(state, event, ctx):
    order_id = state.order_id
    if order_id is None:
        raise InvariantViolation("processing_order sem order_id")

    try:
        snapshot = await ctx.retry.run(
            lambda: ctx.orders.fetch_order_snapshot(order_id),
            step=ConversationStep.PROCESSING_ORDER,
            notify_user=ctx.notify_user(state.user_id),
            failure_alert=attendant.authentication_error(),
            exhausted_alert=attendant.order_processing_error(order_id),
        )
    except RetryExhaustedError:
        return go(state, ConversationStep.ORDER_NOT_FOUND)

    if not snapshot.items:
        return go(state, ConversationStep.EMPTY_ORDER, text_message(state.user_id, messages.EMPTY_ORDER))

    state.order_details = OrderDetails(
        table_id=order_id,
        message=snapshot.message,
        items=snapshot.items,
        total=snapshot.total,
        discount=snapshot.discount,
    )
    ctx.ledger.open_order(
        order_id, state.order_details.total, carry_over=state.taken_over_from is not None
    )
    return go(
        state,
        ConversationStep.CONFIRM_ORDER,
        messages.order_confirmation(state.user_id, snapshot.message),
        commands=[NotifyAttendant(GroupTopic.WAITER, attendant.table_started_payment(order_id))],
    )


# ConfirmOrder


@transition([ConversationStep.CONFIRM_ORDER], USER_INPUT)
async def confirm_order(state, event, ctx):
    to = state.user_id
    answer = _yes_no(event, "confirm_yes", "confirm_no")
    if answer is None:
        return stay(state, messages.confirm_prompt(to))

    order = _require_order(state)
    if answer is False:
        return go(
            state,
            ConversationStep.INCOMPLETE_ORDER,
            text_message(to, messages.WRONG_ORDER),
            commands=[NotifyAttendant(GroupTopic.WAITER, attendant.wrong_order(order.table_id))],
        )

    try:
        await ctx.retry.run(
            lambda: ctx.orders.start_payment(order.table_id),
            step=ConversationStep.CONFIRM_ORDER,
            notify_user=ctx.notify_user(to),
            exhausted_alert=attendant.prebill_error(order.table_id),
        )
    except RetryExhaustedError:
        return go(state, ConversationStep.INCOMPLETE_ORDER)

    return go(state, ConversationStep.SPLIT_BILL, messages.split_prompt(to))


# SplitBill / SplitBillNumber


@transition([ConversationStep.SPLIT_BILL], USER_INPUT)
async def choose_split(state, event, ctx):
    to = state.user_id
    answer = _yes_no(event, "split_yes", "split_no")
    if answer is None:
        return stay(state, messages.split_prompt(to))
    if answer:
        return go(state, ConversationStep.SPLIT_BILL_NUMBER, text_message(to, messages.SPLIT_COUNT_PROMPT))

    state.user_amount = _require_order(state).total
    return go(state, ConversationStep.EXTRA_TIP, messages.tip_prompt(to))


@transition([ConversationStep.SPLIT_BILL_NUMBER], [EventKind.TEXT])
async def choose_people_count(state, event, ctx):
    to = state.user_id
    count = parse_people_count(event.text)
    if count is None:
        return stay(state, text_message(to, messages.INVALID_PEOPLE_COUNT))

    state.split_info = SplitInfo(number_of_people=count)
    return go(state, ConversationStep.WAITING_FOR_CONTACTS, text_message(to, messages.CONTACTS_PROMPT))


# WaitingForContacts


def _finalize_split(state: ConversationState, ctx: TransitionContext) -> list[Command]:
    """Fecha a divisão: partes iguais, originador como participante e convites."""
    order = _require_order(state)
    split_info = _require_split(state)
    share = compute_share(order.total, split_info.number_of_people)

    for participant in split_info.participants:
        participant.expected_amount = share
    split_info.participants.append(Participant(name=ORIGINATOR_NAME, phone=state.user_id, expected_amount=share))
    split_info.finalized = True
    state.user_amount = share
    if ctx.ledger.get(order.table_id) is None:
        ctx.ledger.open_order(order.table_id, order.total)
    ctx.ledger.finalize_split(order.table_id, split_info)

    now = ctx.clock()
    commands: list[Command] = []
    for participant in split_info.participants:
        if participant.phone == state.user_id:
            continue
        invited = ConversationState(
            user_id=participant.phone,
            current_step=ConversationStep.EXTRA_TIP,
            order_id=state.order_id,
            order_details=order.model_copy(deep=True),
            split_info=split_info.model_copy(deep=True),
            user_amount=share,
            referrer_user_id=state.user_id,
            session_id=state.session_id,
            created_at=now,
            last_activity_at=now,
        )
        commands.append(
            SpawnConversation(invited, messages.participant_invite(participant.phone, order.table_id, share))
        )
    return commands


@transition([ConversationStep.WAITING_FOR_CONTACTS], [EventKind.CONTACTS])
async def receive_contacts(state, event, ctx):
    to = state.user_id
    split_info = _require_split(state)
    needed = split_info.contacts_expected - len(split_info.participants)

    if needed <= 0:
        commands = _finalize_split(state, ctx)
        return go(
            state,
            ConversationStep.EXTRA_TIP,
            messages.contacts_already_complete(to),
            messages.tip_prompt(to),
            commands=commands,
        )

    known = {phone_key(to)} | {phone_key(item.phone) for item in split_info.participants}
    cards = []
    for card in parse_vcards(event.vcard_text()):
        key = phone_key(card.phone)
        if key in known:
            continue
        known.add(key)
        cards.append(card)
    if not cards:
        return stay(state, text_message(to, messages.CONTACTS_ONLY))

    accepted = cards[:needed]
    truncated_to = needed if len(cards) > needed else None
    for card in accepted:
        split_info.participants.append(Participant(name=card.name, phone=card.phone))
    still_missing = needed - len(accepted)

    receipt = messages.contacts_received(to, accepted, truncated_to=truncated_to, still_missing=still_missing)
    if still_missing > 0:
        return stay(state, receipt)

    commands = _finalize_split(state, ctx)
    return go(state, ConversationStep.EXTRA_TIP, receipt, messages.tip_prompt(to), commands=commands)


# ExtraTip


@transition([ConversationStep.EXTRA_TIP], USER_INPUT)
async def choose_tip(state, event, ctx):
    to = state.user_id
    if is_fee_objection(event.text):
        return stay(state, messages.fee_objection(to))

    percent = parse_tip(event.text, event.structured_reply_id)
    if percent is None:
        return stay(state, messages.tip_invalid(to))

    amount = _require_amount(state)
    if percent == 0:
        state.tip_amount = ZERO
        state.tip_percent = Decimal(0)
        reply = messages.NO_TIP
    else:
        with_tip = apply_tip(amount, percent)
        state.tip_amount = round_money(with_tip - amount)
        state.tip_percent = percent
        state.user_amount = with_tip
        reply = messages.tip_response(percent)

    state.payment_start_time = ctx.clock()
    return go(
        state,
        ConversationStep.WAITING_FOR_PAYMENT,
        text_message(to, reply),
        messages.payment_instructions(to, state.user_amount, ctx.pix_key),
    )


# WaitingForPayment / PaymentReminder


async def _session_members(state: ConversationState, ctx: TransitionContext) -> list[ConversationState]:
    members = [state]
    if ctx.store is None:
        return members
    for other in await ctx.store.find_by_order(state.order_id):
        if other.user_id != state.user_id and other.session_id == state.session_id:
            members.append(other)
    return members


async def _ensure_ledger(state: ConversationState, ctx: TransitionContext) -> None:
    """Depois de um restart, refaz o registro com os comprovantes já aceitos do grupo."""
    order = _require_order(state)
    if ctx.ledger.get(order.table_id) is not None:
        return

    members = await _session_members(state, ctx)
    ctx.ledger.open_order(order.table_id, order.total)
    split_info = next(
        (member.split_info for member in members if member.split_info and member.split_info.finalized),
        None,
    )
    if split_info is not None:
        ctx.ledger.finalize_split(order.table_id, split_info)
    replayed = 0
    for member in members:
        for proof in member.payment_proofs:
            ctx.ledger.record_payment(order.table_id, member.user_id, proof.amount)
            replayed += 1
    logger.info(
        "ledger for order %s rebuilt from %s conversations (%s payments)",
        order.table_id,
        len(members),
        replayed,
    )


def _settlement_commands(order_id: str, ctx: TransitionContext) -> list[Command]:
    if not ctx.ledger.settle(order_id):
        return []
    entry = ctx.ledger.get(order_id)
    return [
        NotifyAttendant(GroupTopic.WAITER, attendant.order_settled(order_id, entry.total)),
        CloseOrder(order_id),
    ]


def _summary_command(state: ConversationState, ctx: TransitionContext, owed: Decimal) -> NotifyAttendant:
    order_id = state.order_details.table_id
    entry = ctx.ledger.get(order_id)
    return NotifyAttendant(
        GroupTopic.WAITER, attendant.payment_summary(order_id, entry, state.user_id, owed)
    )


@transition(
    [ConversationStep.WAITING_FOR_PAYMENT, ConversationStep.PAYMENT_REMINDER],
    [EventKind.MEDIA],
)
async def receive_proof(state, event, ctx):
    to = state.user_id
    order = _require_order(state)
    amount_due = _require_amount(state)

    try:
        proof = await ctx.retry.run(
            lambda: extract_payment_proof(ctx.extractor, event.media),
            step=ConversationStep.WAITING_FOR_PAYMENT,
            notify_user=ctx.notify_user(to),
            failure_alert=attendant.proof_processing_error(order.table_id),
            exhausted_alert=attendant.assistance_request(order.table_id, "Falha ao ler o comprovante"),
        )
    except RetryExhaustedError:
        return go(state, ConversationStep.PAYMENT_ASSISTANCE)

    validation = validate_proof(
        proof,
        user_amount=amount_due,
        accepted_proofs=state.payment_proofs,
        expected=ctx.expected_beneficiary,
    )
    logger.info(
        "proof %s classified as %s",
        proof.external_transaction_id,
        validation.outcome.value,
        extra={"step": state.current_step.value},
    )

    if validation.outcome == ProofOutcome.DUPLICATE:
        return stay(state, text_message(to, messages.DUPLICATE_PROOF))

    if validation.outcome == ProofOutcome.INVALID_BENEFICIARY:
        alert = attendant.invalid_beneficiary(order.table_id, proof.beneficiary_name, validation.amount)
        return go(
            state,
            ConversationStep.PAYMENT_INVALID,
            text_message(to, messages.INVALID_BENEFICIARY),
            commands=[NotifyAttendant(GroupTopic.WAITER, alert)],
        )

    if validation.outcome == ProofOutcome.INVALID_AMOUNT:
        alert = attendant.invalid_amount(order.table_id, validation.amount)
        return go(
            state,
            ConversationStep.PAYMENT_INVALID,
            text_message(to, messages.INVALID_AMOUNT),
            commands=[NotifyAttendant(GroupTopic.WAITER, alert)],
        )

    await _ensure_ledger(state, ctx)
    state.payment_proofs.append(proof)
    ctx.ledger.record_payment(order.table_id, state.user_id, validation.amount)

    if validation.outcome == ProofOutcome.UNDERPAID:
        state.user_amount = validation.remaining
        return go(
            state,
            ConversationStep.AWAITING_USER_DECISION,
            messages.underpayment_prompt(to, validation.amount, validation.remaining),
        )

    if validation.outcome == ProofOutcome.OVERPAID:
        state.excess_payment_amount = validation.excess
        return go(
            state,
            ConversationStep.OVERPAYMENT_DECISION,
            messages.overpayment_prompt(to, validation.excess),
        )

    commands: list[Command] = [_summary_command(state, ctx, state.total_paid)]
    commands.extend(_settlement_commands(order.table_id, ctx))
    return go(state, ConversationStep.FEEDBACK, messages.payment_confirmed(to), commands=commands)


@transition([ConversationStep.WAITING_FOR_PAYMENT], USER_INPUT)
async def waiting_text(state, event, ctx):
    if mentions_proof(event.text):
        return stay(state, text_message(state.user_id, messages.ATTACH_PROOF))
    return stay(state, text_message(state.user_id, messages.WAITING_PROOF))


@transition([ConversationStep.WAITING_FOR_PAYMENT], [EventKind.TICK])
async def payment_elapsed_check(state, event, ctx):
    started = state.payment_start_time
    if started is None or ctx.clock() - started < ctx.payment_reminder_after:
        return stay(state)
    return go(state, ConversationStep.PAYMENT_REMINDER, messages.payment_reminder(state.user_id))


@transition([ConversationStep.PAYMENT_REMINDER], USER_INPUT)
async def reminder_reply(state, event, ctx):
    to = state.user_id
    choice = parse_reminder_choice(event.text, event.structured_reply_id)
    if choice is None:
        if mentions_proof(event.text):
            return stay(state, text_message(to, messages.ATTACH_PROOF))
        return stay(state, text_message(to, messages.REMINDER_INVALID))

    table_id = _require_order(state).table_id
    if choice == "paying":
        state.payment_start_time = ctx.clock()
        return go(state, ConversationStep.WAITING_FOR_PAYMENT, text_message(to, messages.REMINDER_PAYING))
    if choice == "help":
        alert = attendant.assistance_request(table_id, "Cliente pediu ajuda após o lembrete de pagamento")
        return go(
            state,
            ConversationStep.PAYMENT_ASSISTANCE,
            text_message(to, messages.REMINDER_HELP),
            commands=[NotifyAttendant(GroupTopic.WAITER, alert)],
        )
    alert = attendant.assistance_request(table_id, "Cliente prefere pagar na mesa")
    return go(
        state,
        ConversationStep.INCOMPLETE_ORDER,
        text_message(to, messages.REMINDER_CONVENTIONAL),
        commands=[NotifyAttendant(GroupTopic.WAITER, alert)],
    )


# OverpaymentDecision / AwaitingUserDecision


@transition([ConversationStep.OVERPAYMENT_DECISION], USER_INPUT)
async def overpayment_choice(state, event, ctx):
    to = state.user_id
    choice = parse_excess_choice(event.text, event.structured_reply_id)
    if choice is None:
        return stay(state, messages.excess_invalid(to))

    order = _require_order(state)
    excess = state.excess_payment_amount or ZERO
    await _ensure_ledger(state, ctx)
    owed = round_money(state.total_paid - excess)
    commands: list[Command] = []

    if choice == "tip":
        state.tip_amount = round_money((state.tip_amount or ZERO) + excess)
        reply = messages.excess_as_tip(excess)
        commands.append(_summary_command(state, ctx, owed))
    else:
        reply = messages.refund_requested(excess)
        commands.append(NotifyAttendant(GroupTopic.REFUND, attendant.refund_request(order.table_id, excess)))

    commands.extend(_settlement_commands(order.table_id, ctx))
    return go(
        state,
        ConversationStep.FEEDBACK,
        text_message(to, reply),
        messages.payment_confirmed(to),
        commands=commands,
    )


@transition([ConversationStep.AWAITING_USER_DECISION], USER_INPUT)
async def underpayment_choice(state, event, ctx):
    to = state.user_id
    choice = parse_remaining_choice(event.text, event.structured_reply_id)
    if choice is None:
        return stay(state, messages.remaining_invalid(to))

    remaining = _require_amount(state)
    if choice == "pay":
        state.payment_start_time = ctx.clock()
        return go(
            state,
            ConversationStep.WAITING_FOR_PAYMENT,
            messages.payment_instructions(to, remaining, ctx.pix_key),
        )

    table_id = _require_order(state).table_id
    alert = attendant.assistance_request(table_id, f"Pagamento parcial, restante de {format_brl(remaining)}")
    return go(
        state,
        ConversationStep.PAYMENT_ASSISTANCE,
        text_message(to, messages.ASSISTANCE_ON_THE_WAY),
        commands=[NotifyAttendant(GroupTopic.WAITER, alert)],
    )


# Feedback


@transition([ConversationStep.FEEDBACK], USER_INPUT)
async def feedback_score(state, event, ctx):
    to = state.user_id
    score = parse_score(event.text)
    if score is None:
        return stay(state, text_message(to, messages.FEEDBACK_INVALID))

    state.feedback = Feedback(score=score)
    if score < 10:
        return go(state, ConversationStep.FEEDBACK_DETAIL, text_message(to, messages.FEEDBACK_DETAIL_PROMPT))
    return go(state, ConversationStep.COMPLETED, messages.feedback_closing(to, detailed=False))


@transition([ConversationStep.FEEDBACK_DETAIL], [EventKind.TEXT])
async def feedback_detail(state, event, ctx):
    if state.feedback is None:
        raise InvariantViolation("feedback_detail sem nota registrada")
    if not event.text:
        return stay(state, text_message(state.user_id, _CLARIFY_TEXT[ConversationStep.FEEDBACK_DETAIL]))
    state.feedback = state.feedback.model_copy(update={"detail": event.text})
    return go(state, ConversationStep.COMPLETED, messages.feedback_closing(state.user_id, detailed=True))


@transition(
    [ConversationStep.FEEDBACK, ConversationStep.FEEDBACK_DETAIL, ConversationStep.COMPLETED],
    [EventKind.MEDIA],
)
async def late_proof(state, event, ctx):
    return stay(state, text_message(state.user_id, messages.LATE_PROOF))


# Inatividade


_NO_TICK_STEPS = TERMINAL_STEPS | {ConversationStep.INITIAL, ConversationStep.WAITING_FOR_PAYMENT}
_STEP_REMINDER_STEPS = frozenset(
    {
        ConversationStep.CONFIRM_ORDER,
        ConversationStep.SPLIT_BILL,
        ConversationStep.SPLIT_BILL_NUMBER,
        ConversationStep.WAITING_FOR_CONTACTS,
        ConversationStep.EXTRA_TIP,
    }
)


@transition([step for step in ConversationStep if step not in _NO_TICK_STEPS], [EventKind.TICK])
async def inactivity_check(state, event, ctx):
    now = ctx.clock()
    idle = now - state.last_activity_at
    step = state.current_step

    if idle >= ctx.abandon_after:
        if step in (ConversationStep.FEEDBACK, ConversationStep.FEEDBACK_DETAIL):
            return go(state, ConversationStep.COMPLETED)
        if step in HANDOFF_STEPS:
            return go(state, ConversationStep.INCOMPLETE_ORDER)
        return go(state, ConversationStep.INCOMPLETE_ORDER, messages.abandoned(state.user_id))

    if step in _STEP_REMINDER_STEPS and state.reminder_sent_at is None and idle >= ctx.step_reminder_after:
        state.reminder_sent_at = now
        return stay(state, messages.step_reminder(state.user_id, step))
    return stay(state)