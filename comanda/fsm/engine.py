from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from comanda.core.config import (
    ABANDON_AFTER_MINUTES,
    MAX_INBOUND_AGE_SECONDS,
    PAYMENT_REMINDER_MINUTES,
    PIX_COPY_PASTE_KEY,
)
from comanda.core.request_context import request_scope, set_request_context
from comanda.extraction.base import ProofExtractor
from comanda.fsm.parsing import is_pay_order_request
from comanda.fsm.states import INITIAL, RESTARTABLE_STEPS, ConversationStep, is_allowed, is_terminal
from comanda.fsm.transitions import (
    CloseOrder,
    Command,
    InvariantViolation,
    NotifyAttendant,
    SpawnConversation,
    TransitionContext,
    resolve,
)
from comanda.schemas.conversation import ConversationState
from comanda.schemas.events import EventKind, InboundEvent
from comanda.services import attendant as notices
from comanda.services.attendant import AttendantNotifier, GroupTopic
from comanda.services.conversation_store import ConversationStore
from comanda.services.ledger import ParticipantLedger
from comanda.services.order_claims import OrderClaimArbiter
from comanda.services.order_gateway import OrderGateway
from comanda.services.processed_messages import InMemoryProcessedMessages, ProcessedMessageRegistry
from comanda.services.proof_validator import ExpectedBeneficiary
from comanda.services.retry import CollaboratorError, RetryOrchestrator
from comanda.whatsapp.base import OutboundMessage
from comanda.whatsapp.service import WhatsAppService

logger = logging.getLogger(__name__)

USER_EVENTS = {EventKind.TEXT, EventKind.REPLY, EventKind.MEDIA, EventKind.CONTACTS}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class EngineReply:
    messages: list[OutboundMessage] = field(default_factory=list)
    next_step: ConversationStep | None = None
    ignored: bool = False


class ConversationEngine:
    """Aplica eventos às conversas: carrega, transiciona, grava e envia.

    Eventos do mesmo usuário são serializados por um asyncio.Lock próprio;
    usuários diferentes andam em paralelo. Os comandos devolvidos pelas
    transições rodam depois que o lock do usuário é liberado.
    """

    def __init__(
        self,
        *,
        store: ConversationStore,
        sender: WhatsAppService,
        orders: OrderGateway,
        extractor: ProofExtractor,
        ledger: ParticipantLedger,
        attendant: AttendantNotifier,
        arbiter: OrderClaimArbiter | None = None,
        retry: RetryOrchestrator | None = None,
        processed: ProcessedMessageRegistry | None = None,
        clock: Callable[[], datetime] = utcnow,
        expected_beneficiary: ExpectedBeneficiary | None = None,
        max_inbound_age: timedelta = timedelta(seconds=MAX_INBOUND_AGE_SECONDS),
        payment_reminder_after: timedelta = timedelta(minutes=PAYMENT_REMINDER_MINUTES),
        abandon_after: timedelta = timedelta(minutes=ABANDON_AFTER_MINUTES),
        pix_key: str = PIX_COPY_PASTE_KEY,
    ) -> None:
        self.store = store
        self.sender = sender
        self.orders = orders
        self.attendant = attendant
        self.arbiter = arbiter or OrderClaimArbiter(store, clock=clock)
        self.processed = processed or InMemoryProcessedMessages()
        self.clock = clock
        self.max_inbound_age = max_inbound_age
        self.ctx = TransitionContext(
            orders=orders,
            extractor=extractor,
            ledger=ledger,
            arbiter=self.arbiter,
            retry=retry or RetryOrchestrator(attendant),
            send_now=sender.send,
            clock=clock,
            expected_beneficiary=expected_beneficiary or ExpectedBeneficiary(),
            payment_reminder_after=payment_reminder_after,
            step_reminder_after=payment_reminder_after,
            abandon_after=abandon_after,
            pix_key=pix_key,
            store=store,
        )
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    def _should_ignore(self, event: InboundEvent) -> bool:
        if event.timestamp is not None:
            age = self.clock() - event.timestamp
            if age > self.max_inbound_age:
                logger.info(
                    "Ignoring old message from %s (%.0fs old)", event.user_id, age.total_seconds()
                )
                return True
        if event.message_id and not self.processed.mark(event.message_id):
            logger.info("Ignoring duplicate message %s from %s", event.message_id, event.user_id)
            return True
        return False

    async def handle(self, event: InboundEvent) -> EngineReply:
        if self._should_ignore(event):
            return EngineReply(ignored=True)

        request_id = event.message_id or uuid.uuid4().hex
        with request_scope(request_id=request_id, user_id=event.user_id):
            started = time.perf_counter()
            try:
                async with self._lock_for(event.user_id):
                    state, sent, commands = await self._apply(event)
                await self._run_commands(commands)
            finally:
                duration_ms = round((time.perf_counter() - started) * 1000, 2)
                logger.info(
                    "event %s handled", event.kind.value, extra={"duration_ms": duration_ms}
                )

        if state is None:
            return EngineReply()
        return EngineReply(messages=sent, next_step=state.current_step)

    def _restart_requested(self, state: ConversationState, event: InboundEvent) -> bool:
        return (
            state.current_step in RESTARTABLE_STEPS
            and event.kind == EventKind.TEXT
            and is_pay_order_request(event.text)
        )

    def _fresh_state(self, user_id: str) -> ConversationState:
        now = self.clock()
        return ConversationState(user_id=user_id, created_at=now, last_activity_at=now)

    async def _apply(self, event: InboundEvent):
        user_id = event.user_id
        state = await self.store.load(user_id)
        if state is None:
            if event.kind not in USER_EVENTS:
                return None, [], []
            state = self._fresh_state(user_id)
        elif self._restart_requested(state, event):
            logger.info("restarting conversation of %s from %s", user_id, state.current_step.value)
            state = self._fresh_state(user_id)

        if event.kind in USER_EVENTS:
            state.last_activity_at = self.clock()
            state.reminder_sent_at = None

        sent: list[OutboundMessage] = []
        commands: list[Command] = []
        while True:
            set_request_context(order_id=state.order_id)
            previous = state.current_step
            handler = resolve(previous, event.kind)
            result = await handler(state, event, self.ctx)

            if not is_allowed(previous, result.next_step):
                raise InvariantViolation(
                    f"transition {previous.value} -> {result.next_step.value} is not allowed"
                )
            state = result.state
            state.current_step = result.next_step
            await self.store.save(state)

            if previous != state.current_step:
                logger.info(
                    "step %s -> %s",
                    previous.value,
                    state.current_step.value,
                    extra={"step": state.current_step.value},
                )
            await self.sender.send_all(result.messages)
            sent.extend(result.messages)
            commands.extend(result.commands)

            if is_terminal(state.current_step) and state.order_id:
                await self.arbiter.release(state.order_id, user_id)

            if not result.chain:
                break
            event = InboundEvent.continuation(user_id)

        return state, sent, commands

    async def _run_commands(self, commands: list[Command]) -> None:
        for command in commands:
            if isinstance(command, NotifyAttendant):
                await self.attendant.notify(command.topic, command.text)
            elif isinstance(command, CloseOrder):
                await self._close_order(command.order_id)
            elif isinstance(command, SpawnConversation):
                await self._spawn(command)
            else:
                raise InvariantViolation(f"unknown command {command!r}")

    async def _close_order(self, order_id: str) -> None:
        try:
            await self.orders.close_order(order_id)
        except CollaboratorError:
            logger.exception("failed to close order %s", order_id)
            await self.attendant.notify(GroupTopic.WAITER, notices.finish_payment_error(order_id))

    async def _spawn(self, command: SpawnConversation) -> None:
        invited = command.state
        async with self._lock_for(invited.user_id):
            existing = await self.store.load(invited.user_id)
            if existing is not None and existing.current_step not in RESTARTABLE_STEPS | {INITIAL}:
                logger.warning(
                    "participant %s already in an active conversation (%s), invite skipped",
                    invited.user_id,
                    existing.current_step.value,
                )
                return
            await self.store.save(invited)
            await self.sender.send_all(command.messages)
        logger.info("split participant %s invited to order %s", invited.user_id, invited.order_id)
