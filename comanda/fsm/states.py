from __future__ import annotations

from enum import Enum


class ConversationStep(str, Enum):
    INITIAL = "initial"
    PROCESSING_ORDER = "processing_order"
    CONFIRM_ORDER = "confirm_order"
    SPLIT_BILL = "split_bill"
    SPLIT_BILL_NUMBER = "split_bill_number"
    WAITING_FOR_CONTACTS = "waiting_for_contacts"
    EXTRA_TIP = "extra_tip"
    WAITING_FOR_PAYMENT = "waiting_for_payment"
    AWAITING_USER_DECISION = "awaiting_user_decision"
    OVERPAYMENT_DECISION = "overpayment_decision"
    PAYMENT_REMINDER = "payment_reminder"
    FEEDBACK = "feedback"
    FEEDBACK_DETAIL = "feedback_detail"
    COMPLETED = "completed"
    INCOMPLETE_ORDER = "incomplete_order"
    ORDER_NOT_FOUND = "order_not_found"
    EMPTY_ORDER = "empty_order"
    PAYMENT_INVALID = "payment_invalid"
    PAYMENT_ASSISTANCE = "payment_assistance"


INITIAL = ConversationStep.INITIAL
TERMINAL_STEPS = frozenset({ConversationStep.COMPLETED, ConversationStep.INCOMPLETE_ORDER})

# Passos de atendimento humano: aceitam "pagar a comanda N" para recomeçar
HANDOFF_STEPS = frozenset(
    {
        ConversationStep.ORDER_NOT_FOUND,
        ConversationStep.EMPTY_ORDER,
        ConversationStep.PAYMENT_INVALID,
        ConversationStep.PAYMENT_ASSISTANCE,
    }
)
RESTARTABLE_STEPS = TERMINAL_STEPS | HANDOFF_STEPS

# Arestas permitidas entre passos. Transições que ficam no mesmo passo são sempre válidas.
ALLOWED_TRANSITIONS: dict[ConversationStep, frozenset[ConversationStep]] = {
    ConversationStep.INITIAL: frozenset({ConversationStep.PROCESSING_ORDER}),
    ConversationStep.PROCESSING_ORDER: frozenset(
        {
            ConversationStep.CONFIRM_ORDER,
            ConversationStep.ORDER_NOT_FOUND,
            ConversationStep.EMPTY_ORDER,
            ConversationStep.INCOMPLETE_ORDER,
        }
    ),
    ConversationStep.CONFIRM_ORDER: frozenset(
        {ConversationStep.SPLIT_BILL, ConversationStep.INCOMPLETE_ORDER}
    ),
    ConversationStep.SPLIT_BILL: frozenset(
        {
            ConversationStep.SPLIT_BILL_NUMBER,
            ConversationStep.EXTRA_TIP,
            ConversationStep.INCOMPLETE_ORDER,
        }
    ),
    ConversationStep.SPLIT_BILL_NUMBER: frozenset(
        {ConversationStep.WAITING_FOR_CONTACTS, ConversationStep.INCOMPLETE_ORDER}
    ),
    ConversationStep.WAITING_FOR_CONTACTS: frozenset(
        {ConversationStep.EXTRA_TIP, ConversationStep.INCOMPLETE_ORDER}
    ),
    ConversationStep.EXTRA_TIP: frozenset(
        {ConversationStep.WAITING_FOR_PAYMENT, ConversationStep.INCOMPLETE_ORDER}
    ),
    ConversationStep.WAITING_FOR_PAYMENT: frozenset(
        {
            ConversationStep.FEEDBACK,
            ConversationStep.OVERPAYMENT_DECISION,
            ConversationStep.AWAITING_USER_DECISION,
            ConversationStep.PAYMENT_REMINDER,
            ConversationStep.PAYMENT_INVALID,
            ConversationStep.PAYMENT_ASSISTANCE,
            ConversationStep.INCOMPLETE_ORDER,
        }
    ),
    ConversationStep.PAYMENT_REMINDER: frozenset(
        {
            ConversationStep.WAITING_FOR_PAYMENT,
            ConversationStep.PAYMENT_ASSISTANCE,
            ConversationStep.INCOMPLETE_ORDER,
            ConversationStep.FEEDBACK,
            ConversationStep.OVERPAYMENT_DECISION,
            ConversationStep.AWAITING_USER_DECISION,
            ConversationStep.PAYMENT_INVALID,
        }
    ),
    ConversationStep.OVERPAYMENT_DECISION: frozenset(
        {ConversationStep.FEEDBACK, ConversationStep.INCOMPLETE_ORDER}
    ),
    ConversationStep.AWAITING_USER_DECISION: frozenset(
        {
            ConversationStep.WAITING_FOR_PAYMENT,
            ConversationStep.PAYMENT_ASSISTANCE,
            ConversationStep.INCOMPLETE_ORDER,
        }
    ),
    ConversationStep.FEEDBACK: frozenset(
        {ConversationStep.FEEDBACK_DETAIL, ConversationStep.COMPLETED}
    ),
    ConversationStep.FEEDBACK_DETAIL: frozenset({ConversationStep.COMPLETED}),
    ConversationStep.COMPLETED: frozenset(),
    ConversationStep.INCOMPLETE_ORDER: frozenset(),
    # atendimento humano: só saem por inatividade ou por um novo "pagar a comanda N"
    ConversationStep.ORDER_NOT_FOUND: frozenset({ConversationStep.INCOMPLETE_ORDER}),
    ConversationStep.EMPTY_ORDER: frozenset({ConversationStep.INCOMPLETE_ORDER}),
    ConversationStep.PAYMENT_INVALID: frozenset({ConversationStep.INCOMPLETE_ORDER}),
    ConversationStep.PAYMENT_ASSISTANCE: frozenset({ConversationStep.INCOMPLETE_ORDER}),
}


def is_terminal(step: ConversationStep) -> bool:
    return step in TERMINAL_STEPS


def is_allowed(current: ConversationStep, nxt: ConversationStep) -> bool:
    return current == nxt or nxt in ALLOWED_TRANSITIONS[current]
