from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from comanda.core.config import RETRY_DELAY_NOTICE_ATTEMPT, RETRY_DELAY_SECONDS, RETRY_MAX_ATTEMPTS
from comanda.fsm.states import ConversationStep
from comanda.services.attendant import AttendantNotifier, GroupTopic, authentication_error

logger = logging.getLogger(__name__)

T = TypeVar("T")
Sleep = Callable[[float], Awaitable[None]]
NotifyUser = Callable[[str], Awaitable[None]]


class CollaboratorError(RuntimeError):
    """Falha transitória de um colaborador externo (PDV, extrator)."""


class RetryExhaustedError(RuntimeError):
    def __init__(self, step: ConversationStep, attempts: int, last_error: BaseException | None):
        super().__init__(f"Max retries reached at {step.value} after {attempts} attempts: {last_error}")
        self.step = step
        self.attempts = attempts
        self.last_error = last_error


@dataclass
class RetryPolicy:
    max_retries: int = RETRY_MAX_ATTEMPTS
    delay_seconds: float = RETRY_DELAY_SECONDS
    delay_notice_attempt: int = RETRY_DELAY_NOTICE_ATTEMPT


_DELAY_MESSAGES = {
    ConversationStep.PROCESSING_ORDER: (
        "🔄 O processamento da sua comanda está demorando um pouco mais que o esperado.\n\n"
        "Por favor, aguarde um instante enquanto verificamos os detalhes para você! 😊"
    ),
    ConversationStep.CONFIRM_ORDER: (
        "🔄 Estamos confirmando os detalhes da sua comanda, mas parece que está demorando um pouco mais "
        "do que o habitual.\n\nPor favor, mantenha-se à vontade, logo finalizaremos! 😄"
    ),
    ConversationStep.SPLIT_BILL: (
        "🔄 O processo de divisão da conta está em andamento, mas pode levar alguns instantes a mais.\n\n"
        "Agradecemos pela paciência! 🎉"
    ),
    ConversationStep.WAITING_FOR_CONTACTS: (
        "🔄 Estamos aguardando os contatos para dividir a conta.\n\n"
        "Isso pode demorar um pouco mais do que o esperado. Obrigado pela compreensão! 📲"
    ),
    ConversationStep.WAITING_FOR_PAYMENT: (
        "🔄 Estamos aguardando a confirmação do pagamento. Pode levar alguns instantes.\n\n"
        "Agradecemos pela paciência! 🕒"
    ),
}
_DEFAULT_DELAY_MESSAGE = (
    "🔄 O processo está demorando um pouco mais do que o esperado.\n\n"
    "Por favor, mantenha-se à vontade, logo concluiremos! 😄"
)

_HELP_ON_THE_WAY = "\n\n👨‍💼 Um de nossos atendentes está a caminho para te ajudar!"
_STAGE_ERRORS = {
    ConversationStep.PROCESSING_ORDER: "Um erro ocorreu ao processar sua comanda.",
    ConversationStep.CONFIRM_ORDER: "Um erro ocorreu ao confirmar os detalhes da sua comanda.",
    ConversationStep.SPLIT_BILL: "Um erro ocorreu ao dividir a conta.",
    ConversationStep.WAITING_FOR_CONTACTS: "Um erro ocorreu ao processar os contatos para divisão de conta.",
    ConversationStep.WAITING_FOR_PAYMENT: "Um erro ocorreu ao verificar o pagamento.",
}


def delay_message(step: ConversationStep) -> str:
    return _DELAY_MESSAGES.get(step, _DEFAULT_DELAY_MESSAGE)


def stage_error_message(step: ConversationStep) -> str:
    return _STAGE_ERRORS.get(step, "Um erro ocorreu durante o processamento.") + _HELP_ON_THE_WAY


class RetryOrchestrator:
    """Executa chamadas a colaboradores instáveis com tentativas limitadas.

    Cada falha gera um alerta no grupo de operação; na tentativa configurada o
    cliente recebe um aviso de demora. Esgotadas as tentativas, o cliente
    recebe a mensagem de erro do passo, o grupo de garçons é avisado e
    RetryExhaustedError sobe para quem chamou.
    """

    def __init__(
        self,
        attendant: AttendantNotifier,
        *,
        policy: RetryPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.attendant = attendant
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def run(
        self,
        work: Callable[[], Awaitable[T]],
        *,
        step: ConversationStep,
        notify_user: NotifyUser,
        failure_alert: str | None = None,
        exhausted_alert: str | None = None,
        send_delay_notice: bool = True,
    ) -> T:
        attempts = 0
        last_error: CollaboratorError | None = None

        while attempts < self.policy.max_retries:
            try:
                return await work()
            except CollaboratorError as exc:
                attempts += 1
                last_error = exc
                logger.error(
                    "Attempt %s failed at stage %s: %s",
                    attempts,
                    step.value,
                    exc,
                    extra={"step": step.value},
                )

                if send_delay_notice and attempts == self.policy.delay_notice_attempt:
                    await notify_user(delay_message(step))

                await self.attendant.notify(GroupTopic.OPERATOR, failure_alert or authentication_error())

                if attempts < self.policy.max_retries:
                    await self._sleep(self.policy.delay_seconds)

        await notify_user(stage_error_message(step))
        if exhausted_alert:
            await self.attendant.notify(GroupTopic.WAITER, exhausted_alert)
        raise RetryExhaustedError(step, attempts, last_error) from last_error
