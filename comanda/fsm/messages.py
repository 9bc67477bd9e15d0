"""Mensagens enviadas ao cliente em cada passo da conversa."""

from __future__ import annotations

from decimal import Decimal

from comanda.core.config import BRAND_NAME, PIX_COPY_PASTE_KEY, RESTAURANT_NAME
from comanda.fsm.parsing import ContactCard
from comanda.fsm.states import ConversationStep
from comanda.services.money import format_brl
from comanda.whatsapp.base import OutboundMessage, text_message, text_messages
from comanda.whatsapp.interactive import build_buttons_message

PAY_ORDER_HINT = (
    "Desculpe, não entendi sua solicitação. Se você gostaria de pagar uma comanda, "
    "por favor, use a frase 'Gostaria de pagar a comanda X'."
)
ORDER_NUMBER_NOT_UNDERSTOOD = (
    "Desculpe, não entendi o número da comanda. Por favor, diga "
    '"Gostaria de pagar a comanda X", onde X é o número da comanda.'
)
CONVERSATION_FINISHED = (
    "Sua última conversa foi finalizada. Se deseja pagar outra comanda, envie 'pagar a comanda X'."
)
HANDOFF_WAIT = "Um de nossos atendentes já foi avisado e vai falar com você em instantes. 😊"
ORDER_IN_PROGRESS = "Desculpe, esta comanda já está sendo processada por outra pessoa."
ORDER_IN_SPLIT = "No momento ela está em processo de divisão de conta. Aguarde o envio dos contatos."
EMPTY_ORDER = "Não há pedidos cadastrados em sua comanda. Por favor, tente novamente mais tarde."

CONFIRM_PROMPT = "👍 A sua comanda está correta?"
CONFIRM_HEADER = "Confirmação do Pedido"
CONFIRM_BUTTONS = (("confirm_yes", "Sim"), ("confirm_no", "Não"))
WRONG_ORDER = "Que pena! Lamentamos pelo ocorrido e o atendente responsável irá conversar com você."

SPLIT_PROMPT = "👍 Você gostaria de dividir a conta?"
SPLIT_BUTTONS = (("split_yes", "Sim"), ("split_no", "Não"))
SPLIT_COUNT_PROMPT = (
    "Com quantas pessoas, *incluindo você*, a conta será dividida?\n\n"
    "Lembrando que a divisão será feita em *partes iguais* entre todos."
)
INVALID_PEOPLE_COUNT = "Por favor, informe um número válido de pessoas (maior que 1)."
CONTACTS_PROMPT = (
    "😊 Perfeito! Me envie os contatos das pessoas usando o botão *Enviar Contato do WhatsApp*.\n\n"
    "Assim que recebermos, seguimos com o atendimento! 📲"
)
CONTACTS_ONLY = "📲 Por favor, envie o contato da pessoa com quem deseja dividir a conta."
ALL_CONTACTS_RECEIVED = "🎉 Todos os contatos foram recebidos!"

TIP_PROMPT = "Você foi bem atendido? Que tal dar uma gorjetinha extra? 😊💸"
TIP_HEADER = "Gorjeta"
TIP_FOOTER = "Escolha das últimas mesas: 5% 🔥"
TIP_BUTTONS = (("tip_3", "3%"), ("tip_5", "5% 🔥"), ("tip_7", "7%"))
TIP_INVALID = "Por favor, escolha uma das opções de gorjeta: 3%, 5% ou 7%, ou diga que não deseja dar gorjeta."
FEE_OBJECTION_REPLY = "A taxa já está inclusa, mas pelo bom serviço, gostaria de adicionar um extra?"
NO_TIP = "Sem problemas!"

PROOF_REQUEST = "Por favor, envie o comprovante! 📄✅"
ATTACH_PROOF = "Para confirmarmos o pagamento, anexe o comprovante como *imagem* ou *PDF* aqui na conversa. 📎"
WAITING_PROOF = "Estamos no aguardo do seu comprovante de pagamento. 😊"
DUPLICATE_PROOF = (
    "Esse comprovante já foi recebido anteriormente. "
    "Se fez um novo pagamento, por favor, envie o comprovante correspondente."
)
INVALID_BENEFICIARY = (
    "❌ O comprovante enviado não corresponde ao favorecido do restaurante.\n\n"
    "👨‍💼 Um de nossos atendentes está a caminho para te ajudar!"
)

INVALID_AMOUNT = (
    "❌ Não conseguimos identificar um valor pago nesse comprovante.\n\n"
    "👨‍💼 Um de nossos atendentes está a caminho para te ajudar!"
)

REMINDER_PROMPT = (
    "Notamos que ainda não recebemos seu comprovante. Está tudo certo com o pagamento?"
)
REMINDER_BUTTONS = (
    ("reminder_help", "Preciso de ajuda"),
    ("reminder_paying", "Estou pagando"),
    ("reminder_conventional", "Pagar na mesa"),
)
REMINDER_HELP = "Entendido! 😊 Vamos encaminhar um de nossos atendentes para te ajudar."
REMINDER_PAYING = "Entendido! 😊 Estamos no aguardo."
REMINDER_CONVENTIONAL = "Que pena! 😔 Se mudar de ideia, estamos por aqui para te ajudar! 😊"
REMINDER_INVALID = "Por favor, nos informe se precisa de ajuda ou se está fazendo o pagamento."

EXCESS_BUTTONS = (("excess_tip", "Deixar de gorjeta"), ("excess_refund", "Pedir estorno"))
EXCESS_INVALID = "Por favor, escolha se deseja deixar o valor excedente como gorjeta ou pedir o estorno."
REMAINING_BUTTONS = (("remaining_pay", "Pagar restante"), ("remaining_help", "Preciso de ajuda"))
REMAINING_INVALID = "Por favor, escolha se deseja pagar o valor restante ou falar com um atendente."
ASSISTANCE_ON_THE_WAY = "Entendido! 😊 Um de nossos atendentes está a caminho para te ajudar."

PAYMENT_CONFIRMED = "Pagamento confirmado."
THANKS = "Muito obrigado por utilizar o *{brand}*! 🙏"
FEEDBACK_PROMPT = "De 0 a 10, o quanto você recomendaria o nosso atendimento a um amigo?"
FEEDBACK_INVALID = "Por favor, avalie de 0 a 10."
FEEDBACK_DETAIL_PROMPT = "Agradecemos muito pelo Feedback! 😊\n\nO que você sente que faltou para o 10?"
FEEDBACK_THANKS = "Muito obrigado pelo seu feedback! 😊"
FEEDBACK_DETAIL_THANKS = "Obrigado pelo seu feedback detalhado! 😊"
FEEDBACK_CLOSING = "Se precisar de mais alguma coisa, estamos aqui para ajudar!"
LATE_PROOF = "Comprovante recebido! Qualquer dúvida, estamos à disposição."

ABANDONED = (
    "*👋 {brand}* - Tudo bem por aí?",
    "Percebemos que você não concluiu o pagamento.",
    "Poderia nos dizer o que aconteceu?",
)

_STEP_REMINDERS = {
    ConversationStep.CONFIRM_ORDER: "Notamos que você ainda não confirmou seu pedido. Ele está correto?",
    ConversationStep.SPLIT_BILL: "Estamos aguardando a confirmação da divisão da conta.",
    ConversationStep.SPLIT_BILL_NUMBER: "Estamos aguardando o número de pessoas para dividir a conta.",
    ConversationStep.WAITING_FOR_CONTACTS: "Estamos aguardando os contatos para dividir a conta.",
    ConversationStep.EXTRA_TIP: "Gostaria de adicionar uma gorjeta extra?",
}


def welcome(to: str) -> OutboundMessage:
    return text_message(
        to,
        f"*👋 {BRAND_NAME}* - Bem-vindo(a)!\n"
        "Tornamos o seu pagamento prático e sem complicações.\n\n"
        "*Forma de Pagamento Aceita:* PIX",
    )


def order_confirmation(to: str, order_message: str) -> list[OutboundMessage]:
    return [
        text_message(to, order_message),
        build_buttons_message(to, CONFIRM_PROMPT, CONFIRM_BUTTONS, header=CONFIRM_HEADER),
    ]


def confirm_prompt(to: str) -> OutboundMessage:
    return build_buttons_message(to, CONFIRM_PROMPT, CONFIRM_BUTTONS, header=CONFIRM_HEADER)


def split_prompt(to: str) -> OutboundMessage:
    return build_buttons_message(to, SPLIT_PROMPT, SPLIT_BUTTONS)


def order_in_progress(to: str, *, splitting: bool) -> list[OutboundMessage]:
    if splitting:
        return text_messages(to, [ORDER_IN_PROGRESS, ORDER_IN_SPLIT])
    return [text_message(to, ORDER_IN_PROGRESS)]


def _plural(count: int, singular: str, plural: str) -> str:
    return singular if count == 1 else plural


def contacts_received(
    to: str,
    accepted: list[ContactCard],
    *,
    truncated_to: int | None,
    still_missing: int,
) -> list[OutboundMessage]:
    body = "✨ *Contato(s) Recebido(s) com Sucesso!* ✨\n"
    for contact in accepted:
        body += f"\n👤 *Nome:* {contact.name}\n📞 *Número:* {contact.phone}\n"

    if truncated_to is not None:
        considered = _plural(
            truncated_to,
            "o primeiro contato foi considerado",
            f"os primeiros {truncated_to} contatos foram considerados",
        )
        body += f"\n⚠️ Você enviou mais contatos do que o necessário.\nApenas {considered}."
    if still_missing > 0:
        body += (
            f"\n🕒 Aguardando mais *{still_missing}* "
            f"{_plural(still_missing, 'contato', 'contatos')} para continuar."
        )
    messages = [text_message(to, body.rstrip())]
    if still_missing <= 0:
        messages.append(text_message(to, ALL_CONTACTS_RECEIVED))
    return messages


def contacts_already_complete(to: str) -> list[OutboundMessage]:
    return text_messages(
        to,
        ["Você já enviou todos os contatos necessários.", "Vamos prosseguir com seu atendimento. 😄"],
    )


def tip_prompt(to: str) -> OutboundMessage:
    return build_buttons_message(to, TIP_PROMPT, TIP_BUTTONS, header=TIP_HEADER, footer=TIP_FOOTER)


def tip_invalid(to: str) -> OutboundMessage:
    return build_buttons_message(to, TIP_INVALID, TIP_BUTTONS, header=TIP_HEADER, footer=TIP_FOOTER)


def fee_objection(to: str) -> OutboundMessage:
    return build_buttons_message(to, FEE_OBJECTION_REPLY, TIP_BUTTONS, header=TIP_HEADER)


def tip_response(percent: Decimal) -> str:
    shown = f"{percent.normalize():f}".replace(".", ",")
    if percent <= 3:
        return (
            f"Obrigado! 😊 \nVocê escolheu {shown}%. "
            "Cada contribuição conta e sua ajuda é muito apreciada pela nossa equipe! 🙌"
        )
    if percent <= 5:
        return (
            f"Obrigado! 😊 \nVocê escolheu {shown}%, a mesma opção da maioria das últimas mesas. "
            "Sua contribuição faz a diferença para a equipe! 💪"
        )
    if percent <= 7:
        return (
            f"Incrível! 😄 \nVocê escolheu {shown}%, uma gorjeta generosa! "
            "Obrigado por apoiar nossa equipe de maneira tão especial. 💫"
        )
    return "Obrigado pela sua generosidade! 😊"


def payment_instructions(to: str, amount: Decimal, pix_key: str | None = None) -> list[OutboundMessage]:
    key = pix_key if pix_key is not None else PIX_COPY_PASTE_KEY
    return text_messages(
        to,
        [
            f"O valor final da sua conta foi de: *{format_brl(amount)}*",
            f"Segue abaixo chave copia e cola do PIX 👇\n\n{key}",
            PROOF_REQUEST,
        ],
    )


def participant_invite(to: str, table_id: str, share: Decimal) -> list[OutboundMessage]:
    return [
        text_message(
            to,
            f"*👋 {BRAND_NAME}* - Olá! Você foi incluído na divisão do pagamento da comanda "
            f"*{table_id}* no restaurante {RESTAURANT_NAME}.",
        ),
        text_message(to, f"Sua parte na conta é de *{format_brl(share)}*."),
        tip_prompt(to),
    ]


def payment_reminder(to: str) -> OutboundMessage:
    return build_buttons_message(to, REMINDER_PROMPT, REMINDER_BUTTONS)


def overpayment_prompt(to: str, excess: Decimal) -> OutboundMessage:
    body = (
        f"Recebemos seu pagamento, mas o valor ficou *{format_brl(excess)}* acima do esperado.\n\n"
        "Deseja deixar a diferença como gorjeta para a equipe ou prefere o estorno?"
    )
    return build_buttons_message(to, body, EXCESS_BUTTONS)


def underpayment_prompt(to: str, paid: Decimal, remaining: Decimal) -> OutboundMessage:
    body = (
        f"Recebemos *{format_brl(paid)}*, mas ainda falta *{format_brl(remaining)}* para quitar a sua parte.\n\n"
        "Deseja pagar o valor restante ou prefere falar com um atendente?"
    )
    return build_buttons_message(to, body, REMAINING_BUTTONS)


def excess_as_tip(excess: Decimal) -> str:
    return f"Obrigado pela generosidade! 😊 Os *{format_brl(excess)}* excedentes ficarão como gorjeta para a equipe."


def refund_requested(excess: Decimal) -> str:
    return f"Tudo certo! Solicitamos o estorno de *{format_brl(excess)}*. Um atendente vai cuidar disso para você."


def payment_confirmed(to: str) -> list[OutboundMessage]:
    return text_messages(to, [PAYMENT_CONFIRMED, THANKS.format(brand=BRAND_NAME), FEEDBACK_PROMPT])


def feedback_closing(to: str, *, detailed: bool) -> list[OutboundMessage]:
    first = FEEDBACK_DETAIL_THANKS if detailed else FEEDBACK_THANKS
    return text_messages(to, [first, FEEDBACK_CLOSING])


def abandoned(to: str) -> list[OutboundMessage]:
    return text_messages(to, [line.format(brand=BRAND_NAME) for line in ABANDONED])


def step_reminder(to: str, step: ConversationStep) -> list[OutboundMessage]:
    reminder = _STEP_REMINDERS.get(step, "Estamos aguardando sua ação para continuar.")
    return text_messages(to, [f"*👋 {BRAND_NAME}* - Está tudo bem?", reminder])


def excess_invalid(to: str) -> OutboundMessage:
    return build_buttons_message(to, EXCESS_INVALID, EXCESS_BUTTONS)


def remaining_invalid(to: str) -> OutboundMessage:
    return build_buttons_message(to, REMAINING_INVALID, REMAINING_BUTTONS)
