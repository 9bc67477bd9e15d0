from fastapi import APIRouter, Depends
from pydantic import BaseModel

from comanda.deps import get_engine
from comanda.fsm.engine import ConversationEngine
from comanda.schemas.events import InboundEvent

router = APIRouter(prefix="/simulator")


class SimulatedMessage(BaseModel):
    telefone: str
    texto: str = ""
    reply_id: str | None = None


@router.post("/mensagem")
async def simular(body: SimulatedMessage, engine: ConversationEngine = Depends(get_engine)):
    reply = await engine.handle(
        InboundEvent(
            user_id=body.telefone,
            raw_text=body.texto,
            structured_reply_id=body.reply_id,
        )
    )
    return {
        "estado": reply.next_step.value if reply.next_step else None,
        "respostas": [message.render() for message in reply.messages],
    }
