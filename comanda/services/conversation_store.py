from __future__ import annotations

from threading import Lock
from typing import Protocol

from sqlalchemy.orm import sessionmaker
from starlette.concurrency import run_in_threadpool

from comanda.fsm.states import TERMINAL_STEPS
from comanda.models.conversation import Conversation
from comanda.schemas.conversation import ConversationState


class ConversationStore(Protocol):
    async def load(self, user_id: str) -> ConversationState | None:
        ...

    async def save(self, state: ConversationState) -> None:
        ...

    async def delete(self, user_id: str) -> None:
        ...

    async def find_by_order(self, order_id: str) -> list[ConversationState]:
        ...

    async def list_active(self) -> list[ConversationState]:
        ...


class InMemoryConversationStore:
    """Guarda snapshots JSON; quem carrega recebe sempre uma cópia nova."""

    def __init__(self) -> None:
        self._rows: dict[str, str] = {}
        self._lock = Lock()

    async def load(self, user_id: str) -> ConversationState | None:
        with self._lock:
            raw = self._rows.get(user_id)
        return ConversationState.from_json(raw) if raw else None

    async def save(self, state: ConversationState) -> None:
        raw = state.to_json()
        with self._lock:
            self._rows[state.user_id] = raw

    async def delete(self, user_id: str) -> None:
        with self._lock:
            self._rows.pop(user_id, None)

    async def find_by_order(self, order_id: str) -> list[ConversationState]:
        return [state for state in await self._all() if state.order_id == order_id]

    async def list_active(self) -> list[ConversationState]:
        return [state for state in await self._all() if state.current_step not in TERMINAL_STEPS]

    async def _all(self) -> list[ConversationState]:
        with self._lock:
            rows = list(self._rows.values())
        return [ConversationState.from_json(raw) for raw in rows]


class SqlConversationStore:
    """Sessões SQLAlchemy síncronas, executadas no threadpool para não travar o loop."""

    def __init__(self, session_factory: sessionmaker | None = None) -> None:
        if session_factory is None:
            from comanda.core.database import SessionLocal

            session_factory = SessionLocal
        self._session_factory = session_factory

    async def load(self, user_id: str) -> ConversationState | None:
        return await run_in_threadpool(self._load, user_id)

    async def save(self, state: ConversationState) -> None:
        await run_in_threadpool(self._save, state)

    async def delete(self, user_id: str) -> None:
        await run_in_threadpool(self._delete, user_id)

    async def find_by_order(self, order_id: str) -> list[ConversationState]:
        return await run_in_threadpool(self._find_by_order, order_id)

    async def list_active(self) -> list[ConversationState]:
        return await run_in_threadpool(self._list_active)

    def _load(self, user_id: str) -> ConversationState | None:
        with self._session_factory() as db:
            row = db.get(Conversation, user_id)
            return ConversationState.from_json(row.state_json) if row else None

    def _save(self, state: ConversationState) -> None:
        with self._session_factory() as db:
            row = db.get(Conversation, state.user_id)
            if row is None:
                row = Conversation(user_id=state.user_id)
                db.add(row)
            row.current_step = state.current_step.value
            row.order_id = state.order_id
            row.state_json = state.to_json()
            db.commit()

    def _delete(self, user_id: str) -> None:
        with self._session_factory() as db:
            row = db.get(Conversation, user_id)
            if row is not None:
                db.delete(row)
                db.commit()

    def _find_by_order(self, order_id: str) -> list[ConversationState]:
        with self._session_factory() as db:
            rows = db.query(Conversation).filter(Conversation.order_id == order_id).all()
            return [ConversationState.from_json(row.state_json) for row in rows]

    def _list_active(self) -> list[ConversationState]:
        terminal = [step.value for step in TERMINAL_STEPS]
        with self._session_factory() as db:
            rows = db.query(Conversation).filter(Conversation.current_step.notin_(terminal)).all()
            return [ConversationState.from_json(row.state_json) for row in rows]
