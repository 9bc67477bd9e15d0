from __future__ import annotations

from collections import OrderedDict
from threading import Lock
from typing import Protocol

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from comanda.models.processed_message import ProcessedMessage


class ProcessedMessageRegistry(Protocol):
    def mark(self, message_id: str) -> bool:
        """Registra o id; retorna False se ele já tinha sido processado."""


class InMemoryProcessedMessages:
    def __init__(self, *, max_size: int = 10_000) -> None:
        self.max_size = max_size
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._lock = Lock()

    def mark(self, message_id: str) -> bool:
        with self._lock:
            if message_id in self._seen:
                return False
            self._seen[message_id] = None
            while len(self._seen) > self.max_size:
                self._seen.popitem(last=False)
            return True


class SqlProcessedMessages:
    def __init__(self, session_factory: sessionmaker | None = None) -> None:
        if session_factory is None:
            from comanda.core.database import SessionLocal

            session_factory = SessionLocal
        self._session_factory = session_factory

    def mark(self, message_id: str) -> bool:
        with self._session_factory() as db:
            db.add(ProcessedMessage(message_id=message_id))
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                return False
            return True
