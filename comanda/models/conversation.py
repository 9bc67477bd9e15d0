from sqlalchemy import Column, DateTime, String, Text, func

from comanda.core.database import Base


class Conversation(Base):
    __tablename__ = "conversations"

    user_id = Column(String, primary_key=True)

    current_step = Column(String, default="initial", nullable=False, index=True)
    order_id = Column(String, nullable=True, index=True)

    # ConversationState serializado (pydantic)
    state_json = Column(Text, default="{}", nullable=False)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
