import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from app.database import Base


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    workspace_id = Column(UUID(as_uuid=True), ForeignKey("workspaces.id"), nullable=False)
    customer_psid = Column(Text, nullable=False)  # page-scoped id of the Messenger user
    customer_name = Column(Text)
    current_state = Column(Text, nullable=False, default="idle")
    context = Column(JSONB, nullable=False, default=dict)
    last_message_at = Column(TIMESTAMP(timezone=True))
    needs_manual_response = Column(Boolean, nullable=False, default=False)
    manual_flag_reason = Column(Text)
    manual_flagged_at = Column(TIMESTAMP(timezone=True))
    created_at = Column(TIMESTAMP(timezone=True))

    workspace = relationship("Workspace", back_populates="conversations")
    messages = relationship("Message", back_populates="conversation")
    orders = relationship("Order", back_populates="conversation")
