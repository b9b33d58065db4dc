import uuid

from sqlalchemy import Column, Text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from app.database import Base


class Workspace(Base):
    __tablename__ = "workspaces"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    facebook_page_id = Column(Text)
    settings = Column(JSONB, nullable=False, default=dict)  # see WorkspaceSettings
    created_at = Column(TIMESTAMP(timezone=True))

    conversations = relationship("Conversation", back_populates="workspace")
    products = relationship("Product", back_populates="workspace")
