from typing import Optional

from pydantic import BaseModel, Field

from app.services.state_machine import ConversationState


class Attachment(BaseModel):
    type: str = "image"
    url: str
    recognition: Optional[str] = None


class InboundMessageRequest(BaseModel):
    text: Optional[str] = None
    attachments: list[Attachment] = Field(default_factory=list)


class InboundMessageResponse(BaseModel):
    reply_sent: bool
    new_state: ConversationState
    flagged_for_human: bool


class StateOverrideRequest(BaseModel):
    state: ConversationState


class StateOverrideResponse(BaseModel):
    success: bool
    state: ConversationState
    cleared_fields: list[str]


class OperatorMessageRequest(BaseModel):
    text: str = Field(min_length=1)


class OperatorMessageResponse(BaseModel):
    success: bool
    waited_for_bot: bool
    message: Optional[str] = None
