from fastapi import APIRouter, Depends, HTTPException

from app.container import ServiceContainer, get_container
from app.schemas.message import (
    OperatorMessageRequest,
    OperatorMessageResponse,
    StateOverrideRequest,
    StateOverrideResponse,
)
from app.services.interfaces import ConversationNotFound, PersistenceFailure
from app.services.operator_service import override_state, send_operator_message

router = APIRouter(prefix="/conversations")


@router.patch("/{conversation_id}/state", response_model=StateOverrideResponse)
def change_state(
    conversation_id: str,
    request: StateOverrideRequest,
    container: ServiceContainer = Depends(get_container),
):
    """Owner forces the conversation into another state."""
    try:
        result = override_state(container.store, conversation_id, request.state)
    except ConversationNotFound:
        raise HTTPException(status_code=404, detail=f"Conversation '{conversation_id}' not found")
    except PersistenceFailure:
        raise HTTPException(status_code=500, detail="State change could not be saved")
    return StateOverrideResponse(success=True, state=result.state, cleared_fields=result.cleared_fields)


@router.post("/{conversation_id}/send-message", response_model=OperatorMessageResponse)
async def send_message(
    conversation_id: str,
    request: OperatorMessageRequest,
    container: ServiceContainer = Depends(get_container),
):
    """Owner replies to the customer by hand."""
    try:
        result = await send_operator_message(
            container.locks,
            container.messenger,
            container.store,
            conversation_id,
            request.text,
        )
    except ConversationNotFound:
        raise HTTPException(status_code=404, detail=f"Conversation '{conversation_id}' not found")
    except PersistenceFailure:
        raise HTTPException(status_code=500, detail="Message sent but could not be recorded")

    if not result.success:
        return OperatorMessageResponse(success=False, waited_for_bot=result.waited_for_bot, message="Delivery failed")
    return OperatorMessageResponse(success=True, waited_for_bot=result.waited_for_bot)
