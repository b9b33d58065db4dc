from fastapi import APIRouter, Depends, HTTPException

from app.container import ServiceContainer, get_container
from app.logging_config import get_logger
from app.schemas.message import InboundMessageRequest, InboundMessageResponse
from app.services.interfaces import PersistenceFailure

router = APIRouter()
logger = get_logger("routers.message")


@router.post("/conversations/{conversation_id}/inbound", response_model=InboundMessageResponse)
async def handle_inbound_message(
    conversation_id: str,
    request: InboundMessageRequest,
    container: ServiceContainer = Depends(get_container),
):
    """Run one customer message through the decision core."""
    try:
        result = await container.orchestrator.process_inbound_message(
            conversation_id,
            raw_text=request.text,
            attachments=request.attachments,
        )
    except PersistenceFailure as exc:
        logger.error(f"Inbound message not persisted: {exc}", extra={"context": {"conversation_id": conversation_id}})
        raise HTTPException(status_code=500, detail="Conversation state could not be saved")

    return InboundMessageResponse(
        reply_sent=result.reply_sent,
        new_state=result.new_state,
        flagged_for_human=result.flagged_for_human,
    )
