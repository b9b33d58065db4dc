from typing import Callable, Optional

import httpx

from app.config import settings
from app.logging_config import get_logger
from app.services.alert_service import alert_critical

logger = get_logger("messenger_service")

MAX_MESSAGE_LENGTH = 2000


def split_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Messenger rejects texts over 2000 chars; split on line breaks where possible."""
    chunks = []
    remaining = text
    while len(remaining) > limit:
        cut = remaining.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(remaining[:cut].rstrip())
        remaining = remaining[cut:].lstrip("\n")
    if remaining:
        chunks.append(remaining)
    return chunks


class MessengerService:
    """Sends bot and operator replies through the Messenger Send API."""

    def __init__(
        self,
        resolve_recipient: Callable[[str], Optional[str]],
        page_access_token: Optional[str] = None,
        api_url: Optional[str] = None,
    ):
        self.resolve_recipient = resolve_recipient
        self.page_access_token = page_access_token or settings.messenger_page_access_token
        self.api_url = api_url or settings.messenger_api_url

    def send_text(self, conversation_id: str, text: str) -> bool:
        if not self.page_access_token:
            logger.error("Messenger token is missing (MESSENGER_PAGE_ACCESS_TOKEN not set)")
            alert_critical("Messenger send failed", {"conversation_id": conversation_id, "error": "missing_token"})
            return False

        recipient = self.resolve_recipient(conversation_id)
        if not recipient or not text:
            logger.warning(f"send_text: missing recipient={recipient} or text for {conversation_id}")
            return False

        try:
            with httpx.Client(timeout=30.0) as client:
                for chunk in split_message(text):
                    response = client.post(
                        self.api_url,
                        params={"access_token": self.page_access_token},
                        json={
                            "recipient": {"id": recipient},
                            "messaging_type": "RESPONSE",
                            "message": {"text": chunk},
                        },
                    )
                    if response.status_code != 200:
                        logger.error(
                            f"Messenger send failed: status={response.status_code}, body={response.text[:200]}",
                            extra={"context": {"conversation_id": conversation_id}},
                        )
                        return False
            return True
        except httpx.HTTPError as e:
            logger.error(f"Error sending Messenger message: {e}")
            alert_critical("Messenger send failed", {"conversation_id": conversation_id, "error": str(e)})
            return False
