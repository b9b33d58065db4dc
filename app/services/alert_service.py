"""Ops alerts for failures a human has to look at (Telegram bot chat)."""

import os
from typing import Optional

import httpx

from app.logging_config import get_logger

logger = get_logger("alert_service")

ALERT_BOT_TOKEN = os.environ.get("ALERT_BOT_TOKEN")
ALERT_CHAT_ID = os.environ.get("ALERT_CHAT_ID")
ALERT_SERVICE_NAME = os.environ.get("ALERT_SERVICE_NAME", "shopbot")

LEVEL_PREFIX = {"WARNING": "[warn]", "ERROR": "[error]", "CRITICAL": "[critical]"}


def format_alert(level: str, message: str, context: Optional[dict] = None) -> str:
    text = f"{LEVEL_PREFIX.get(level, '[info]')} {ALERT_SERVICE_NAME}: {message}"
    if context:
        details = "\n".join(f"{key}={value}" for key, value in context.items() if value is not None)
        if details:
            text += f"\n{details}"
    return text


def send_alert(level: str, message: str, context: Optional[dict] = None) -> bool:
    """Post an alert to the ops chat. Returns False when unconfigured or on failure."""
    if not ALERT_BOT_TOKEN or not ALERT_CHAT_ID:
        logger.warning(f"Alert not configured: {level} - {message}", extra={"context": context or {}})
        return False

    try:
        with httpx.Client(timeout=10) as client:
            response = client.post(
                f"https://api.telegram.org/bot{ALERT_BOT_TOKEN}/sendMessage",
                json={"chat_id": ALERT_CHAT_ID, "text": format_alert(level, message, context)},
            )
            return response.status_code == 200
    except httpx.HTTPError as e:
        logger.error(f"Failed to send alert: {e}")
        return False


def alert_error(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("ERROR", message, context)


def alert_critical(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("CRITICAL", message, context)
