"""
Inbound payload parsing shared by the USSD and WhatsApp webhooks.

Gateways post either ``application/x-www-form-urlencoded`` (Africa's
Talking, Twilio) or JSON (test harnesses, some aggregators).
"""
import json

from fastapi import Request

from agrimove.core.logging import get_logger

logger = get_logger(__name__)


async def read_payload(request: Request) -> dict[str, str]:
    """Flat string mapping of the request body; empty on an unreadable body"""
    content_type = request.headers.get("content-type", "")

    if content_type.startswith("application/json"):
        try:
            data = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("Webhook body is not valid JSON")
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): "" if v is None else str(v) for k, v in data.items()}

    form = await request.form()
    return {k: str(v) for k, v in form.items()}
