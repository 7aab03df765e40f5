"""
Twilio request signature check for the WhatsApp webhook.

Twilio signs each webhook with ``X-Twilio-Signature`` using the account
auth token over the full request URL and the POST parameters.

Usage:
    @router.post("/webhook")
    async def whatsapp_webhook(
        ...,
        _: None = Depends(verify_twilio_signature),
    ):
        ...
"""
from typing import Mapping

from fastapi import Header, HTTPException, Request, status
from twilio.request_validator import RequestValidator

from agrimove.core.config import settings
from agrimove.core.logging import get_logger

logger = get_logger(__name__)


def compute_twilio_signature(auth_token: str, url: str, params: Mapping[str, str]) -> str:
    """Signature Twilio would send for ``url`` and ``params``"""
    return RequestValidator(auth_token).compute_signature(url, dict(params))


async def verify_twilio_signature(
    request: Request,
    x_twilio_signature: str | None = Header(None),
) -> None:
    """
    Enforced only with TWILIO_VALIDATE_SIGNATURE; a missing or wrong
    signature is a 403.
    """
    if not settings.TWILIO_VALIDATE_SIGNATURE:
        return

    if not x_twilio_signature:
        logger.warning("WhatsApp webhook without X-Twilio-Signature")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Missing webhook signature",
        )

    params: dict[str, str] = {}
    if request.headers.get("content-type", "").startswith("application/x-www-form-urlencoded"):
        form = await request.form()
        params = {key: str(value) for key, value in form.items()}

    validator = RequestValidator(settings.TWILIO_AUTH_TOKEN or "")
    if not validator.validate(str(request.url), params, x_twilio_signature):
        logger.warning("WhatsApp webhook with invalid signature")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid webhook signature",
        )
