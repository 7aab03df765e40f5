"""
WhatsApp Webhook Handler - Bot Gateway Layer

Twilio posts inbound WhatsApp messages here and sends whatever TwiML we
return back to the user as the reply. WhatsApp has no dial session, so the
conversation is keyed by the sender's number and ends on inactivity.
"""
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from fastapi.responses import Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from twilio.twiml.messaging_response import MessagingResponse

from agrimove.api.dependencies.admin_auth import require_admin_api_key
from agrimove.api.dependencies.webhook_auth import verify_twilio_signature
from agrimove.api.webhooks._payload import read_payload
from agrimove.core.exceptions import SessionBusyError
from agrimove.core.logging import get_logger
from agrimove.core.validation import PhoneNumberValidator, TextSanitizer
from agrimove.db.database import get_db
from agrimove.domain.services.catalog_gateway import SqlCatalogGateway
from agrimove.domain.services.notification_service import send_message, send_notifications
from agrimove.state_machine.manager import ConversationManager
from agrimove.state_machine.session_store import get_session_store

logger = get_logger(__name__)

router = APIRouter()

TWIML_MEDIA_TYPE = "application/xml"

GENERIC_ERROR = "An error occurred. Please try again later."
BUSY_MESSAGE = "Your previous message is still being processed. Please try again."


def whatsapp_session_id(phone_number: str) -> str:
    return f"wa:{phone_number}"


def twiml_message(text: str) -> str:
    reply = MessagingResponse()
    reply.message(text)
    return str(reply)


def twiml_response(text: str, status_code: int = 200) -> Response:
    return Response(content=twiml_message(text), media_type=TWIML_MEDIA_TYPE, status_code=status_code)


class SendMessageRequest(BaseModel):
    to: str = Field(min_length=1, description="Recipient phone number")
    message: str = Field(min_length=1, max_length=1600)


class SendMessageResponse(BaseModel):
    success: bool
    to: str


async def whatsapp_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    _: None = Depends(verify_twilio_signature),
) -> Response:
    """
    Handle one inbound WhatsApp message.

    ``MessageSid`` doubles as the request key, so a Twilio retry of a
    message we already answered gets the same reply without advancing the
    menu.
    """
    payload = await read_payload(request)
    body = payload.get("Body")
    sender = payload.get("From", "").strip()

    if body is None or not sender:
        logger.warning(
            "WhatsApp webhook missing parameters",
            extra_data={"has_body": body is not None, "has_from": bool(sender)},
        )
        return twiml_response("Missing required parameters", status_code=400)

    phone_number = PhoneNumberValidator.normalize(sender)
    if not PhoneNumberValidator.validate(phone_number):
        logger.warning(
            "WhatsApp webhook sender number rejected",
            extra_data={"from": PhoneNumberValidator.mask(phone_number)},
        )
        if not phone_number:
            return twiml_response("Missing required parameters", status_code=400)
        return twiml_response("Invalid phone number", status_code=400)

    text = TextSanitizer.sanitize(body)
    message_sid = payload.get("MessageSid") or None

    logger.debug(
        "WhatsApp message received",
        extra_data={
            "from": PhoneNumberValidator.mask(phone_number),
            "text_preview": text[:50],
            "message_sid": message_sid,
        },
    )

    manager = ConversationManager(get_session_store(), SqlCatalogGateway(db))
    try:
        response = await manager.process_turn(
            phone_number,
            whatsapp_session_id(phone_number),
            text,
            channel="whatsapp",
            request_key=message_sid,
        )
    except SessionBusyError:
        return twiml_response(BUSY_MESSAGE)
    except Exception:
        logger.error(
            "WhatsApp turn failed",
            extra_data={"from": PhoneNumberValidator.mask(phone_number)},
            exc_info=True,
        )
        return twiml_response(GENERIC_ERROR)

    if response.notifications:
        background_tasks.add_task(send_notifications, list(response.notifications))

    return twiml_response(response.text)


router.add_api_route(
    "/webhook",
    whatsapp_webhook,
    methods=["POST"],
    response_class=Response,
    summary="Webhook - WhatsApp (inbound messages)",
    description="Twilio WhatsApp callback. Answers with a TwiML message.",
)
# Twilio consoles are often pointed at the bare path
router.add_api_route(
    "",
    whatsapp_webhook,
    methods=["POST"],
    response_class=Response,
    include_in_schema=False,
)


@router.post(
    "/send",
    response_model=SendMessageResponse,
    summary="Send a WhatsApp message",
    responses={
        401: {"description": "Missing API key"},
        403: {"description": "Invalid API key"},
    },
)
async def send_whatsapp(
    data: SendMessageRequest,
    _: None = Depends(require_admin_api_key),
) -> SendMessageResponse:
    if not PhoneNumberValidator.validate(data.to):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid phone number",
        )
    to = PhoneNumberValidator.normalize(data.to)
    success = await send_message(to, data.message)
    return SendMessageResponse(success=success, to=to)
