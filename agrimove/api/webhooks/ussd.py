"""
USSD Webhook - Bot Gateway Layer

Africa's Talking style callback: the gateway posts ``sessionId``,
``serviceCode``, ``phoneNumber`` and ``text`` on every step of a dial and
expects a plain-text body starting with ``CON`` (keep the session open) or
``END`` (close it).
"""
from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from agrimove.api.webhooks._payload import read_payload
from agrimove.core.config import settings
from agrimove.core.exceptions import SessionBusyError
from agrimove.core.logging import get_logger
from agrimove.core.validation import PhoneNumberValidator, TextSanitizer
from agrimove.db.database import get_db
from agrimove.domain.services.catalog_gateway import SqlCatalogGateway
from agrimove.domain.services.notification_service import send_notifications
from agrimove.state_machine.manager import ConversationManager
from agrimove.state_machine.session_store import get_session_store

logger = get_logger(__name__)

router = APIRouter()

MISSING_PARAMETERS = "END Missing required parameters"
GENERIC_ERROR = "END An error occurred. Please try again later."
BUSY_MESSAGE = "Your previous request is still being processed. Please try again."


def extract_input(text: str, cumulative: bool) -> str:
    """
    The current turn's input.

    In cumulative mode the gateway sends every input of the dial joined by
    ``*`` ("1*2*3"), so only the last segment is new.
    """
    text = text or ""
    if not cumulative or not text:
        return text.strip()
    return text.split("*")[-1].strip()


def format_reply(text: str, end_session: bool, max_length: int = 0) -> str:
    prefix = "END " if end_session else "CON "
    reply = prefix + text
    if max_length > 0 and len(reply) > max_length:
        reply = reply[:max_length]
    return reply


@router.post(
    "",
    response_class=PlainTextResponse,
    summary="USSD callback",
    description="Entry point for USSD gateways. Returns a CON/END prefixed menu page.",
)
async def ussd_callback(
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
) -> PlainTextResponse:
    payload = await read_payload(request)
    session_id = payload.get("sessionId", "").strip()
    phone_number = payload.get("phoneNumber", "").strip()
    raw_text = payload.get("text", "")

    if not session_id or not phone_number:
        logger.warning(
            "USSD request missing parameters",
            extra_data={"has_session_id": bool(session_id), "has_phone": bool(phone_number)},
        )
        return PlainTextResponse(MISSING_PARAMETERS, status_code=400)

    cumulative = settings.USSD_CUMULATIVE_TEXT
    text = TextSanitizer.sanitize(extract_input(raw_text, cumulative))
    # Without the full dial history there is nothing to tell a retry from new input
    request_key = raw_text if cumulative else None

    logger.debug(
        "USSD request received",
        extra_data={
            "phone": PhoneNumberValidator.mask(phone_number),
            "service_code": payload.get("serviceCode", ""),
            "input_length": len(text),
        },
    )

    manager = ConversationManager(get_session_store(), SqlCatalogGateway(db))
    try:
        response = await manager.process_turn(
            phone_number,
            session_id,
            text,
            channel="ussd",
            request_key=request_key,
        )
    except SessionBusyError:
        return PlainTextResponse(format_reply(BUSY_MESSAGE, True))
    except Exception:
        logger.error(
            "USSD turn failed",
            extra_data={"phone": PhoneNumberValidator.mask(phone_number)},
            exc_info=True,
        )
        return PlainTextResponse(GENERIC_ERROR)

    if response.notifications:
        background_tasks.add_task(send_notifications, list(response.notifications))

    return PlainTextResponse(
        format_reply(response.text, response.end_session, settings.USSD_MAX_REPLY_LENGTH)
    )
