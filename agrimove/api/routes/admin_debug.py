"""
Admin Debug Endpoints - diagnostics without direct access to Redis or the DB.

1. Circuit breaker status (catalog / WhatsApp)
2. Active session count
3. Inspect or end a stuck conversation session
"""
from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from agrimove.api.dependencies.admin_auth import require_admin_api_key
from agrimove.core.circuit_breaker import (
    CircuitBreaker,
    get_catalog_circuit_breaker,
    get_whatsapp_circuit_breaker,
)
from agrimove.core.exceptions import SessionNotFoundError
from agrimove.core.logging import get_logger
from agrimove.core.validation import PhoneNumberValidator
from agrimove.state_machine.session_store import get_session_store

logger = get_logger(__name__)

router = APIRouter()

_AUTH_RESPONSES: dict[int | str, dict[str, Any]] = {
    401: {"description": "Missing API key"},
    403: {"description": "Invalid API key"},
}


class CircuitBreakerStatusResponse(BaseModel):
    service: str
    state: str = Field(description="closed | open | half_open")
    failure_count: int
    failure_threshold: int
    retry_after_seconds: float = Field(description="Seconds until a retry is allowed (0 unless open)")


class SessionCountResponse(BaseModel):
    backend: str
    active_sessions: int


class SessionStateResponse(BaseModel):
    session_id: str
    phone_number: str
    channel: str
    current_menu: str
    user_data: dict
    created_at: float
    last_activity: float
    idle_seconds: float


@router.get(
    "/circuit-breakers",
    response_model=list[CircuitBreakerStatusResponse],
    summary="Circuit breaker status",
    responses=_AUTH_RESPONSES,
)
async def get_circuit_breaker_status(
    _: None = Depends(require_admin_api_key),
) -> list[CircuitBreakerStatusResponse]:
    # Touch the known breakers so they are listed before their first call
    get_catalog_circuit_breaker()
    get_whatsapp_circuit_breaker()
    return [
        CircuitBreakerStatusResponse(service=name, **info)
        for name, info in sorted(CircuitBreaker.snapshot().items())
    ]


@router.get(
    "/sessions/count",
    response_model=SessionCountResponse,
    summary="Active session count",
    responses=_AUTH_RESPONSES,
)
async def get_session_count(
    _: None = Depends(require_admin_api_key),
) -> SessionCountResponse:
    store = get_session_store()
    return SessionCountResponse(
        backend=type(store).__name__,
        active_sessions=await store.count(),
    )


@router.get(
    "/sessions/{session_id}",
    response_model=SessionStateResponse,
    summary="Inspect a conversation session",
    responses={**_AUTH_RESPONSES, 404: {"description": "Session not found"}},
)
async def get_session_state(
    session_id: str,
    _: None = Depends(require_admin_api_key),
) -> SessionStateResponse:
    store = get_session_store()
    session = await store.get(session_id)
    if session is None:
        raise SessionNotFoundError(session_id)

    now = store.now()
    return SessionStateResponse(
        session_id=session.session_id,
        phone_number=PhoneNumberValidator.mask(session.phone_number),
        channel=session.channel,
        current_menu=session.current_menu.value,
        user_data=session.user_data.model_dump(mode="json"),
        created_at=session.created_at,
        last_activity=session.last_activity,
        idle_seconds=round(session.idle_seconds(now), 1),
    )


@router.delete(
    "/sessions/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="End a conversation session",
    responses={**_AUTH_RESPONSES, 404: {"description": "Session not found"}},
)
async def end_session(
    session_id: str,
    _: None = Depends(require_admin_api_key),
) -> None:
    store = get_session_store()
    async with store.lock(session_id):
        session = await store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        await store.end(session_id)

    logger.info("Session ended by admin", extra_data={"session_id": session_id})
