"""
Conversation Manager - runs one inbound turn against the session store
"""
from typing import Optional

from agrimove.core.logging import bind_session_id, get_logger
from agrimove.domain.services.catalog_gateway import CatalogGateway
from agrimove.state_machine.handlers import MenuStateMachine, MessageResponse
from agrimove.state_machine.session_store import BaseSessionStore

logger = get_logger(__name__)


class ConversationManager:
    """Locks the session, replays redeliveries and applies the state machine"""

    def __init__(
        self,
        store: BaseSessionStore,
        gateway: CatalogGateway,
        machine: Optional[MenuStateMachine] = None
    ):
        self.store = store
        self.machine = machine or MenuStateMachine(gateway)

    async def process_turn(
        self,
        phone_number: str,
        session_id: str,
        text: str,
        channel: str = "ussd",
        request_key: Optional[str] = None,
    ) -> MessageResponse:
        """
        Handle one line of input for ``session_id``.

        ``request_key`` identifies the transport request (USSD cumulative
        text, WhatsApp MessageSid). A request whose key matches the last one
        processed for the session is answered with the reply already sent,
        without running the state machine again.
        """
        with bind_session_id(session_id):
            async with self.store.session(phone_number, session_id, channel) as session:
                if (
                    request_key is not None
                    and request_key == session.last_request_key
                    and session.last_reply is not None
                ):
                    logger.info(
                        "Redelivered request answered from cache",
                        extra_data={"channel": channel, "menu": session.current_menu.value}
                    )
                    return MessageResponse(session.last_reply, end_session=session.last_reply_ends)

                previous = session.current_menu
                new_state, response = await self.machine.transition(session, text)

                logger.info(
                    "Turn processed",
                    extra_data={
                        "channel": channel,
                        "from_state": previous.value,
                        "to_state": new_state.value,
                        "end_session": response.end_session,
                    }
                )

                if response.end_session:
                    await self.store.end_session(session)
                else:
                    session.last_request_key = request_key
                    session.last_reply = response.text
                    session.last_reply_ends = False

                return response
