"""
State Machine Module for USSD and WhatsApp menu conversations
"""
from agrimove.state_machine.states import MenuState, Role
from agrimove.state_machine.session import Session

__all__ = ["MenuState", "Role", "Session"]
