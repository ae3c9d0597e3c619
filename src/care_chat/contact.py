"""Representative contact channel."""

from typing import Optional
from urllib.parse import quote

from . import phrasings
from .models import ChatMessage, ChatTurn, EventType, Role


class ContactChannelError(RuntimeError):
    """Raised when the messaging deep link cannot be offered."""


class ContactChannel:
    """Opens a WhatsApp chat with a representative, or the site contact form."""

    def __init__(self, whatsapp_number: str, contact_form_event: str = "tavara:open-contact-form"):
        self.whatsapp_number = "".join(ch for ch in whatsapp_number if ch.isdigit())
        self.contact_form_event = contact_form_event

    def representative_link(self, role: Optional[Role]) -> str:
        if not self.whatsapp_number:
            raise ContactChannelError("No representative number configured")
        text = phrasings.REPRESENTATIVE_MESSAGES.get(role, phrasings.DEFAULT_REPRESENTATIVE_MESSAGE)
        return f"https://wa.me/{self.whatsapp_number}?text={quote(text)}"

    def open_representative_chat(self, role: Optional[Role], turn: ChatTurn) -> str:
        url = self.representative_link(role)
        turn.emit(EventType.OPEN_URL, url=url)
        return url

    def open_contact_form(
        self,
        role: Optional[Role],
        session_id: str,
        transcript: list[ChatMessage],
        turn: ChatTurn,
    ) -> None:
        turn.emit(
            EventType.CONTACT_FORM,
            event=self.contact_form_event,
            payload={
                "role": role.value if role else None,
                "sessionId": session_id,
                "transcript": [message.to_dict() for message in transcript],
            },
        )
