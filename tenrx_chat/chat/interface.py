"""
Participant contract for the chat relay.
"""
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

from tenrx_chat.chat.models import ChatEvent

if TYPE_CHECKING:
    from tenrx_chat.chat.relay import ChatRelay


class ChatInterface(ABC):
    """
    Anything that can be bound to a ChatRelay.

    The relay assigns `id` and stores itself in `relay` at bind time;
    `relay` goes back to None when the interface is unbound.
    """

    def __init__(self, id: Optional[str] = None) -> None:
        self.id = id
        self.relay: Optional["ChatRelay"] = None

    @abstractmethod
    def on_event(self, event: ChatEvent, relay: "ChatRelay") -> None:
        ...
