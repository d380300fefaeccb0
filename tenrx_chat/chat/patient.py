"""
Patient-facing chat interface.

Front ends hook the optional on_* callbacks; the interface keeps a local
view of who is in the chat and wraps the relay calls a patient makes.
"""
import logging
from typing import TYPE_CHECKING, Any, Callable, Optional

from tenrx_chat.chat.interface import ChatInterface
from tenrx_chat.chat.models import (
    ChatEvent,
    ChatEventType,
    ChatMessagePayload,
    MessageMetadata,
    ParticipantInfo,
)

if TYPE_CHECKING:
    from tenrx_chat.chat.relay import ChatRelay

logger = logging.getLogger(__name__)


class PatientChatInterface(ChatInterface):
    def __init__(self, nick_name: str, avatar: str = "", id: Optional[str] = None) -> None:
        super().__init__(id)
        self.nick_name = nick_name
        self.avatar = avatar
        self.participant_id = ""
        self.participants: dict[str, ParticipantInfo] = {}

        self.on_chat_started: Optional[Callable[["PatientChatInterface", list[str]], Any]] = None
        self.on_chat_ended: Optional[Callable[["PatientChatInterface"], Any]] = None
        self.on_participant_joined: Optional[Callable[["PatientChatInterface", str], Any]] = None
        self.on_participant_left: Optional[Callable[["PatientChatInterface", str], Any]] = None
        self.on_message_received: Optional[
            Callable[["PatientChatInterface", Optional[str], str, Optional[MessageMetadata]], Any]
        ] = None
        self.on_typing_started: Optional[Callable[["PatientChatInterface", str], Any]] = None
        self.on_typing_ended: Optional[Callable[["PatientChatInterface", str], Any]] = None
        self.on_unknown_event: Optional[Callable[["PatientChatInterface", ChatEvent], Any]] = None

    def nick_name_of(self, participant_id: Optional[str]) -> str:
        info = self.participants.get(participant_id or "")
        return info.nick_name if info else "Unknown"

    def on_event(self, event: ChatEvent, relay: "ChatRelay") -> None:
        logger.debug(f"PatientChatInterface received {event.type.value}")
        if event.type == ChatEventType.CHAT_ENDED:
            if self.on_chat_ended:
                self.on_chat_ended(self)
        elif event.type == ChatEventType.CHAT_STARTED:
            ids = []
            for participant in event.payload or []:
                self.participants[participant.id] = participant
                ids.append(participant.id)
            if self.on_chat_started:
                self.on_chat_started(self, ids)
        elif event.type == ChatEventType.PARTICIPANT_JOINED:
            info: ParticipantInfo = event.payload
            self.participants[info.id] = info
            logger.debug(f"{info.nick_name} has joined the chat.")
            if self.on_participant_joined:
                self.on_participant_joined(self, info.id)
        elif event.type == ChatEventType.PARTICIPANT_LEFT:
            if event.sender_id and event.sender_id == self.participant_id:
                # removed by another interface
                logger.info(f"{self.nick_name} was removed from the chat.")
                self.participant_id = ""
                self.participants.pop(event.sender_id, None)
                return
            if not event.sender_id or event.sender_id not in self.participants:
                logger.warning(f"Unknown participant has left the chat. Id: {event.sender_id}")
                return
            if self.on_participant_left:
                self.on_participant_left(self, event.sender_id)
            del self.participants[event.sender_id]
        elif event.type == ChatEventType.MESSAGE:
            payload: ChatMessagePayload = event.payload
            logger.debug(f"{self.nick_name_of(event.sender_id)}: {payload.message}")
            if self.on_message_received:
                self.on_message_received(self, event.sender_id, payload.message, payload.metadata)
        elif event.type == ChatEventType.TYPING_STARTED:
            if event.sender_id and self.on_typing_started:
                self.on_typing_started(self, event.sender_id)
        elif event.type == ChatEventType.TYPING_ENDED:
            if event.sender_id and self.on_typing_ended:
                self.on_typing_ended(self, event.sender_id)
        else:
            logger.warning(f"PatientChatInterface: unknown event {event!r}")
            if self.on_unknown_event:
                self.on_unknown_event(self, event)

    # ─────────────────────────────────────────────
    # Patient actions
    # ─────────────────────────────────────────────

    def enter_chat(self) -> str:
        if self.relay:
            self.participant_id = self.relay.add_participant(self.id, self.nick_name, self.avatar)
            logger.debug(f"PatientChatInterface: participant id {self.participant_id}")
        return self.participant_id

    def leave_chat(self) -> None:
        if self.relay and self.participant_id:
            if self.relay.get_member(self.participant_id) is not None:
                self.relay.remove_participant(self.participant_id, self.id)
            self.participant_id = ""

    def send_message(
        self,
        message: str,
        metadata: Optional[MessageMetadata] = None,
        recipient_id: Optional[str] = None,
    ) -> None:
        if self.relay:
            self.relay.send_message(
                self.id,
                ChatMessagePayload(message=message, metadata=metadata),
                recipient_id=recipient_id,
                sender_id=self.participant_id or None,
            )

    def start_typing(self) -> None:
        if self.relay:
            self.relay.start_typing(self.participant_id)

    def stop_typing(self) -> None:
        if self.relay:
            self.relay.stop_typing(self.participant_id)
