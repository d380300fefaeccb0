"""
In-process chat relay.

The relay is the single source of truth for one chat session: it tracks the
bound interfaces (participants implementing ChatInterface), the logical
members registered under them, and fans events out to the interfaces.

Fan-out is never synchronous. Each broadcast captures its recipient list at
call time and is delivered as one deferred unit of work on the injected
Scheduler, so broadcasts from successive calls arrive in call order.
"""
import logging
import uuid
from dataclasses import replace
from typing import Any, Optional

from tenrx_chat.chat.interface import ChatInterface
from tenrx_chat.chat.models import (
    ChatEvent,
    ChatEventType,
    ChatMember,
    ChatMessagePayload,
    ChatStatus,
)
from tenrx_chat.errors import ChatInternalError, ChatNotActive
from tenrx_chat.scheduler import LoopScheduler, Scheduler

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex


class ChatRelay:
    def __init__(self, scheduler: Optional[Scheduler] = None) -> None:
        self.scheduler: Scheduler = scheduler or LoopScheduler()
        self._interfaces: dict[str, ChatInterface] = {}
        self._members: dict[str, ChatMember] = {}
        self._status = ChatStatus.IDLE

    # ─────────────────────────────────────────────
    # Interfaces
    # ─────────────────────────────────────────────

    def bind_interface(self, participant: ChatInterface) -> str:
        for iid, bound in self._interfaces.items():
            if bound is participant:
                return iid
        iid = _new_id()
        self._interfaces[iid] = participant
        participant.id = iid
        participant.relay = self
        logger.debug(f"Interface bound: {iid} ({type(participant).__name__})")
        return iid

    def unbind_interface(self, interface_id: str) -> None:
        participant = self._interfaces.pop(interface_id, None)
        if participant is None:
            logger.error(f"Unable to unbind interface '{interface_id}'. It was never bound.")
            raise ChatInternalError(f"Unable to unbind interface '{interface_id}'. It was never bound.")
        participant.relay = None
        owned = [m.id for m in self._members.values() if m.owner_interface_id == interface_id]
        for member_id in owned:
            del self._members[member_id]
            if self._status == ChatStatus.ACTIVE:
                self._broadcast(ChatEventType.PARTICIPANT_LEFT, sender_id=member_id)
        logger.debug(f"Interface unbound: {interface_id} (dropped {len(owned)} members)")

    @property
    def interfaces(self) -> dict[str, ChatInterface]:
        return dict(self._interfaces)

    # ─────────────────────────────────────────────
    # Chat lifecycle
    # ─────────────────────────────────────────────

    def get_chat_status(self) -> ChatStatus:
        return self._status

    def start_chat(self) -> None:
        self._status = ChatStatus.ACTIVE
        logger.info(f"Chat started with {len(self._members)} members and {len(self._interfaces)} interfaces")
        self._broadcast(ChatEventType.CHAT_STARTED, payload=[m.info() for m in self._members.values()])

    def stop_chat(self) -> None:
        self._status = ChatStatus.IDLE
        logger.info("Chat stopped")
        self._broadcast(ChatEventType.CHAT_ENDED)

    def cleanup_chat(self) -> None:
        self.stop_chat()
        for participant in self._interfaces.values():
            participant.relay = None
        self._interfaces.clear()
        self._members.clear()

    def restart_chat(self, unbind_interfaces: bool = False) -> None:
        """End the chat and drop every member, optionally unbinding all interfaces too."""
        self._broadcast(ChatEventType.CHAT_ENDED)
        self._members.clear()
        if unbind_interfaces:
            for participant in self._interfaces.values():
                participant.relay = None
            self._interfaces.clear()
        self._status = ChatStatus.IDLE

    # ─────────────────────────────────────────────
    # Members
    # ─────────────────────────────────────────────

    @property
    def members(self) -> list[ChatMember]:
        return list(self._members.values())

    def get_member(self, member_id: str) -> Optional[ChatMember]:
        return self._members.get(member_id)

    def add_participant(self, interface_id: str, nick_name: str, avatar: str = "", silent: bool = False) -> str:
        if self._status != ChatStatus.ACTIVE:
            logger.error(f"Unable to add {nick_name} to the chat. Chat is not active.")
            raise ChatNotActive(f"Unable to add {nick_name} to the chat. Chat is not active.")
        if interface_id not in self._interfaces:
            raise ChatInternalError(f"Unable to add {nick_name}: interface '{interface_id}' is not bound.")
        member = ChatMember(id=_new_id(), nick_name=nick_name, avatar=avatar, owner_interface_id=interface_id)
        self._members[member.id] = member
        logger.debug(f"Participant joined: {nick_name} ({member.id}) via {interface_id}")
        if not silent:
            self._broadcast(
                ChatEventType.PARTICIPANT_JOINED,
                sender_id=member.id,
                payload=member.info(),
                exclude=interface_id,
            )
        return member.id

    def remove_participant(self, member_id: str, interface_id: str) -> None:
        if member_id not in self._members:
            logger.error(f"Unable to remove participant with id '{member_id}'. Unknown participant.")
            raise ChatInternalError(f"Unable to remove participant with id '{member_id}'. Unknown participant.")
        member = self._members.pop(member_id)
        logger.debug(f"Participant left: {member.nick_name} ({member_id})")
        self._broadcast(ChatEventType.PARTICIPANT_LEFT, sender_id=member_id, exclude=interface_id)

    # ─────────────────────────────────────────────
    # Messages & typing
    # ─────────────────────────────────────────────

    def send_message(
        self,
        interface_id: str,
        message: ChatMessagePayload,
        recipient_id: Optional[str] = None,
        sender_id: Optional[str] = None,
    ) -> None:
        self._require_active("send message")
        if interface_id not in self._interfaces:
            raise ChatInternalError(f"Unable to send message: interface '{interface_id}' is not bound.")
        self._broadcast(
            ChatEventType.MESSAGE,
            sender_id=sender_id or interface_id,
            recipient_id=recipient_id,
            payload=message,
            exclude=interface_id,
        )

    def start_typing(self, sender_id: str, recipient_id: Optional[str] = None) -> None:
        self._require_active("start typing")
        self._broadcast(
            ChatEventType.TYPING_STARTED,
            sender_id=sender_id,
            recipient_id=recipient_id,
            exclude=self._owner_of(sender_id),
        )

    def stop_typing(self, sender_id: str, recipient_id: Optional[str] = None) -> None:
        self._require_active("stop typing")
        self._broadcast(
            ChatEventType.TYPING_ENDED,
            sender_id=sender_id,
            recipient_id=recipient_id,
            exclude=self._owner_of(sender_id),
        )

    # ─────────────────────────────────────────────
    # Fan-out
    # ─────────────────────────────────────────────

    def _require_active(self, action: str) -> None:
        if self._status != ChatStatus.ACTIVE:
            logger.error(f"Unable to {action}. Chat is not active.")
            raise ChatNotActive(f"Unable to {action}. Chat is not active.")

    def _owner_of(self, some_id: str) -> str:
        member = self._members.get(some_id)
        return member.owner_interface_id if member else some_id

    def _broadcast(
        self,
        event_type: ChatEventType,
        sender_id: Optional[str] = None,
        recipient_id: Optional[str] = None,
        payload: Any = None,
        exclude: Optional[str] = None,
    ) -> None:
        if recipient_id is None:
            recipients = [(iid, p) for iid, p in self._interfaces.items() if iid != exclude]
        else:
            target = self._owner_of(recipient_id)
            if target not in self._interfaces:
                raise ChatInternalError(f"Unknown recipient '{recipient_id}'.")
            recipients = [] if target == exclude else [(target, self._interfaces[target])]
        event = ChatEvent(type=event_type, sender_id=sender_id, recipient_id=recipient_id, payload=payload)
        self.scheduler.call_soon(self._deliver, event, recipients)

    def _deliver(self, event: ChatEvent, recipients: list[tuple[str, ChatInterface]]) -> None:
        for iid, participant in recipients:
            actual = replace(event, recipient_id=iid) if event.recipient_id is None else event
            try:
                participant.on_event(actual, self)
            except Exception:
                logger.exception(f"Interface {iid} failed to handle {event.type.value}")


