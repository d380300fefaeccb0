"""
Data models (dataclasses) for the chat relay.
These are plain Python objects shared by the relay, the bot, the live bridge
and the patient interface.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union


class ChatStatus(str, Enum):
    IDLE = "Idle"
    ACTIVE = "Active"


class ChatEventType(str, Enum):
    CHAT_STARTED = "ChatStarted"
    CHAT_ENDED = "ChatEnded"
    PARTICIPANT_JOINED = "ChatParticipantJoined"
    PARTICIPANT_LEFT = "ChatParticipantLeft"
    MESSAGE = "ChatMessage"
    TYPING_STARTED = "ChatTypingStarted"
    TYPING_ENDED = "ChatTypingEnded"


@dataclass(frozen=True)
class ParticipantInfo:
    """Public view of a member, as carried by ChatStarted / ChatParticipantJoined."""
    id: str
    nick_name: str
    avatar: str = ""


@dataclass(frozen=True)
class MessageMetadata:
    kind: str            # QuestionnaireStart | QuestionnairePossibleAnswers | QuestionnaireAnswer | QuestionnaireEnd | ...
    data: Any = None


@dataclass(frozen=True)
class ChatMessagePayload:
    message: str
    metadata: Optional[MessageMetadata] = None


ChatEventPayload = Union[list[ParticipantInfo], ParticipantInfo, ChatMessagePayload, None]


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ChatEvent:
    """
    Immutable relay event. recipient_id=None means broadcast; the relay hands
    every interface its own copy with recipient_id stamped to that interface.
    """
    type: ChatEventType
    sender_id: Optional[str] = None
    recipient_id: Optional[str] = None
    payload: ChatEventPayload = None
    timestamp: datetime = field(default_factory=_now)


@dataclass
class ChatMember:
    """A logical chat occupant registered under a bound interface."""
    id: str
    nick_name: str
    avatar: str
    owner_interface_id: str   # id of the interface that added it; not an ownership link

    def info(self) -> ParticipantInfo:
        return ParticipantInfo(id=self.id, nick_name=self.nick_name, avatar=self.avatar)
