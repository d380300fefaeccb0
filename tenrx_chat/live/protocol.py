"""
Wire packets exchanged with the live chat server.

Every frame is one JSON packet {id, sessionID, sessionKey, type, payload}.
Models accept both the camelCase wire names and the snake_case attribute
names; to_wire() always emits the wire names.
"""
import uuid
from typing import Any, ClassVar, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

PacketType = Literal["JOIN", "LEAVE", "MESSAGE", "TYPING", "REPLY", "ALIVE", "SDISCONNECT"]

REPLY_SUCCESS = "SUCCESS"


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")
    omit_none: ClassVar[bool] = False

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json", exclude_none=self.omit_none)


class Packet(WireModel):
    id: str
    session_id: Union[int, str] = Field(alias="sessionID")
    session_key: Optional[str] = Field(default=None, alias="sessionKey")
    type: PacketType
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("type", mode="before")
    @classmethod
    def _upper_type(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @field_validator("payload", mode="before")
    @classmethod
    def _empty_payload(cls, value: Any) -> Any:
        return {} if value is None else value


# ─────────────────────────────────────────────
# Payloads
# ─────────────────────────────────────────────

class JoinPayload(WireModel):
    omit_none: ClassVar[bool] = True

    nick_name: str = Field(default="", alias="nickName")
    avatar: str = ""
    participant_id: Optional[str] = Field(default=None, alias="participantID")   # only set by the server


class LeavePayload(WireModel):
    omit_none: ClassVar[bool] = True

    participant_id: Optional[str] = Field(default=None, alias="participantID")
    timestamp: Optional[int] = None


class MessagePayload(WireModel):
    message: str = ""
    metadata: Optional[Any] = None
    timestamp: Optional[int] = None   # epoch milliseconds
    sender: Optional[str] = None


class TypingPayload(WireModel):
    participant_id: Optional[str] = Field(default=None, alias="participantID")
    typing: bool = False


class ServerDisconnectPayload(WireModel):
    reason: Optional[str] = None


class ReplyParticipant(WireModel):
    participant_id: str = Field(alias="participantID")
    nick_name: str = Field(default="", alias="participantNickName")
    avatar: str = Field(default="", alias="participantAvatar")
    active: bool = True


class JoinReplyData(WireModel):
    participant_id: str = Field(alias="participantID")
    messages: list[MessagePayload] = Field(default_factory=list)
    participants: list[ReplyParticipant] = Field(default_factory=list)


class ReplyPayload(WireModel):
    packet_id: str = Field(alias="packetID")
    status: str = REPLY_SUCCESS   # SUCCESS | BUSY | ERROR
    error_message: Optional[str] = Field(default=None, alias="errorMessage")
    data: Optional[dict[str, Any]] = None

    @field_validator("packet_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


def create_packet(
    type: PacketType,
    payload: Union[WireModel, dict, None],
    session_id: Union[int, str],
    session_key: Optional[str],
) -> Packet:
    body = payload.to_wire() if isinstance(payload, WireModel) else dict(payload or {})
    return Packet(id=str(uuid.uuid4()), session_id=session_id, session_key=session_key, type=type, payload=body)
