"""
Live chat bridge: mirrors a remote chat session into the local relay.

Local relay events become wire packets sent upstream; packets from the
server become relay calls made on behalf of the remote participants. Local
member ids and server participant ids are separate id spaces, reconciled
through the participant table (chat_engine_id <-> socket_id).

Every outgoing packet except acknowledgements is tracked in a waiting table
until the server REPLYs. Unacknowledged packets are resent after
retry_timeout seconds, max_retries times, and then dropped.
"""
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

from pydantic import ValidationError

from tenrx_chat.chat.interface import ChatInterface
from tenrx_chat.chat.models import (
    ChatEvent,
    ChatEventType,
    ChatMessagePayload,
    MessageMetadata,
    ParticipantInfo,
)
from tenrx_chat.config import KEEPALIVE_INTERVAL, PACKET_MAX_RETRIES, PACKET_RETRY_TIMEOUT
from tenrx_chat.errors import ChatInternalError, ChatNotActive
from tenrx_chat.live.protocol import (
    REPLY_SUCCESS,
    JoinPayload,
    JoinReplyData,
    LeavePayload,
    MessagePayload,
    Packet,
    PacketType,
    ReplyPayload,
    ServerDisconnectPayload,
    TypingPayload,
    WireModel,
    create_packet,
)
from tenrx_chat.live.transport import INTENTIONAL_DISCONNECTS, ChatTransport
from tenrx_chat.scheduler import Handle, LoopScheduler, RepeatingHandle, Scheduler

if TYPE_CHECKING:
    from tenrx_chat.chat.relay import ChatRelay

logger = logging.getLogger(__name__)


class PacketState(str, Enum):
    PENDING = "PENDING"
    ACKED = "ACKED"
    FAILED = "FAILED"


@dataclass
class PendingPacket:
    """A tracked outgoing packet: PENDING(attempt) -> ACKED | FAILED."""
    packet: Packet
    attempt: int = 1
    state: PacketState = PacketState.PENDING
    timer: Optional[Handle] = None

    def ack(self) -> None:
        self.state = PacketState.ACKED
        self._cancel_timer()

    def fail(self) -> None:
        self.state = PacketState.FAILED
        self._cancel_timer()

    def _cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


@dataclass
class RemoteParticipant:
    chat_engine_id: str
    socket_id: Optional[str]
    nick_name: str
    avatar: str = ""


def metadata_to_wire(metadata: Optional[MessageMetadata]) -> Optional[dict]:
    if metadata is None:
        return None
    return {"kind": metadata.kind, "data": metadata.data}


def metadata_from_wire(raw: Any) -> Optional[MessageMetadata]:
    if isinstance(raw, dict) and raw.get("kind"):
        return MessageMetadata(kind=raw["kind"], data=raw.get("data"))
    return None


class LiveChatBridge(ChatInterface):
    def __init__(
        self,
        transport: ChatTransport,
        session_id: Union[int, str],
        session_key: Optional[str],
        scheduler: Optional[Scheduler] = None,
        retry_timeout: float = PACKET_RETRY_TIMEOUT,
        max_retries: int = PACKET_MAX_RETRIES,
        keepalive_interval: float = KEEPALIVE_INTERVAL,
        id: Optional[str] = None,
    ) -> None:
        super().__init__(id)
        self.transport = transport
        self.session_id = session_id
        self.session_key = session_key
        self.scheduler: Scheduler = scheduler or LoopScheduler()
        self.retry_timeout = retry_timeout
        self.max_retries = max_retries
        self.keepalive_interval = keepalive_interval

        self.participants: dict[str, RemoteParticipant] = {}
        self.waiting: dict[str, PendingPacket] = {}
        self.patient_id: Optional[str] = None
        self.socket_id = ""
        self._keepalive: Optional[RepeatingHandle] = None
        self._got_join_reply = False

        self.on_connected: Optional[Callable[[], Any]] = None
        self.on_disconnected: Optional[Callable[[str], Any]] = None
        self.on_ready: Optional[Callable[[], Any]] = None

        transport.attach(self)

    @property
    def is_ready(self) -> bool:
        return self.transport.connected and self.relay is not None and bool(self.id) and self._got_join_reply

    # ─────────────────────────────────────────────
    # Outgoing packets
    # ─────────────────────────────────────────────

    def create_packet(self, type: PacketType, payload: Union[WireModel, dict, None] = None) -> Packet:
        return create_packet(type, payload, self.session_id, self.session_key)

    def send_packet(self, packet: Packet) -> bool:
        if not self.transport.connected:
            return False
        return self.transport.emit(packet.to_wire())

    def prepare_packet(self, packet: Packet) -> PendingPacket:
        """Track `packet` for acknowledgement and send it."""
        pending = PendingPacket(packet=packet)
        pending.timer = self.scheduler.call_later(self.retry_timeout, self._resend, packet.id)
        self.waiting[packet.id] = pending
        self.send_packet(packet)
        return pending

    def _resend(self, packet_id: str) -> None:
        pending = self.waiting.get(packet_id)
        if pending is None or pending.state != PacketState.PENDING:
            return
        if pending.attempt <= self.max_retries:
            pending.attempt += 1
            logger.debug(f"Resending {pending.packet.type} packet {packet_id} (attempt {pending.attempt})")
            self.send_packet(pending.packet)
            pending.timer = self.scheduler.call_later(self.retry_timeout, self._resend, packet_id)
        else:
            pending.fail()
            del self.waiting[packet_id]
            logger.warning(f"{pending.packet.type} packet {packet_id} dropped after {pending.attempt} attempts")

    def _acknowledge(self, packet: Packet) -> None:
        reply = ReplyPayload(packet_id=packet.id, status=REPLY_SUCCESS, error_message=None, data=None)
        self.send_packet(self.create_packet("REPLY", reply))

    # ─────────────────────────────────────────────
    # Local relay -> server
    # ─────────────────────────────────────────────

    def on_event(self, event: ChatEvent, relay: "ChatRelay") -> None:
        logger.debug(f"LiveChatBridge received {event.type.value}")
        if event.type == ChatEventType.CHAT_ENDED:
            self.transport.disconnect()
        elif event.type == ChatEventType.CHAT_STARTED:
            for info in event.payload or []:
                self._remember(info)
        elif event.type == ChatEventType.PARTICIPANT_JOINED:
            info: ParticipantInfo = event.payload
            self._remember(info)
            if self.patient_id is None:
                self.patient_id = info.id
                self.prepare_packet(self.create_packet("JOIN", JoinPayload(nick_name=info.nick_name, avatar=info.avatar)))
            else:
                logger.warning(f"{info.nick_name} joined locally but only one local participant is mirrored upstream")
        elif event.type == ChatEventType.PARTICIPANT_LEFT:
            self._handle_local_leave(event.sender_id)
        elif event.type == ChatEventType.MESSAGE:
            payload: ChatMessagePayload = event.payload
            self.prepare_packet(self.create_packet("MESSAGE", MessagePayload(
                message=payload.message,
                metadata=metadata_to_wire(payload.metadata),
                timestamp=int(time.time() * 1000),
                sender=self.socket_id,
            )))
        elif event.type == ChatEventType.TYPING_STARTED:
            logger.debug(f"{self._nick_name(event.sender_id)} started typing")
        elif event.type == ChatEventType.TYPING_ENDED:
            if not event.sender_id:
                logger.warning("LiveChatBridge: typing ended without a participant id")
                return
            self.prepare_packet(self.create_packet("TYPING", TypingPayload(participant_id=self.socket_id, typing=False)))
        else:
            logger.warning(f"LiveChatBridge: unknown event {event!r}")

    def _remember(self, info: ParticipantInfo) -> None:
        known = self.participants.get(info.id)
        self.participants[info.id] = RemoteParticipant(
            chat_engine_id=info.id,
            socket_id=known.socket_id if known else None,
            nick_name=info.nick_name,
            avatar=info.avatar,
        )
        logger.debug(f"{info.nick_name} has joined the chat.")

    def _handle_local_leave(self, member_id: Optional[str]) -> None:
        if not member_id:
            logger.warning("LiveChatBridge: participant left without an id")
            return
        if member_id == self.patient_id:
            self.prepare_packet(self.create_packet("LEAVE", LeavePayload(participant_id=self.socket_id)))
            self.patient_id = None
        participant = self.participants.pop(member_id, None)
        if participant is None:
            logger.warning(f"Unknown participant has left the chat. Id: {member_id}")
        else:
            logger.debug(f"{participant.nick_name} has left the chat.")

    def _nick_name(self, member_id: Optional[str]) -> str:
        participant = self.participants.get(member_id or "")
        return participant.nick_name if participant else "Unknown"

    # ─────────────────────────────────────────────
    # Server -> local relay
    # ─────────────────────────────────────────────

    def transport_connected(self) -> None:
        if self._keepalive is None:
            self._keepalive = self.scheduler.call_every(self.keepalive_interval, self._send_alive)
        logger.info(f"Live chat connected (session {self.session_id})")
        if self.on_connected:
            self.on_connected()

    def transport_disconnected(self, reason: str) -> None:
        if self._keepalive is not None:
            self._keepalive.cancel()
            self._keepalive = None
        if self.on_disconnected:
            self.on_disconnected(reason)
        if reason not in INTENTIONAL_DISCONNECTS:
            logger.warning(f"Live chat disconnected ({reason}), waiting for the transport to reconnect")
            return
        logger.info(f"Live chat closed ({reason}), removing {len(self.participants)} participants")
        self._got_join_reply = False
        for pending in self.waiting.values():
            pending.fail()
        self.waiting.clear()
        for member_id in list(self.participants):
            self._leave(member_id)
        self.patient_id = None

    def _send_alive(self) -> None:
        self.prepare_packet(self.create_packet("ALIVE"))

    def transport_packet(self, raw: dict) -> None:
        try:
            packet = Packet.model_validate(raw)
        except ValidationError as exc:
            logger.warning(f"Malformed packet ignored: {exc.error_count()} validation errors")
            return
        if packet.type == "REPLY":
            self._handle_reply(packet)
            return
        if packet.type == "SDISCONNECT":
            self.transport.disconnect()
            try:
                reason = ServerDisconnectPayload.model_validate(packet.payload).reason
            except ValidationError:
                reason = None
            logger.info(f"Server requested disconnect: {reason or 'no reason given'}")
            return
        handler = self._handlers.get(packet.type)
        if handler is not None:
            try:
                handler(self, packet.payload)
            except ValidationError as exc:
                logger.warning(f"Malformed {packet.type} payload ignored: {exc.error_count()} validation errors")
            except (ChatNotActive, ChatInternalError) as exc:
                logger.error(f"Unable to apply {packet.type} packet {packet.id}: {exc}")
        self._acknowledge(packet)

    def _handle_join(self, raw: dict) -> None:
        payload = JoinPayload.model_validate(raw)
        if not payload.participant_id:
            logger.warning("JOIN packet without participant id dropped")
            return
        existing = self._by_socket(payload.participant_id)
        if existing and self.relay and self.relay.get_member(existing.chat_engine_id):
            existing.nick_name = payload.nick_name
            existing.avatar = payload.avatar
            return
        engine_id = self._enter(payload.nick_name, payload.avatar)
        if engine_id:
            self.participants[engine_id] = RemoteParticipant(
                chat_engine_id=engine_id,
                socket_id=payload.participant_id,
                nick_name=payload.nick_name,
                avatar=payload.avatar,
            )

    def _handle_leave(self, raw: dict) -> None:
        payload = LeavePayload.model_validate(raw)
        participant = self._by_socket(payload.participant_id)
        if participant is None:
            logger.warning(f"LEAVE for unknown participant {payload.participant_id}")
            return
        self._leave(participant.chat_engine_id)

    def _handle_message(self, raw: dict) -> None:
        payload = MessagePayload.model_validate(raw)
        participant = self._by_socket(payload.sender)
        if participant is None:
            logger.warning(f"MESSAGE from unknown participant {payload.sender}")
            return
        self._relay_message(participant.chat_engine_id, payload)

    def _handle_typing(self, raw: dict) -> None:
        payload = TypingPayload.model_validate(raw)
        participant = self._by_socket(payload.participant_id)
        if participant is None or self.relay is None:
            return
        if payload.typing:
            self.relay.start_typing(participant.chat_engine_id)
        else:
            self.relay.stop_typing(participant.chat_engine_id)

    def _handle_alive(self, raw: dict) -> None:
        logger.debug("ALIVE received")

    _handlers: dict[str, Callable[["LiveChatBridge", dict], None]] = {
        "JOIN": _handle_join,
        "LEAVE": _handle_leave,
        "MESSAGE": _handle_message,
        "TYPING": _handle_typing,
        "ALIVE": _handle_alive,
    }

    def _handle_reply(self, packet: Packet) -> None:
        try:
            reply = ReplyPayload.model_validate(packet.payload)
        except ValidationError as exc:
            logger.warning(f"Malformed REPLY ignored: {exc.error_count()} validation errors")
            return
        pending = self.waiting.pop(reply.packet_id, None)
        if pending is None:
            logger.debug(f"REPLY for unknown packet {reply.packet_id} ignored")
            return
        pending.ack()
        if reply.status != REPLY_SUCCESS:
            logger.warning(f"Server answered {pending.packet.type} packet {reply.packet_id} with {reply.status}: {reply.error_message}")
            return
        if pending.packet.type == "JOIN":
            try:
                self._handle_join_reply(JoinReplyData.model_validate(reply.data or {}))
            except ValidationError as exc:
                logger.warning(f"Malformed JOIN reply ignored: {exc.error_count()} validation errors")
            except (ChatNotActive, ChatInternalError) as exc:
                logger.error(f"Unable to apply JOIN reply: {exc}")

    def _handle_join_reply(self, data: JoinReplyData) -> None:
        self.socket_id = data.participant_id
        if self.patient_id and self.patient_id in self.participants:
            self.participants[self.patient_id].socket_id = self.socket_id

        for remote in data.participants:
            if remote.participant_id == self.socket_id:
                continue
            existing = self._by_socket(remote.participant_id)
            if existing and self.relay and self.relay.get_member(existing.chat_engine_id):
                continue
            engine_id = self._enter(remote.nick_name, remote.avatar, silent=not remote.active)
            if engine_id:
                self.participants[engine_id] = RemoteParticipant(
                    chat_engine_id=engine_id,
                    socket_id=remote.participant_id,
                    nick_name=remote.nick_name,
                    avatar=remote.avatar,
                )

        self._got_join_reply = True
        logger.info(f"Joined live session {self.session_id} as {self.socket_id}")
        if self.on_ready:
            self.on_ready()

        for message in data.messages:
            if message.sender == self.socket_id:
                if self.patient_id:
                    self._relay_message(self.patient_id, message)
                continue
            participant = self._by_socket(message.sender)
            if participant is None:
                logger.warning(f"Unable to replay message from {message.sender}: no local participant")
                continue
            self._relay_message(participant.chat_engine_id, message)

    # ─────────────────────────────────────────────
    # Relay helpers
    # ─────────────────────────────────────────────

    def _by_socket(self, socket_id: Optional[str]) -> Optional[RemoteParticipant]:
        if not socket_id:
            return None
        for participant in self.participants.values():
            if participant.socket_id == socket_id:
                return participant
        return None

    def _enter(self, nick_name: str, avatar: str, silent: bool = False) -> Optional[str]:
        if self.relay is None or self.id is None:
            logger.warning(f"Unable to add {nick_name}: bridge is not bound to a relay")
            return None
        return self.relay.add_participant(self.id, nick_name, avatar, silent=silent)

    def _leave(self, member_id: str) -> None:
        self.participants.pop(member_id, None)
        if self.relay is None or self.relay.get_member(member_id) is None:
            return
        try:
            self.relay.remove_participant(member_id, self.id)
        except ChatInternalError as exc:
            logger.error(f"Unable to remove participant {member_id}: {exc}")

    def _relay_message(self, member_id: str, payload: MessagePayload) -> None:
        if self.relay is None:
            return
        self.relay.send_message(
            self.id,
            ChatMessagePayload(message=payload.message, metadata=metadata_from_wire(payload.metadata)),
            sender_id=member_id,
        )
