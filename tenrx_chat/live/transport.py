"""
Socket transports for the live chat bridge.

A transport carries JSON packets (plain dicts) to and from the chat server
and reports connection changes to one attached listener. Disconnect reasons:

  io server disconnect   server closed the socket normally (close code 1000)
  io client disconnect   disconnect() was called locally
  transport error        anything else; the transport reconnects by itself
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional, Protocol

import aiohttp

from tenrx_chat.config import RECONNECT_DELAY, RECONNECT_MAX_DELAY

logger = logging.getLogger(__name__)

SERVER_DISCONNECT = "io server disconnect"
CLIENT_DISCONNECT = "io client disconnect"
TRANSPORT_ERROR = "transport error"
INTENTIONAL_DISCONNECTS = (SERVER_DISCONNECT, CLIENT_DISCONNECT)


class TransportListener(Protocol):
    def transport_connected(self) -> None: ...

    def transport_disconnected(self, reason: str) -> None: ...

    def transport_packet(self, packet: dict) -> None: ...


class ChatTransport(ABC):
    def __init__(self) -> None:
        self.listener: Optional[TransportListener] = None

    def attach(self, listener: TransportListener) -> None:
        self.listener = listener

    @property
    @abstractmethod
    def connected(self) -> bool:
        ...

    @abstractmethod
    def emit(self, packet: dict) -> bool:
        """Queue `packet` for sending. Returns False when not connected."""

    @abstractmethod
    def disconnect(self) -> None:
        ...

    def _notify(self, method: str, *args: Any) -> None:
        if self.listener is None:
            return
        try:
            getattr(self.listener, method)(*args)
        except Exception:
            logger.exception(f"Transport listener failed in {method}")


class WebSocketTransport(ChatTransport):
    """
    aiohttp WebSocket client. One packet per text frame.

    start() launches the connection loop as a background task; it reconnects
    with exponential backoff until the server or the caller disconnects.
    """

    def __init__(
        self,
        url: str,
        session: Optional[aiohttp.ClientSession] = None,
        reconnect_delay: float = RECONNECT_DELAY,
        reconnect_max_delay: float = RECONNECT_MAX_DELAY,
    ) -> None:
        super().__init__()
        self.url = url
        self._session = session
        self._reconnect_delay = reconnect_delay
        self._reconnect_max_delay = reconnect_max_delay
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._closing = False
        self._connected_event = asyncio.Event()

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._closing = False
            self._task = asyncio.create_task(self._run())
        return self._task

    async def wait_connected(self, timeout: Optional[float] = None) -> None:
        await asyncio.wait_for(self._connected_event.wait(), timeout)

    async def close(self) -> None:
        """Disconnect and wait for the connection loop to finish."""
        self.disconnect()
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    def emit(self, packet: dict) -> bool:
        if not self.connected:
            return False
        self._outbox.put_nowait(packet)
        return True

    def disconnect(self) -> None:
        self._closing = True
        if self._ws is not None and not self._ws.closed:
            asyncio.get_running_loop().create_task(self._ws.close())
        elif self._task is not None and not self._task.done():
            self._task.cancel()

    # ─────────────────────────────────────────────
    # Connection loop
    # ─────────────────────────────────────────────

    async def _run(self) -> None:
        session = self._session or aiohttp.ClientSession()
        delay = self._reconnect_delay
        logger.info(f"Connecting to {self.url}")
        try:
            while not self._closing:
                try:
                    async with session.ws_connect(self.url) as ws:
                        delay = self._reconnect_delay
                        reason = await self._serve(ws)
                except (aiohttp.ClientError, OSError) as exc:
                    logger.warning(f"Connection to {self.url} failed: {exc}, retrying in {delay}s")
                else:
                    if reason in INTENTIONAL_DISCONNECTS:
                        break
                    logger.warning(f"Socket disconnected ({reason}), reconnecting in {delay}s")
                if self._closing:
                    break
                await asyncio.sleep(delay)
                delay = min(delay * 2, self._reconnect_max_delay)
        finally:
            if self._session is None:
                await session.close()
            logger.info(f"Transport to {self.url} stopped")

    async def _serve(self, ws: aiohttp.ClientWebSocketResponse) -> str:
        self._ws = ws
        self._connected_event.set()
        writer = asyncio.create_task(self._write(ws))
        logger.debug(f"Socket connected to {self.url}")
        self._notify("transport_connected")
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._dispatch(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning(f"Socket error: {ws.exception()}")
                    break
        finally:
            writer.cancel()
            self._ws = None
            self._connected_event.clear()
        if self._closing:
            reason = CLIENT_DISCONNECT
        elif ws.close_code == aiohttp.WSCloseCode.OK:
            reason = SERVER_DISCONNECT
        else:
            reason = TRANSPORT_ERROR
        self._notify("transport_disconnected", reason)
        return reason

    async def _write(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        while True:
            packet = await self._outbox.get()
            try:
                await ws.send_json(packet)
            except (ConnectionResetError, aiohttp.ClientError, RuntimeError) as exc:
                logger.warning(f"Failed to send packet {packet.get('id')}: {exc}")
                return

    def _dispatch(self, raw: str) -> None:
        try:
            packet = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Non-JSON frame received, skipping")
            return
        if not isinstance(packet, dict):
            logger.warning(f"Unexpected frame {packet!r}, skipping")
            return
        self._notify("transport_packet", packet)
