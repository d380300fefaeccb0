"""
Tests for the aiohttp WebSocket transport against an in-process aiohttp server.
"""
import asyncio
import json

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from tenrx_chat.live.transport import (
    CLIENT_DISCONNECT,
    SERVER_DISCONNECT,
    TRANSPORT_ERROR,
    WebSocketTransport,
)


class Recorder:
    def __init__(self):
        self.connects = 0
        self.reasons = []
        self.packets = []

    def transport_connected(self):
        self.connects += 1

    def transport_disconnected(self, reason):
        self.reasons.append(reason)

    def transport_packet(self, packet):
        self.packets.append(packet)


async def _until(predicate, timeout: float = 3.0):
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.01)
    await asyncio.wait_for(_poll(), timeout)


async def _serve(handler) -> TestServer:
    app = web.Application()
    app.router.add_get("/chat", handler)
    server = TestServer(app)
    await server.start_server()
    return server


def _transport(server: TestServer, recorder: Recorder) -> WebSocketTransport:
    transport = WebSocketTransport(str(server.make_url("/chat")), reconnect_delay=0.01, reconnect_max_delay=0.05)
    transport.attach(recorder)
    return transport


@pytest.mark.asyncio
async def test_round_trip_then_server_disconnect():
    received = []

    async def handler(request):
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        async for msg in ws:
            packet = json.loads(msg.data)
            received.append(packet)
            await ws.send_str("not json")
            await ws.send_json({"id": "r1", "type": "REPLY", "payload": {"packetID": packet["id"]}})
            await ws.close()
        return ws

    server = await _serve(handler)
    recorder = Recorder()
    transport = _transport(server, recorder)
    try:
        assert transport.emit({"id": "early"}) is False
        transport.start()
        await transport.wait_connected(timeout=3)
        assert transport.connected
        assert transport.emit({"id": "c1", "type": "ALIVE", "payload": {}})
        await _until(lambda: recorder.reasons)
        assert received == [{"id": "c1", "type": "ALIVE", "payload": {}}]
        assert recorder.packets == [{"id": "r1", "type": "REPLY", "payload": {"packetID": "c1"}}]
        assert recorder.reasons == [SERVER_DISCONNECT]
        await asyncio.sleep(0.1)
        assert recorder.connects == 1
        assert not transport.connected
    finally:
        await transport.close()
        await server.close()


@pytest.mark.asyncio
async def test_client_disconnect():
    async def handler(request):
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        async for _ in ws:
            pass
        return ws

    server = await _serve(handler)
    recorder = Recorder()
    transport = _transport(server, recorder)
    try:
        transport.start()
        await transport.wait_connected(timeout=3)
        transport.disconnect()
        await _until(lambda: recorder.reasons)
        assert recorder.reasons == [CLIENT_DISCONNECT]
    finally:
        await transport.close()
        await server.close()


@pytest.mark.asyncio
async def test_abnormal_close_reconnects():
    connections = []

    async def handler(request):
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        connections.append(ws)
        if len(connections) == 1:
            await ws.close(code=aiohttp.WSCloseCode.INTERNAL_ERROR)
            return ws
        async for _ in ws:
            pass
        return ws

    server = await _serve(handler)
    recorder = Recorder()
    transport = _transport(server, recorder)
    try:
        transport.start()
        await _until(lambda: recorder.connects >= 2)
        assert recorder.reasons[0] == TRANSPORT_ERROR
        assert transport.connected
    finally:
        await transport.close()
        await server.close()
    assert recorder.reasons[-1] == CLIENT_DISCONNECT
