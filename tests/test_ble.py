from __future__ import annotations

import asyncio

import pytest
from bleak.exc import BleakError

from fluxsense.errors import TransportFailure
from fluxsense.session.ble import BleTransport
from fluxsense.session.config import NUS_RX_CHAR, NUS_TX_CHAR


class FakeBleakClient:
    def __init__(self, address, disconnected_callback=None, timeout=10.0, fail_connect=False):
        self.address = address
        self.disconnected_callback = disconnected_callback
        self.timeout = timeout
        self.fail_connect = fail_connect
        self.notify_handler = None
        self.writes: list = []
        self.calls: list[str] = []

    async def connect(self):
        self.calls.append("connect")
        if self.fail_connect:
            raise BleakError("Device with address AA:BB was not found")

    async def start_notify(self, char, handler):
        self.calls.append(f"start_notify {char}")
        self.notify_handler = handler

    async def stop_notify(self, char):
        self.calls.append(f"stop_notify {char}")

    async def write_gatt_char(self, char, data, response=True):
        self.writes.append((char, bytes(data), response))

    async def disconnect(self):
        self.calls.append("disconnect")
        if self.disconnected_callback is not None:
            self.disconnected_callback(self)


class Factory:
    def __init__(self, fail_connect: bool = False):
        self.fail_connect = fail_connect
        self.clients: list[FakeBleakClient] = []

    def __call__(self, address, disconnected_callback=None, timeout=10.0):
        client = FakeBleakClient(address, disconnected_callback, timeout, self.fail_connect)
        self.clients.append(client)
        return client


def test_notifications_and_writes() -> None:
    factory = Factory()
    transport = BleTransport(connect_timeout=5.0, client_factory=factory)
    received: list[bytes] = []
    lost: list[bool] = []

    async def scenario() -> None:
        await transport.connect("AA:BB", lambda: lost.append(True), received.append)
        client = factory.clients[0]
        client.notify_handler(None, bytearray(b"WHOIS probe\n"))
        await transport.send("GET_SETTINGS\n")
        await transport.disconnect()

    asyncio.run(scenario())
    client = factory.clients[0]
    assert client.timeout == 5.0
    assert received == [b"WHOIS probe\n"]
    assert client.writes == [(NUS_RX_CHAR, b"GET_SETTINGS\n", False)]
    assert client.calls == ["connect", f"start_notify {NUS_TX_CHAR}", f"stop_notify {NUS_TX_CHAR}", "disconnect"]
    assert lost == []
    assert not transport.is_connected


def test_remote_drop_reports_disconnect() -> None:
    factory = Factory()
    transport = BleTransport(client_factory=factory)
    lost: list[bool] = []

    async def scenario() -> None:
        await transport.connect("AA:BB", lambda: lost.append(True), lambda chunk: None)
        factory.clients[0].disconnected_callback(factory.clients[0])

    asyncio.run(scenario())
    assert lost == [True]
    assert not transport.is_connected


def test_connect_failure_is_transport_failure() -> None:
    transport = BleTransport(client_factory=Factory(fail_connect=True))
    lost: list[bool] = []
    with pytest.raises(TransportFailure):
        asyncio.run(transport.connect("AA:BB", lambda: lost.append(True), lambda chunk: None))
    assert lost == []
    assert not transport.is_connected


def test_send_without_link_fails() -> None:
    with pytest.raises(TransportFailure):
        asyncio.run(BleTransport(client_factory=Factory()).send("WHOIS\n"))
