"""
Tests for the per-user websocket registry.
"""
import asyncio

from taskflow.realtime import ConnectionManager


class FakeSocket:
    def __init__(self, fail=False):
        self.accepted = False
        self.sent = []
        self.fail = fail

    async def accept(self):
        self.accepted = True

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)


class TestConnectionManager:
    """Test ConnectionManager fan-out."""

    def test_pushes_to_every_socket_of_the_user(self):
        manager = ConnectionManager()
        laptop, phone, other = FakeSocket(), FakeSocket(), FakeSocket()

        async def scenario():
            await manager.connect("u1", laptop)
            await manager.connect("u1", phone)
            await manager.connect("u2", other)
            await manager.send_to_user("u1", {"type": "notification"})

        asyncio.run(scenario())
        assert laptop.accepted and phone.accepted
        assert laptop.sent == phone.sent == [{"type": "notification"}]
        assert other.sent == []

    def test_broken_socket_is_dropped(self):
        manager = ConnectionManager()
        broken = FakeSocket(fail=True)

        async def scenario():
            await manager.connect("u1", broken)
            await manager.send_to_user("u1", {"type": "notification"})

        asyncio.run(scenario())
        assert not manager.is_connected("u1")

    def test_disconnect(self):
        manager = ConnectionManager()
        socket = FakeSocket()
        asyncio.run(manager.connect("u1", socket))
        manager.disconnect("u1", socket)
        assert manager.connections == {}

    def test_sending_to_offline_user_is_a_no_op(self):
        asyncio.run(ConnectionManager().send_to_user("nobody", {"type": "notification"}))
