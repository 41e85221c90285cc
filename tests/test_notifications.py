"""
Toasts and the notification feed.
"""
import asyncio
import json
from datetime import datetime, timedelta

from taskflow import schemas
from taskflow.errors import GatewayError
from taskflow.notifications import NotificationFeed, Toaster

from conftest import Clock

NOW = datetime(2025, 6, 11, 12, 0)


def make_notification(notification_id, created_at=NOW, **fields):
    fields.setdefault("title", f"Note {notification_id}")
    return schemas.Notification(id=notification_id, user_id="u1", message="...", created_at=created_at, **fields)


class FakeGateway:
    api_key = "k-1"

    def __init__(self, notifications=()):
        self.notifications = list(notifications)
        self.fail = False

    def get_notifications(self):
        return self.notifications

    def mark_notification_read(self, notification_id):
        if self.fail:
            raise GatewayError("offline", 503)

    def mark_all_notifications_read(self):
        return len(self.notifications)

    def notifications_url(self):
        return "ws://testserver/ws/notifications?token=t"


class FakeSession:
    def __init__(self, gateway):
        self.gateway = gateway


class FakeSocket:
    def __init__(self, messages):
        self.messages = messages

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.messages:
            yield json.dumps(message)


class TestToaster:
    """Test Toaster."""

    def test_toasts_expire_after_four_seconds(self):
        clock = Clock(NOW)
        toaster = Toaster(clock)
        toaster.success("Saved")
        clock.advance(seconds=3)
        toaster.error("Oops")
        assert [t.message for t in toaster.active()] == ["Saved", "Oops"]
        clock.advance(seconds=1)
        assert [t.message for t in toaster.active()] == ["Oops"]

    def test_dismiss(self):
        toaster = Toaster()
        toast = toaster.info("Hello")
        toaster.dismiss(toast.id)
        assert toaster.active() == []


class TestNotificationFeed:
    """Test NotificationFeed."""

    def test_load_and_unread_count(self):
        gateway = FakeGateway([make_notification("n1"), make_notification("n2", is_read=True)])
        feed = NotificationFeed(FakeSession(gateway))
        asyncio.run(feed.load())
        assert feed.unread_count == 1
        assert feed.loading is False

    def test_receive_dedupes_and_toasts(self):
        toaster = Toaster()
        feed = NotificationFeed(FakeSession(FakeGateway()), toaster)
        payload = make_notification("n1", title="Task Assigned").model_dump(mode="json")
        feed.receive(payload)
        feed.receive(payload)
        assert [n.id for n in feed.notifications] == ["n1"]
        assert [t.message for t in toaster.toasts] == ["Task Assigned"]

    def test_mark_as_read(self):
        feed = NotificationFeed(FakeSession(FakeGateway()))
        feed.notifications = [make_notification("n1"), make_notification("n2")]
        assert asyncio.run(feed.mark_as_read("n1")).ok
        assert [n.is_read for n in feed.notifications] == [True, False]
        assert asyncio.run(feed.mark_all_as_read()).ok
        assert feed.unread_count == 0

    def test_failed_mark_keeps_unread(self):
        gateway = FakeGateway()
        gateway.fail = True
        toaster = Toaster()
        feed = NotificationFeed(FakeSession(gateway), toaster)
        feed.notifications = [make_notification("n1")]
        assert not asyncio.run(feed.mark_as_read("n1")).ok
        assert feed.unread_count == 1
        assert [t.kind for t in toaster.toasts] == ["error"]

    def test_grouped_by_age(self):
        feed = NotificationFeed(FakeSession(FakeGateway()), clock=lambda: NOW)
        feed.notifications = [
            make_notification("today", NOW - timedelta(hours=2)),
            make_notification("yesterday", NOW - timedelta(hours=30)),
            make_notification("older", NOW - timedelta(days=5)),
        ]
        groups = feed.grouped()
        assert {k: [n.id for n in v] for k, v in groups.items()} == {
            "today": ["today"], "yesterday": ["yesterday"], "older": ["older"],
        }

    def test_listen_receives_pushed_notifications(self):
        pushed = make_notification("n9", title="Added to workspace").model_dump(mode="json")
        calls = []

        def connect(url, additional_headers):
            calls.append((url, additional_headers))
            return FakeSocket([{"type": "ping"}, {"type": "notification", "payload": pushed}])

        feed = NotificationFeed(FakeSession(FakeGateway()))
        asyncio.run(feed.listen(connect=connect))
        assert calls == [("ws://testserver/ws/notifications?token=t", {"apikey": "k-1"})]
        assert [n.id for n in feed.notifications] == ["n9"]
