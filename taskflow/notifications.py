"""
Transient toasts and the persistent notification feed.
"""

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Union

import websockets

from . import schemas
from .errors import TaskFlowError
from .results import MutationResult
from .schemas import utcnow

logger = logging.getLogger(__name__)

TOAST_LIFETIME = timedelta(seconds=4)


@dataclass
class Toast:
    id: int
    message: str
    kind: str
    created_at: datetime


class Toaster:
    """Short-lived success/error/info messages.

    Toasts expire ``TOAST_LIFETIME`` after they were shown; ``active()``
    prunes expired ones.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow, lifetime: timedelta = TOAST_LIFETIME):
        self.clock = clock
        self.lifetime = lifetime
        self.toasts: List[Toast] = []
        self._ids = itertools.count(1)

    def show(self, message: str, kind: str = "info") -> Toast:
        toast = Toast(id=next(self._ids), message=message, kind=kind, created_at=self.clock())
        self.toasts.append(toast)
        return toast

    def success(self, message: str) -> Toast:
        return self.show(message, "success")

    def error(self, message: str) -> Toast:
        return self.show(message, "error")

    def info(self, message: str) -> Toast:
        return self.show(message, "info")

    def dismiss(self, toast_id: int):
        self.toasts = [t for t in self.toasts if t.id != toast_id]

    def active(self) -> List[Toast]:
        now = self.clock()
        self.toasts = [t for t in self.toasts if now - t.created_at < self.lifetime]
        return list(self.toasts)


class NotificationFeed:
    """The signed-in user's notifications, newest first, kept live over a websocket."""

    def __init__(self, session, toaster: Optional[Toaster] = None, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.toaster = toaster
        self.clock = clock
        self.notifications: List[schemas.Notification] = []
        self.loading = True

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.notifications if not n.is_read)

    async def load(self):
        try:
            self.notifications = await asyncio.to_thread(self.session.gateway.get_notifications)
        except TaskFlowError as e:
            logger.error("Error fetching notifications: %s", e)
        finally:
            self.loading = False

    def receive(self, notification: Union[schemas.Notification, Dict]) -> schemas.Notification:
        if isinstance(notification, dict):
            notification = schemas.Notification(**notification)
        if any(n.id == notification.id for n in self.notifications):
            return notification
        self.notifications.insert(0, notification)
        if self.toaster is not None:
            self.toaster.info(notification.title)
        return notification

    async def mark_as_read(self, notification_id: str) -> MutationResult:
        try:
            await asyncio.to_thread(self.session.gateway.mark_notification_read, notification_id)
        except TaskFlowError as e:
            logger.error("Error marking notification as read: %s", e)
            return self._failed("Could not mark notification as read")
        self.notifications = [
            n.model_copy(update={"is_read": True}) if n.id == notification_id else n
            for n in self.notifications
        ]
        return MutationResult.success()

    async def mark_all_as_read(self) -> MutationResult:
        try:
            updated = await asyncio.to_thread(self.session.gateway.mark_all_notifications_read)
        except TaskFlowError as e:
            logger.error("Error marking all as read: %s", e)
            return self._failed("Could not mark notifications as read")
        self.notifications = [n.model_copy(update={"is_read": True}) for n in self.notifications]
        return MutationResult.success(updated)

    def grouped(self) -> Dict[str, List[schemas.Notification]]:
        """Split into today / yesterday / older by age relative to now."""
        now = self.clock()
        one_day = timedelta(days=1)
        sections = {"today": [], "yesterday": [], "older": []}
        for notification in self.notifications:
            age = now - notification.created_at
            if age < one_day:
                sections["today"].append(notification)
            elif age < 2 * one_day:
                sections["yesterday"].append(notification)
            else:
                sections["older"].append(notification)
        return sections

    async def listen(self, connect=None):
        """Consume pushed notifications until the socket closes."""
        gateway = self.session.gateway
        connect = connect or websockets.connect
        headers = {"apikey": gateway.api_key} if gateway.api_key else {}
        async with connect(gateway.notifications_url(), additional_headers=headers) as websocket:
            logger.info("Listening for notifications")
            async for raw in websocket:
                message = json.loads(raw)
                if message.get("type") == "notification":
                    self.receive(message["payload"])

    def _failed(self, message: str) -> MutationResult:
        if self.toaster is not None:
            self.toaster.error(message)
        return MutationResult.failure(message)
