import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

from eng_portal.core.roles import Role
from eng_portal.models.notification import AUDIENCE_ALL, Notification

logger = logging.getLogger("engportal.notifications")

NOTIFICATIONS = "notifications"
USERS = "users"
FEED_LIMIT = 20


@dataclass(frozen=True)
class Inbox:
    notifications: List[Notification]
    seen: List[str]

    @property
    def has_unread(self) -> bool:
        return any(n.id not in self.seen for n in self.notifications)


def audiences_for(uid: str, role: Optional[Role]) -> List[str]:
    """Audience values a user receives: broadcasts, their role (if any), and themselves."""
    audiences = [AUDIENCE_ALL, uid]
    if role is not None:
        audiences.insert(1, role.value)
    return audiences


async def send_notification(store, message: str, audience: str = AUDIENCE_ALL, title: Optional[str] = None) -> str:
    """
    Creates a notification for a single user (uid), every holder of a role, or everyone.
    """
    notification = {
        "title": title,
        "message": message,
        "audience": audience or AUDIENCE_ALL,
        "createdAt": datetime.now(timezone.utc),
    }
    notification_id = store.add(NOTIFICATIONS, notification)
    logger.info(f"Notification {notification_id} sent to {notification['audience']}")
    return notification_id


def _seen_for(store, uid: str) -> List[str]:
    data = store.get(USERS, uid) or {}
    return list(data.get("seenNotifications") or [])


def _to_inbox(docs, seen: List[str]) -> Inbox:
    return Inbox([Notification.from_document(doc_id, data) for doc_id, data in docs], seen)


async def get_inbox(store, uid: str, role: Optional[Role]) -> Inbox:
    docs = store.query(
        NOTIFICATIONS,
        [("audience", "in", audiences_for(uid, role))],
        order_by="createdAt", descending=True, limit=FEED_LIMIT,
    )
    return _to_inbox(docs, _seen_for(store, uid))


async def mark_seen(store, uid: str, notification_id: str):
    # ArrayUnion keeps each id at most once in the seen-set.
    store.array_union(USERS, uid, "seenNotifications", [notification_id])


class NotificationFeed:
    """Live inbox. close() must be called when the consumer goes away."""

    def __init__(self, store, uid: str, role: Optional[Role], listener: Callable[[Inbox], None]):
        self._store = store
        self._uid = uid
        self._role = role
        self._listener = listener
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._closed = False

    def start(self):
        if self._unsubscribe is None:
            self._unsubscribe = self._store.watch(
                NOTIFICATIONS, self._on_snapshot,
                filters=[("audience", "in", audiences_for(self._uid, self._role))],
                order_by="createdAt", descending=True, limit=FEED_LIMIT,
            )

    def _on_snapshot(self, docs):
        if self._closed:
            return
        self._listener(_to_inbox(docs, _seen_for(self._store, self._uid)))

    def close(self):
        self._closed = True
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    @property
    def active(self) -> bool:
        return self._unsubscribe is not None
