# Filename: evoting/notifications.py
# User-facing messages ("toasts") kept apart from workflow state.

from collections import namedtuple
from time import time

Notification = namedtuple("Notification", ["title", "description", "variant", "created_at"])

DEFAULT = "default"
DESTRUCTIVE = "destructive"


class Notifier:
    def __init__(self, limit=50):
        self.limit = limit
        self._items = []

    def notify(self, title, description="", variant=DEFAULT):
        self._items.append(Notification(title, description, variant, time()))
        del self._items[:-self.limit]

    def error(self, title, description=""):
        self.notify(title, description, DESTRUCTIVE)

    def drain(self):
        """Return and forget everything queued so far."""
        items, self._items = self._items, []
        return [n._asdict() for n in items]

    def __len__(self):
        return len(self._items)
