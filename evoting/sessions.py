# Filename: evoting/sessions.py
# Open voting sessions. A session nobody has touched for `idle_seconds` is
# closed on the next sweep, which releases its camera and drops its
# verification state and OTP.

import logging
import threading
import time

logger = logging.getLogger(__name__)


class SessionRegistry:
    def __init__(self, idle_seconds=600, clock=time.time):
        self.idle_seconds = idle_seconds
        self.clock = clock
        self._sessions = {}  # session_id -> [controller, last_touched]
        self._lock = threading.Lock()

    def add(self, controller):
        self.sweep()
        with self._lock:
            self._sessions[controller.session_id] = [controller, self.clock()]
        return controller

    def get(self, session_id):
        """The session's controller (marked as used), or None."""
        self.sweep()
        with self._lock:
            entry = self._sessions.get(session_id)
            if entry is None:
                return None
            entry[1] = self.clock()
            return entry[0]

    def close(self, session_id):
        with self._lock:
            entry = self._sessions.pop(session_id, None)
        if entry is None:
            return False
        entry[0].cancel()
        return True

    def sweep(self):
        deadline = self.clock() - self.idle_seconds
        with self._lock:
            expired = [sid for sid, (_, touched) in self._sessions.items() if touched < deadline]
            controllers = [self._sessions.pop(sid)[0] for sid in expired]
        for controller in controllers:
            logger.info("Voting session %s closed after %d idle seconds",
                        controller.session_id, self.idle_seconds)
            controller.cancel()
        return len(controllers)

    def __len__(self):
        with self._lock:
            return len(self._sessions)
