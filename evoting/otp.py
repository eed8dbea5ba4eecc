# Filename: evoting/otp.py
# One-time passwords. Delivery is mocked: the code is logged instead of sent.
# Codes are kept per (voter, session) so two tabs never consume each other's code.

import hmac
import logging
import secrets
import time

logger = logging.getLogger(__name__)


def log_sender(voter_id, code):
    logger.info("==> MOCK OTP for %s: %s", voter_id, code)


class OtpIssuer:
    def __init__(self, length=6, ttl_seconds=60, sender=None, clock=time.time):
        self.length = length
        self.ttl_seconds = ttl_seconds
        self.sender = sender or log_sender
        self.clock = clock
        self._codes = {}  # (voter_id, session_id) -> (code, expires_at)

    def generate(self):
        low = 10 ** (self.length - 1)
        return str(low + secrets.randbelow(9 * low))

    def issue(self, voter_id, session_id=None):
        """Issue a fresh code for the voter, replacing any earlier one for the session."""
        code = self.generate()
        self._codes[(voter_id, session_id)] = (code, self.clock() + self.ttl_seconds)
        self.sender(voter_id, code)
        return code

    def verify(self, voter_id, code, session_id=None):
        """Return None if the code matches, otherwise the rejection reason."""
        issued = self._codes.get((voter_id, session_id))
        if issued is None:
            return "No OTP has been issued"
        expected, expires_at = issued
        if self.clock() > expires_at:
            return "OTP has expired"
        if not code or not hmac.compare_digest(str(code), expected):
            return "The OTP you entered is incorrect"
        del self._codes[(voter_id, session_id)]
        return None

    def peek(self, voter_id, session_id=None):
        """The outstanding code, for demo echo only."""
        issued = self._codes.get((voter_id, session_id))
        return issued[0] if issued else None

    def expires_in(self, voter_id, session_id=None):
        issued = self._codes.get((voter_id, session_id))
        if issued is None:
            return 0
        return max(0, int(issued[1] - self.clock()))

    def discard(self, voter_id, session_id=None):
        self._codes.pop((voter_id, session_id), None)

    def __len__(self):
        return len(self._codes)
