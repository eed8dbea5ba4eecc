# Filename: evoting/liveness.py
# Liveness challenge: a short random sequence of gestures the voter must
# confirm one by one, in order, before a face or palm proof is accepted.

import random

GESTURES = ("blink", "smile", "nod", "turn_left", "turn_right")


class LivenessChallenge:
    def __init__(self, gestures):
        if not gestures:
            raise ValueError("A liveness challenge needs at least one gesture")
        self.gestures = list(gestures)
        self.confirmed = 0

    @classmethod
    def issue(cls, rng=None, min_gestures=3, max_gestures=4):
        rng = rng or random.SystemRandom()
        count = rng.randint(min_gestures, max_gestures)
        return cls(rng.sample(GESTURES, count))

    @property
    def pending(self):
        return self.gestures[self.confirmed:]

    @property
    def expected(self):
        pending = self.pending
        return pending[0] if pending else None

    @property
    def complete(self):
        return self.confirmed == len(self.gestures)

    def confirm(self, gesture):
        """Confirm the next gesture. Returns False if it is not the expected one."""
        if self.complete or gesture != self.expected:
            return False
        self.confirmed += 1
        return True
