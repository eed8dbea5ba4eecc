"""
Identity verification gate.

Each modality runs Idle -> Liveness -> AwaitingProof -> Verified/Rejected
(OTP skips the liveness step). Modality states belong to one voting
session, so the same voter on two tabs never disturbs the other tab's
progress. Rejections feed a per-voter escalation policy:
MAX_CONSECUTIVE_FAILURES rejections in one modality make one escalation,
MAX_ESCALATIONS escalations lock the voter out of every modality, in every
session, until the cool-down has elapsed.
"""

import logging
import math
import threading
import time
from collections import namedtuple

from .errors import BadRequest, LockedOut, NotRegistered, OutOfOrder, Rejected
from .liveness import LivenessChallenge
from .models import BIOMETRIC_MODALITIES, FACE, MODALITIES, OTP, PALM

logger = logging.getLogger(__name__)

IDLE = "idle"
LIVENESS = "liveness"
AWAITING_PROOF = "awaiting_proof"
VERIFIED = "verified"
REJECTED = "rejected"

Verified = namedtuple("Verified", ["modality", "confidence"])


class ModalityState:
    def __init__(self, modality):
        self.modality = modality
        self.status = IDLE
        self.challenge = None
        self.confidence = None
        self.reason = None

    def to_dict(self):
        return {
            "modality": self.modality,
            "status": self.status,
            "pendingGestures": self.challenge.pending if self.challenge else [],
            "confidence": self.confidence,
            "reason": self.reason,
        }


class VerificationAttempt:
    """Ephemeral per-voter verification state; never persisted."""

    def __init__(self):
        self.sessions = {}  # session_id -> {modality: ModalityState}
        self.failures = {m: 0 for m in MODALITIES}
        self.escalations = 0
        self.locked_until = None


class VerificationGate:
    def __init__(self, store, matcher, otp, clock=time.time, rng=None,
                 thresholds=None, max_consecutive_failures=3, max_escalations=3,
                 lockout_seconds=900, min_gestures=3, max_gestures=4):
        self.store = store
        self.matcher = matcher
        self.otp = otp
        self.clock = clock
        self.rng = rng
        self.thresholds = {FACE: 0.8, PALM: 0.9}
        self.thresholds.update(thresholds or {})
        self.max_consecutive_failures = max_consecutive_failures
        self.max_escalations = max_escalations
        self.lockout_seconds = lockout_seconds
        self.min_gestures = min_gestures
        self.max_gestures = max_gestures
        self._attempts = {}
        self._lock = threading.RLock()

    # --- Lockout ---

    def lockout_remaining(self, voter_id):
        """Seconds left on the voter's lockout, 0 if not locked out."""
        with self._lock:
            attempt = self._attempts.get(voter_id)
            if attempt is None or attempt.locked_until is None:
                return 0
            remaining = attempt.locked_until - self.clock()
            if remaining > 0:
                return math.ceil(remaining)
            # Cool-down elapsed: the attempt starts over
            logger.info("Lockout for voter %s expired", voter_id)
            del self._attempts[voter_id]
            return 0

    def _check_lockout(self, voter_id):
        remaining = self.lockout_remaining(voter_id)
        if remaining:
            raise LockedOut(remaining)

    def _attempt(self, voter_id):
        attempt = self._attempts.get(voter_id)
        if attempt is None:
            attempt = self._attempts[voter_id] = VerificationAttempt()
        return attempt

    def _state(self, voter_id, modality, session_id):
        attempt = self._attempts.get(voter_id)
        states = attempt.sessions.get(session_id, {}) if attempt else {}
        state = states.get(modality)
        if state is None:
            raise OutOfOrder(f"{modality.capitalize()} verification has not been started.")
        return attempt, state

    def _reference(self, voter_id, modality):
        ref = self.store.get_reference(voter_id, modality)
        if ref is None:
            raise NotRegistered(modality)
        return ref

    def _reject(self, voter_id, attempt, state, reason):
        modality = state.modality
        attempt.failures[modality] += 1
        state.status = REJECTED
        state.reason = reason
        escalated = locked_out = False
        attempts_left = self.max_consecutive_failures - attempt.failures[modality]

        if attempt.failures[modality] >= self.max_consecutive_failures:
            attempt.failures[modality] = 0
            attempt.escalations += 1
            escalated = True
            attempts_left = 0
            logger.warning("Voter %s: %s verification escalated (%d/%d)",
                           voter_id, modality, attempt.escalations, self.max_escalations)
            if attempt.escalations >= self.max_escalations:
                attempt.locked_until = self.clock() + self.lockout_seconds
                attempt.sessions.clear()
                locked_out = True
                logger.warning("Voter %s locked out for %d seconds", voter_id, self.lockout_seconds)

        raise Rejected(reason, attempts_left=attempts_left, escalated=escalated, locked_out=locked_out)

    # --- Operations ---

    def begin_modality(self, voter_id, modality, session_id=None):
        if modality not in MODALITIES:
            raise ValueError(f"Unknown modality: {modality}")
        self._check_lockout(voter_id)
        if modality in BIOMETRIC_MODALITIES:
            self._reference(voter_id, modality)

        with self._lock:
            self._check_lockout(voter_id)
            attempt = self._attempt(voter_id)
            state = ModalityState(modality)
            if modality in BIOMETRIC_MODALITIES:
                state.challenge = LivenessChallenge.issue(self.rng, self.min_gestures, self.max_gestures)
                state.status = LIVENESS
            else:
                self.otp.issue(voter_id, session_id)
                state.status = AWAITING_PROOF
            attempt.sessions.setdefault(session_id, {})[modality] = state
            logger.info("Voter %s began %s verification", voter_id, modality)
            return state

    def confirm_gesture(self, voter_id, modality, gesture, session_id=None):
        if not gesture:
            raise BadRequest("A gesture is required.")
        with self._lock:
            self._check_lockout(voter_id)
            attempt, state = self._state(voter_id, modality, session_id)
            if state.status != LIVENESS:
                raise OutOfOrder("No liveness challenge is pending.")
            expected = state.challenge.expected
            if not state.challenge.confirm(gesture):
                self._reject(voter_id, attempt, state,
                             f"Liveness gesture '{gesture}' not confirmed (expected '{expected}')")
            if state.challenge.complete:
                state.status = AWAITING_PROOF
            return state

    def submit_proof(self, voter_id, modality, proof, session_id=None):
        """Compare `proof` with the stored reference (or the issued OTP)."""
        reference = None
        if modality in BIOMETRIC_MODALITIES:
            self._check_lockout(voter_id)
            reference = self._reference(voter_id, modality)

        with self._lock:
            self._check_lockout(voter_id)
            attempt, state = self._state(voter_id, modality, session_id)
            if state.status == LIVENESS:
                raise OutOfOrder("Complete the liveness challenge first.")
            if state.status != AWAITING_PROOF:
                raise OutOfOrder(f"{modality.capitalize()} verification is not awaiting a proof.")

            if modality == OTP:
                reason = self.otp.verify(voter_id, proof, session_id)
                confidence = 0.0 if reason else 1.0
            else:
                confidence = self.matcher.score(modality, reference.payload, proof)
                threshold = self.thresholds[modality]
                reason = None
                if confidence < threshold:
                    reason = f"Confidence {confidence:.2f} is below the {modality} threshold {threshold:.2f}"

            if reason:
                state.confidence = confidence
                self._reject(voter_id, attempt, state, reason)

            state.status = VERIFIED
            state.confidence = confidence
            state.reason = None
            attempt.failures[modality] = 0
            logger.info("Voter %s verified by %s (confidence %.2f)", voter_id, modality, confidence)
            return Verified(modality, confidence)

    def reset_modality(self, voter_id, modality, session_id=None):
        with self._lock:
            attempt = self._attempts.get(voter_id)
            if attempt is not None:
                attempt.sessions.get(session_id, {}).pop(modality, None)
            if modality == OTP:
                self.otp.discard(voter_id, session_id)

    def state(self, voter_id, modality, session_id=None):
        with self._lock:
            attempt = self._attempts.get(voter_id)
            if attempt is None:
                return None
            return attempt.sessions.get(session_id, {}).get(modality)

    def discard(self, voter_id, session_id=None):
        """
        End of one session. Other sessions of the voter keep their progress;
        counters are dropped with the voter's last session, but a running
        lockout always survives.
        """
        with self._lock:
            self.otp.discard(voter_id, session_id)
            attempt = self._attempts.get(voter_id)
            if attempt is None:
                return
            attempt.sessions.pop(session_id, None)
            if attempt.locked_until is not None and attempt.locked_until > self.clock():
                return
            if not attempt.sessions:
                del self._attempts[voter_id]

    @property
    def active_voters(self):
        with self._lock:
            return len(self._attempts)
