"""
Voting session workflow.

Welcome -> FaceVerification -> PalmVerification -> OTPVerification
-> ElectionSelection -> CandidateSelection -> Casting -> Confirmed

An escalated rejection in any verification stage sends the voter back to
FaceVerification; a lockout ends the session in LockedOut. A failed cast
returns to CandidateSelection with the selection kept.
"""

import logging
import uuid

from .errors import (CandidateNotFound, DeviceUnavailable, ElectionInactive, LockedOut,
                     NotRegistered, OutOfOrder, Rejected, VotingError)
from .models import BIOMETRIC_MODALITIES, FACE, OTP, PALM
from .notifications import Notifier

logger = logging.getLogger(__name__)

WELCOME = "welcome"
FACE_VERIFICATION = "face_verification"
PALM_VERIFICATION = "palm_verification"
OTP_VERIFICATION = "otp_verification"
ELECTION_SELECTION = "election_selection"
CANDIDATE_SELECTION = "candidate_selection"
CASTING = "casting"
CONFIRMED = "confirmed"
LOCKED_OUT = "locked_out"

VERIFICATION_STAGES = (FACE_VERIFICATION, PALM_VERIFICATION, OTP_VERIFICATION)
STAGE_MODALITY = {FACE_VERIFICATION: FACE, PALM_VERIFICATION: PALM, OTP_VERIFICATION: OTP}
NEXT_STAGE = {
    FACE_VERIFICATION: PALM_VERIFICATION,
    PALM_VERIFICATION: OTP_VERIFICATION,
    OTP_VERIFICATION: ELECTION_SELECTION,
}
MODALITY_TITLES = {FACE: "Face", PALM: "Palm", OTP: "OTP"}


class WorkflowController:
    def __init__(self, voter_id, gate, catalog, caster, capture, notifier=None,
                 otp_echo=False, session_id=None):
        self.session_id = session_id or uuid.uuid4().hex
        self.voter_id = voter_id
        self.gate = gate
        self.catalog = catalog
        self.caster = caster
        self.capture = capture
        self.notifier = notifier or Notifier()
        self.otp_echo = otp_echo

        self.stage = WELCOME
        self.failed_stage = None
        self.election_id = None
        self.candidate_id = None
        self.receipt = None
        self.already_voted = False
        self.last_error = None
        self._handle = None

    # --- Helpers ---

    def _require(self, *stages):
        if self.stage == LOCKED_OUT:
            remaining = self.gate.lockout_remaining(self.voter_id)
            if remaining:
                raise LockedOut(remaining)
            raise OutOfOrder("This session ended after a lockout. Please start a new session.")
        if self.stage not in stages:
            raise OutOfOrder(f"Not available during {self.stage.replace('_', ' ')}.")

    @property
    def modality(self):
        return STAGE_MODALITY.get(self.stage)

    @property
    def capture_active(self):
        return self._handle is not None

    def _release(self):
        if self._handle is not None:
            self.capture.release(self._handle)
            self._handle = None

    def _echo_otp(self):
        code = self.gate.otp.peek(self.voter_id, self.session_id)
        description = "Enter the 6-digit code sent to your registered device."
        if self.otp_echo and code:
            description = f"Your OTP is: {code} (Shown for demo purposes)"
        self.notifier.notify("OTP Generated", description)

    def _lock_out(self, remaining):
        self._release()
        self.failed_stage = self.stage
        self.stage = LOCKED_OUT
        self.notifier.error("Locked Out", f"Too many failed attempts. Try again in {remaining} seconds.")
        logger.warning("Session %s locked out at %s", self.session_id, self.failed_stage)

    def _enter(self, stage):
        """Switch to a verification stage and begin its modality."""
        self._release()
        modality = STAGE_MODALITY[stage]
        try:
            self.gate.begin_modality(self.voter_id, modality, self.session_id)
        except LockedOut as e:
            self._lock_out(e.remaining_seconds)
            raise
        except NotRegistered:
            self.failed_stage = stage
            self.stage = WELCOME
            self.notifier.error("Registration Required",
                                f"Register your {modality} biometrics before voting.")
            raise
        self.stage = stage
        if modality in BIOMETRIC_MODALITIES:
            self._handle = self.capture.acquire()
        else:
            self._echo_otp()

    def _restart_modality(self):
        modality = self.modality
        self.gate.reset_modality(self.voter_id, modality, self.session_id)
        self.gate.begin_modality(self.voter_id, modality, self.session_id)
        if modality == OTP:
            self._echo_otp()
        elif self._handle is None:
            self._handle = self.capture.acquire()

    def _handle_rejection(self, error):
        stage = self.stage
        title = MODALITY_TITLES[self.modality]
        self.notifier.error(f"{title} Verification Failed", error.reason)
        if error.locked_out:
            self._lock_out(self.gate.lockout_remaining(self.voter_id))
        elif error.escalated:
            self.failed_stage = stage
            self.gate.reset_modality(self.voter_id, self.modality, self.session_id)
            logger.info("Session %s: %s failed, restarting identity proof", self.session_id, stage)
            self._enter(FACE_VERIFICATION)
        else:
            self._restart_modality()

    def _verify(self, call):
        try:
            verdict = call()
        except Rejected as e:
            self._handle_rejection(e)
            raise
        except LockedOut as e:
            self._lock_out(e.remaining_seconds)
            raise
        self._advance()
        return verdict

    def _advance(self):
        title = MODALITY_TITLES[self.modality]
        self.notifier.notify(f"{title} Verification Successful", "Your identity has been verified.")
        next_stage = NEXT_STAGE[self.stage]
        if next_stage == ELECTION_SELECTION:
            self._release()
            self.stage = ELECTION_SELECTION
        else:
            self._enter(next_stage)

    # --- Verification stages ---

    def start(self):
        self._require(WELCOME)
        self.failed_stage = None
        self._enter(FACE_VERIFICATION)

    def confirm_gesture(self, gesture):
        self._require(FACE_VERIFICATION, PALM_VERIFICATION)
        try:
            return self.gate.confirm_gesture(self.voter_id, self.modality, gesture, self.session_id)
        except Rejected as e:
            self._handle_rejection(e)
            raise
        except LockedOut as e:
            self._lock_out(e.remaining_seconds)
            raise

    def submit_frame(self, frame):
        self._require(FACE_VERIFICATION, PALM_VERIFICATION)
        modality = self.modality
        try:
            if self._handle is None:
                raise DeviceUnavailable()
            self._handle.push(frame)
            proof = self.capture.produce_proof(self._handle)
        except DeviceUnavailable as e:
            self.notifier.error("Camera Unavailable", str(e))
            raise
        return self._verify(lambda: self.gate.submit_proof(self.voter_id, modality, proof, self.session_id))

    def submit_otp(self, code):
        self._require(OTP_VERIFICATION)
        return self._verify(lambda: self.gate.submit_proof(self.voter_id, OTP, code, self.session_id))

    def resend_otp(self):
        self._require(OTP_VERIFICATION)
        self._restart_modality()

    def retry(self):
        self._require(*VERIFICATION_STAGES)
        try:
            self._restart_modality()
        except LockedOut as e:
            self._lock_out(e.remaining_seconds)
            raise

    # --- Election & candidate selection ---

    def elections(self):
        self._require(ELECTION_SELECTION, CANDIDATE_SELECTION)
        return self.catalog.list_active_elections()

    def select_election(self, election_id):
        self._require(ELECTION_SELECTION, CANDIDATE_SELECTION)
        election = self.catalog.get_election(election_id)
        if not election.is_active:
            raise ElectionInactive()
        self.election_id = election.id
        self.candidate_id = None
        self.stage = CANDIDATE_SELECTION
        return election

    def select_candidate(self, candidate_id):
        self._require(CANDIDATE_SELECTION)
        election = self.catalog.get_election(self.election_id)
        if not any(c.id == candidate_id for c in election.candidates):
            raise CandidateNotFound()
        self.candidate_id = candidate_id

    def cast(self):
        self._require(CANDIDATE_SELECTION)
        if self.candidate_id is None:
            raise OutOfOrder("Select a candidate first.")
        self.stage = CASTING
        try:
            outcome = self.caster.cast_vote(self.voter_id, self.election_id, self.candidate_id)
        except VotingError as e:
            self.failed_stage = CASTING
            self.last_error = e.to_dict()
            self.stage = CANDIDATE_SELECTION
            self.notifier.error("Error", str(e))
            logger.warning("Session %s: cast failed: %s", self.session_id, e)
            raise

        self.receipt = outcome.receipt
        self.already_voted = outcome.already_voted
        self.last_error = None
        self.stage = CONFIRMED
        self.gate.discard(self.voter_id, self.session_id)
        if outcome.already_voted:
            self.notifier.notify("Already Voted", "You have already cast your vote in this election.")
        else:
            self.notifier.notify("Vote Cast Successfully", "Your vote has been recorded on the blockchain.")
        return outcome

    # --- Session ---

    @property
    def finished(self):
        return self.stage in (CONFIRMED, LOCKED_OUT)

    def cancel(self):
        """Leave the session; releases the camera whatever the stage."""
        self._release()
        self.gate.discard(self.voter_id, self.session_id)
        if not self.finished:
            self.stage = WELCOME

    def snapshot(self):
        state = self.gate.state(self.voter_id, self.modality, self.session_id) if self.modality else None
        otp_expires_in = None
        if self.stage == OTP_VERIFICATION:
            otp_expires_in = self.gate.otp.expires_in(self.voter_id, self.session_id)
        return {
            "sessionId": self.session_id,
            "voterId": self.voter_id,
            "stage": self.stage,
            "failedStage": self.failed_stage,
            "verification": state.to_dict() if state else None,
            "lockoutRemaining": self.gate.lockout_remaining(self.voter_id),
            "otpExpiresIn": otp_expires_in,
            "electionId": self.election_id,
            "candidateId": self.candidate_id,
            "receipt": self.receipt.to_dict() if self.receipt else None,
            "alreadyVoted": self.already_voted,
            "lastError": self.last_error,
            "notifications": self.notifier.drain(),
        }
