import pytest

from evoting.errors import LockedOut, NotRegistered, OutOfOrder, Rejected
from evoting.liveness import LivenessChallenge
from evoting.verification import AWAITING_PROOF, LIVENESS, VERIFIED

from conftest import FixedMatcher


def pass_liveness(gate, voter_id, modality):
    state = gate.state(voter_id, modality)
    for gesture in list(state.challenge.pending):
        gate.confirm_gesture(voter_id, modality, gesture)
    return state


def fail_otp(gate, voter_id):
    gate.begin_modality(voter_id, "otp")
    with pytest.raises(Rejected) as exc:
        gate.submit_proof(voter_id, "otp", "not-a-code")
    return exc.value


def test_face_without_reference_fails_closed(services):
    gate = services.gate
    with pytest.raises(NotRegistered) as exc:
        gate.begin_modality("nobody", "face")
    assert exc.value.modality == "face"
    assert gate.state("nobody", "face") is None


def test_otp_needs_no_reference(services, inbox):
    state = services.gate.begin_modality("nobody", "otp")
    assert state.status == AWAITING_PROOF
    verdict = services.gate.submit_proof("nobody", "otp", inbox.codes["nobody"])
    assert verdict.confidence == 1.0


def test_liveness_then_proof_verifies(services, registered):
    gate = services.gate
    gate.matcher = FixedMatcher(0.9)
    state = gate.begin_modality("v1", "face")
    assert state.status == LIVENESS
    state.challenge = LivenessChallenge(["blink", "smile", "nod"])
    for gesture in ("blink", "smile", "nod"):
        gate.confirm_gesture("v1", "face", gesture)
    assert state.status == AWAITING_PROOF

    verdict = gate.submit_proof("v1", "face", b"proof")
    assert verdict.modality == "face"
    assert verdict.confidence == 0.9
    assert gate.state("v1", "face").status == VERIFIED


def test_proof_before_liveness_is_out_of_order(services, registered):
    gate = services.gate
    gate.matcher = FixedMatcher(1.0)
    gate.begin_modality("v1", "face")
    with pytest.raises(OutOfOrder):
        gate.submit_proof("v1", "face", b"proof")


def test_wrong_gesture_is_a_rejection(services, registered):
    gate = services.gate
    state = gate.begin_modality("v1", "palm")
    state.challenge = LivenessChallenge(["nod", "blink", "smile"])
    with pytest.raises(Rejected) as exc:
        gate.confirm_gesture("v1", "palm", "blink")
    assert "not confirmed" in exc.value.reason
    assert exc.value.attempts_left == 2


def test_below_threshold_is_rejected(services, registered):
    gate = services.gate
    gate.matcher = FixedMatcher(0.85)
    gate.begin_modality("v1", "palm")
    pass_liveness(gate, "v1", "palm")
    with pytest.raises(Rejected) as exc:
        gate.submit_proof("v1", "palm", b"proof")
    assert "threshold" in exc.value.reason


def test_three_rejections_escalate(services):
    gate = services.gate
    assert fail_otp(gate, "v1").attempts_left == 2
    assert fail_otp(gate, "v1").attempts_left == 1
    third = fail_otp(gate, "v1")
    assert third.escalated
    assert not third.locked_out


def test_success_resets_consecutive_failures(services, inbox):
    gate = services.gate
    fail_otp(gate, "v1")
    fail_otp(gate, "v1")
    gate.begin_modality("v1", "otp")
    gate.submit_proof("v1", "otp", inbox.codes["v1"])
    assert not fail_otp(gate, "v1").escalated
    assert not fail_otp(gate, "v1").escalated


def test_lockout_triggers_and_clears_with_time(services, clock):
    gate = services.gate
    outcomes = [fail_otp(gate, "v1") for _ in range(9)]
    assert [o.escalated for o in outcomes].count(True) == 3
    assert outcomes[-1].locked_out

    with pytest.raises(LockedOut) as exc:
        gate.begin_modality("v1", "otp")
    assert exc.value.remaining_seconds > 0
    assert exc.value.remaining_seconds <= 900

    # Every modality is locked, not only the one that failed
    with pytest.raises(LockedOut):
        gate.begin_modality("v1", "face")

    clock.advance(899)
    with pytest.raises(LockedOut) as exc:
        gate.begin_modality("v1", "otp")
    assert exc.value.remaining_seconds == 1

    clock.advance(1)
    state = gate.begin_modality("v1", "otp")
    assert state.status == AWAITING_PROOF
    # Counters start over after the cool-down
    assert fail_otp(gate, "v1").attempts_left == 2


def test_lockout_survives_session_discard(services, clock):
    gate = services.gate
    for _ in range(9):
        fail_otp(gate, "v1")
    gate.discard("v1")
    assert gate.lockout_remaining("v1") == 900


def test_reset_modality_returns_to_idle(services, registered):
    gate = services.gate
    gate.begin_modality("v1", "face")
    gate.reset_modality("v1", "face")
    assert gate.state("v1", "face") is None
    with pytest.raises(OutOfOrder):
        gate.confirm_gesture("v1", "face", "blink")
