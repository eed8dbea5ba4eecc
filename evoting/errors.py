"""
Error taxonomy for verification, catalog and vote casting.

Every error carries the HTTP status and machine code the API answers with.
"""


class VotingError(Exception):
    status = 400
    code = "voting_error"
    retryable = False

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__doc__.strip())

    def to_dict(self):
        return {"error": str(self), "code": self.code}


class NotRegistered(VotingError):
    """No biometric reference is registered for this modality."""
    status = 412
    code = "not_registered"

    def __init__(self, modality, message=None):
        self.modality = modality
        super().__init__(message or f"No {modality} reference registered. Please complete registration.")

    def to_dict(self):
        data = super().to_dict()
        data["modality"] = self.modality
        data["redirect"] = "registration"
        return data


class DeviceUnavailable(VotingError):
    """The capture device is not available."""
    status = 503
    code = "device_unavailable"
    retryable = True


class Rejected(VotingError):
    """Verification was rejected."""
    status = 401
    code = "rejected"
    retryable = True

    def __init__(self, reason, attempts_left=None, escalated=False, locked_out=False):
        self.reason = reason
        self.attempts_left = attempts_left
        self.escalated = escalated
        self.locked_out = locked_out
        super().__init__(reason)

    def to_dict(self):
        data = super().to_dict()
        data.update({
            "reason": self.reason,
            "attemptsLeft": self.attempts_left,
            "escalated": self.escalated,
            "lockedOut": self.locked_out,
        })
        return data


class LockedOut(VotingError):
    """Too many failed verifications."""
    status = 423
    code = "locked_out"

    def __init__(self, remaining_seconds):
        self.remaining_seconds = remaining_seconds
        super().__init__(f"Too many failed verifications. Try again in {remaining_seconds} seconds.")

    def to_dict(self):
        data = super().to_dict()
        data["remainingSeconds"] = self.remaining_seconds
        return data


class OutOfOrder(VotingError):
    """This step is not available at the current stage."""
    status = 409
    code = "out_of_order"


class ElectionNotFound(VotingError):
    """Election not found."""
    status = 404
    code = "election_not_found"


class ElectionInactive(VotingError):
    """Election is not active."""
    status = 409
    code = "election_inactive"


class CandidateNotFound(VotingError):
    """Candidate not found."""
    status = 404
    code = "candidate_not_found"


class StoreUnavailable(VotingError):
    """The vote store is temporarily unavailable. Please try again."""
    status = 503
    code = "store_unavailable"
    retryable = True


class DuplicateVote(Exception):
    """Raised by the store when the (voter, election) uniqueness constraint rejects an insert."""


class InvalidImage(VotingError):
    """No face detected or image is invalid."""
    status = 400
    code = "invalid_image"


class Unauthenticated(VotingError):
    """You must be signed in to perform this action."""
    status = 401
    code = "unauthenticated"


class BadRequest(VotingError):
    """The request is missing required data."""
    status = 400
    code = "bad_request"
