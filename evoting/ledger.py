# Filename: evoting/ledger.py
# Vote receipts. Each vote is "sealed" into a numbered block with an opaque
# transaction hash; the receipt is rebuilt from the stored vote row so a
# retried request gets back exactly the same receipt.

import hashlib
import json
import secrets
from dataclasses import dataclass
from datetime import datetime
from time import time


@dataclass(frozen=True)
class Receipt:
    transaction_hash: str
    block_number: int
    timestamp: datetime
    voter_id: str
    election_id: str
    candidate_id: str

    @classmethod
    def from_vote(cls, vote):
        return cls(
            transaction_hash=vote.transaction_hash,
            block_number=vote.block_number,
            timestamp=vote.created_at,
            voter_id=vote.voter_id,
            election_id=vote.election_id,
            candidate_id=vote.candidate_id,
        )

    def to_dict(self):
        return {
            "transactionHash": self.transaction_hash,
            "blockNumber": self.block_number,
            "timestamp": self.timestamp.isoformat(),
            "voter": self.voter_id,
            "electionId": self.election_id,
            "candidateId": self.candidate_id,
        }


class Ledger:
    """
    Seals votes into the ledger. Every vote is its own block: the block
    number is the vote row's position in the store's insert sequence, so
    two votes never share one, even when sealed at the same moment.
    """

    @staticmethod
    def hash(payload):
        """SHA-256 of a dict; keys sorted so the digest is stable."""
        encoded = json.dumps(payload, sort_keys=True).encode()
        return hashlib.sha256(encoded).hexdigest()

    def seal(self, voter_id, election_id, candidate_id):
        """
        Return the transaction hash for a new vote. The random nonce is
        never stored, so the hash cannot be recomputed from the vote's fields.
        """
        transaction = {
            "voter": voter_id,
            "election": election_id,
            "candidate": candidate_id,
            "timestamp": time(),
            "nonce": secrets.token_hex(32),
        }
        return "0x" + self.hash(transaction)
