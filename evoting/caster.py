# Filename: evoting/caster.py
# At-most-once vote submission.

import logging
from collections import namedtuple

from .errors import (CandidateNotFound, DuplicateVote, ElectionInactive, ElectionNotFound,
                     StoreUnavailable)
from .ledger import Receipt

logger = logging.getLogger(__name__)

CastOutcome = namedtuple("CastOutcome", ["receipt", "already_voted"])


class VoteCaster:
    def __init__(self, store, ledger, blobs=None):
        self.store = store
        self.ledger = ledger
        self.blobs = blobs

    def _check_preconditions(self, election_id, candidate_id):
        election = self.store.get_election(election_id)
        if election is None:
            raise ElectionNotFound()
        if not election.is_active:
            raise ElectionInactive()
        candidate = self.store.get_candidate(election_id, candidate_id)
        if candidate is None:
            raise CandidateNotFound()
        return election, candidate

    def cast_vote(self, voter_id, election_id, candidate_id):
        """
        Record one vote for (voter_id, election_id) and return its receipt.

        A voter who already voted gets the existing receipt back with
        already_voted=True, whichever candidate this call named. The store's
        unique constraint decides races; the existence check below only
        saves a round trip in the common case.
        """
        election, candidate = self._check_preconditions(election_id, candidate_id)

        existing = self.store.find_vote(voter_id, election_id)
        if existing is not None:
            logger.info("Voter %s already voted in election %s", voter_id, election_id)
            return CastOutcome(Receipt.from_vote(existing), True)

        transaction_hash = self.ledger.seal(voter_id, election_id, candidate_id)
        try:
            vote = self.store.insert_vote(voter_id, election_id, candidate_id, transaction_hash)
        except DuplicateVote:
            existing = self.store.find_vote(voter_id, election_id)
            if existing is None:
                # Constraint violation that was not ours (e.g. hash collision)
                logger.error("Vote insert rejected for voter %s in election %s", voter_id, election_id)
                raise StoreUnavailable("Your vote could not be recorded. Please try again.")
            logger.info("Concurrent vote by %s in election %s lost the race", voter_id, election_id)
            return CastOutcome(Receipt.from_vote(existing), True)

        receipt = Receipt.from_vote(vote)
        logger.info("Vote recorded in block %d for election %s", receipt.block_number, election_id)
        self._archive(election, candidate, receipt)
        return CastOutcome(receipt, False)

    def receipt_for(self, voter_id, election_id):
        vote = self.store.find_vote(voter_id, election_id)
        return Receipt.from_vote(vote) if vote else None

    def history(self, voter_id):
        return [Receipt.from_vote(v) for v in self.store.votes_for_voter(voter_id)]

    def _archive(self, election, candidate, receipt):
        # Voting history is a side record; losing it must not lose the vote
        if self.blobs is None:
            return
        data = {
            "election": {"id": election.id, "title": election.title},
            "candidate": {"id": candidate.id, "name": candidate.name, "party": candidate.party},
            "timestamp": receipt.timestamp.isoformat(),
            "transaction": {"hash": receipt.transaction_hash, "blockNumber": receipt.block_number},
        }
        path = f"elections/{election.id}/{receipt.transaction_hash}.json"
        try:
            self.blobs.upload_json("voting_history", path, data)
        except (OSError, ValueError) as e:
            logger.error("Failed to store voting history %s: %s", path, e)
