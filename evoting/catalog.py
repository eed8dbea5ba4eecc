# Filename: evoting/catalog.py
# Elections and live tallies. Vote counts are always counted from the votes
# table; nothing here keeps a running counter.

import logging
import time
from collections import namedtuple

from .errors import ElectionNotFound

logger = logging.getLogger(__name__)

CandidateResult = namedtuple("CandidateResult", ["candidate_id", "name", "party", "votes", "percentage"])


class TallySnapshot(namedtuple("TallySnapshot", ["election_id", "counts", "total", "taken_at"])):
    __slots__ = ()

    def to_dict(self):
        return {
            "electionId": self.election_id,
            "counts": dict(self.counts),
            "totalVotes": self.total,
            "takenAt": self.taken_at,
        }


class ElectionResults(namedtuple("ElectionResults", ["election_id", "title", "total_votes", "candidates"])):
    __slots__ = ()

    @property
    def leader(self):
        if not self.total_votes:
            return None
        return self.candidates[0]

    def to_dict(self):
        return {
            "electionId": self.election_id,
            "title": self.title,
            "totalVotes": self.total_votes,
            "leader": self.leader._asdict() if self.leader else None,
            "candidates": [c._asdict() for c in self.candidates],
        }


class TallyWatch:
    """
    Monotonic view of one election's tallies. A recount with a lower total
    than the last one handed out is dropped, since votes are never removed.
    """

    def __init__(self, catalog, election_id):
        self.catalog = catalog
        self.election_id = election_id
        self.latest = None

    def refresh(self):
        """Recount; return the new snapshot, or None if it was stale and dropped."""
        snapshot = self.catalog.tallies(self.election_id)
        if self.latest is not None and snapshot.total < self.latest.total:
            logger.debug("Dropped stale tally for %s (%d < %d)",
                         self.election_id, snapshot.total, self.latest.total)
            return None
        self.latest = snapshot
        return snapshot


class ElectionCatalog:
    def __init__(self, store, clock=time.time):
        self.store = store
        self.clock = clock

    def list_active_elections(self):
        """Active elections; an empty list is a valid answer, a store failure raises."""
        return self.store.list_elections(active_only=True)

    def get_election(self, election_id):
        election = self.store.get_election(election_id)
        if election is None:
            raise ElectionNotFound()
        return election

    def tallies(self, election_id):
        election = self.get_election(election_id)
        counted = self.store.count_votes(election_id)
        counts = {c.id: counted.get(c.id, 0) for c in election.candidates}
        return TallySnapshot(election_id, counts, sum(counts.values()), self.clock())

    def watch_candidate_tallies(self, election_id):
        """
        Start watching an election's tallies. The returned TallyWatch hands
        out recounted snapshots and never goes backwards; the realtime
        layer calls refresh() on every vote change for the election.
        """
        watch = TallyWatch(self, election_id)
        watch.refresh()
        return watch

    def results(self, election_id):
        election = self.get_election(election_id)
        snapshot = self.tallies(election_id)
        total = snapshot.total
        rows = [
            CandidateResult(c.id, c.name, c.party, snapshot.counts[c.id],
                            round(snapshot.counts[c.id] * 100.0 / total, 2) if total else 0.0)
            for c in election.candidates
        ]
        rows.sort(key=lambda r: (-r.votes, r.name))
        return ElectionResults(election.id, election.title, total, rows)
