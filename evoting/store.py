# Filename: evoting/store.py
# Persistent store: typed reads/writes over the SQLAlchemy session. New votes
# are announced to the realtime layer, which pushes recounted tallies to
# the election's Socket.IO room.

import logging
from functools import wraps

from sqlalchemy import func
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from .errors import DuplicateVote, StoreUnavailable
from .models import BiometricReference, Candidate, Election, Profile, Vote, db, utcnow

logger = logging.getLogger(__name__)


def translate_errors(fn):
    """Turn connection/driver failures into StoreUnavailable after a rollback."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (OperationalError, DBAPIError) as e:
            db.session.rollback()
            logger.error("Store operation %s failed: %s", fn.__name__, e)
            raise StoreUnavailable() from e
    return wrapper


class VoteStore:
    def __init__(self, realtime=None):
        # Anything with vote_inserted(election_id); see realtime.TallyBroadcaster
        self.realtime = realtime

    # --- Elections & candidates ---

    @translate_errors
    def get_election(self, election_id):
        return db.session.get(Election, election_id)

    @translate_errors
    def list_elections(self, active_only=True):
        query = Election.query
        if active_only:
            query = query.filter_by(is_active=True)
        return query.order_by(Election.start_date, Election.id).all()

    @translate_errors
    def get_candidate(self, election_id, candidate_id):
        return Candidate.query.filter_by(election_id=election_id, id=candidate_id).first()

    # --- Votes ---

    @translate_errors
    def find_vote(self, voter_id, election_id):
        return Vote.query.filter_by(voter_id=voter_id, election_id=election_id).first()

    @translate_errors
    def insert_vote(self, voter_id, election_id, candidate_id, transaction_hash):
        """
        Insert a vote; the (voter_id, election_id) unique constraint makes this
        insert-if-absent. Raises DuplicateVote when the constraint rejects it.
        """
        vote = Vote(
            voter_id=voter_id,
            election_id=election_id,
            candidate_id=candidate_id,
            transaction_hash=transaction_hash,
            created_at=utcnow(),
        )
        db.session.add(vote)
        try:
            db.session.commit()
        except IntegrityError as e:
            db.session.rollback()
            raise DuplicateVote(str(e.orig)) from e

        if self.realtime is not None:
            self.realtime.vote_inserted(election_id)
        return vote

    @translate_errors
    def count_votes(self, election_id):
        rows = (
            db.session.query(Vote.candidate_id, func.count(Vote.id))
            .filter(Vote.election_id == election_id)
            .group_by(Vote.candidate_id)
            .all()
        )
        return {candidate_id: count for candidate_id, count in rows}

    @translate_errors
    def votes_for_voter(self, voter_id):
        return (
            Vote.query.filter_by(voter_id=voter_id)
            .order_by(Vote.created_at.desc(), Vote.id.desc())
            .all()
        )

    # --- Biometric references ---

    @translate_errors
    def get_reference(self, voter_id, modality):
        return BiometricReference.query.filter_by(user_id=voter_id, modality=modality).first()

    @translate_errors
    def save_reference(self, voter_id, modality, payload, image_path=None):
        ref = self.get_reference(voter_id, modality)
        if ref is None:
            ref = BiometricReference(user_id=voter_id, modality=modality)
            db.session.add(ref)
        ref.payload = payload
        ref.image_path = image_path
        ref.updated_at = utcnow()
        try:
            db.session.commit()
        except IntegrityError:
            # Another registration created the row first; overwrite it
            db.session.rollback()
            ref = self.get_reference(voter_id, modality)
            ref.payload = payload
            ref.image_path = image_path
            ref.updated_at = utcnow()
            db.session.commit()
        return ref

    # --- Profiles ---

    @translate_errors
    def get_profile(self, voter_id):
        return db.session.get(Profile, voter_id)

    @translate_errors
    def save_profile(self, voter_id, **fields):
        profile = db.session.get(Profile, voter_id)
        if profile is None:
            profile = Profile(id=voter_id, full_name=fields.pop("full_name", None) or voter_id)
            db.session.add(profile)
        for key, value in fields.items():
            setattr(profile, key, value)
        db.session.commit()
        return profile
