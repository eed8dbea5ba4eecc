# Filename: evoting/models.py
# Database models. Table names follow the hosted store's collections.

from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

FACE = "face"
PALM = "palm"
OTP = "otp"
BIOMETRIC_MODALITIES = (FACE, PALM)
MODALITIES = (FACE, PALM, OTP)


def utcnow():
    # Naive UTC; SQLite drops tzinfo on the way back anyway
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Profile(db.Model):
    __tablename__ = "profiles"

    id = db.Column(db.String(64), primary_key=True)
    full_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120))
    avatar_url = db.Column(db.String(300))
    created_at = db.Column(db.DateTime, default=utcnow)


class BiometricReference(db.Model):
    __tablename__ = "user_biometrics"
    __table_args__ = (db.UniqueConstraint("user_id", "modality", name="uq_biometric_user_modality"),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    modality = db.Column(db.String(8), nullable=False)
    payload = db.Column(db.LargeBinary, nullable=False)
    image_path = db.Column(db.String(300))
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)


class Election(db.Model):
    __tablename__ = "elections"

    id = db.Column(db.String(64), primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    start_date = db.Column(db.DateTime, default=utcnow)
    end_date = db.Column(db.DateTime)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    candidates = db.relationship("Candidate", backref="election", lazy=True,
                                 order_by="Candidate.id")

    def to_dict(self, counts=None):
        counts = counts or {}
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "startDate": self.start_date.isoformat() if self.start_date else None,
            "endDate": self.end_date.isoformat() if self.end_date else None,
            "isActive": self.is_active,
            "candidates": [c.to_dict(counts.get(c.id, 0)) for c in self.candidates],
        }


class Candidate(db.Model):
    # No vote_count column: tallies are always counted from votes
    __tablename__ = "candidates"

    id = db.Column(db.String(64), primary_key=True)
    election_id = db.Column(db.String(64), db.ForeignKey("elections.id"), primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    party = db.Column(db.String(100), default="")

    def to_dict(self, vote_count=0):
        return {"id": self.id, "name": self.name, "party": self.party, "voteCount": vote_count}


class Vote(db.Model):
    __tablename__ = "votes"
    __table_args__ = (db.UniqueConstraint("voter_id", "election_id", name="uq_vote_voter_election"),)

    id = db.Column(db.Integer, primary_key=True)
    voter_id = db.Column(db.String(64), nullable=False, index=True)
    election_id = db.Column(db.String(64), db.ForeignKey("elections.id"), nullable=False, index=True)
    candidate_id = db.Column(db.String(64), nullable=False)
    transaction_hash = db.Column(db.String(66), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    @property
    def block_number(self):
        # One vote per block; the row id is the ledger sequence
        return self.id
