import base64
import random

import cv2
import numpy as np
import pytest

from evoting.app import create_app, seed_demo_data
from evoting.models import Candidate, Election, db


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class OtpInbox:
    """Stands in for SMS delivery; remembers the last code per voter."""

    def __init__(self):
        self.codes = {}

    def __call__(self, voter_id, code):
        self.codes[voter_id] = code


class FixedMatcher:
    def __init__(self, confidence):
        self.confidence = confidence

    def score(self, modality, reference, proof):
        return self.confidence


def image_data_uri(color, size=(48, 64)):
    image = np.zeros((size[0], size[1], 3), np.uint8)
    image[:] = color
    ok, buf = cv2.imencode(".png", image)
    assert ok
    return "data:image/png;base64," + base64.b64encode(buf.tobytes()).decode()


FACE_IMAGE = image_data_uri((0, 0, 255))
PALM_IMAGE = image_data_uri((0, 255, 0))
OTHER_IMAGE = image_data_uri((255, 0, 0))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def inbox():
    return OtpInbox()


@pytest.fixture
def app(tmp_path, clock, inbox):
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'voting.db'}",
            "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"check_same_thread": False, "timeout": 30}},
            "STORAGE_ROOT": str(tmp_path / "storage"),
            "OTP_ECHO": True,
        },
        clock=clock,
        otp_sender=inbox,
        rng=random.Random(7),
    )
    with app.app_context():
        seed_demo_data()
        db.session.add(Election(id="e1", title="Club Chair", is_active=True))
        db.session.add(Candidate(id="c1", election_id="e1", name="Ada", party="Blue"))
        db.session.add(Candidate(id="c2", election_id="e1", name="Grace", party="Green"))
        db.session.add(Election(id="e2", title="Closed Poll", is_active=False))
        db.session.add(Candidate(id="c3", election_id="e2", name="Linus", party="Red"))
        db.session.commit()
        yield app
        db.session.remove()


@pytest.fixture
def services(app):
    return app.extensions["evoting"]


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def registered(services):
    """Voter v1 with face and palm references on file."""
    services.registrar.register_biometric("v1", "face", FACE_IMAGE)
    services.registrar.register_biometric("v1", "palm", PALM_IMAGE)
    return "v1"
