# Filename: evoting/app.py
# Flask backend for the verification-gated voting workflow.

import logging
import os
import time
from datetime import timedelta
from types import SimpleNamespace

from flask import Blueprint, Flask, current_app, jsonify, request, send_from_directory
from flask_cors import CORS
from flask_socketio import SocketIO

from .caster import VoteCaster
from .capture import FrameCapture
from .catalog import ElectionCatalog
from .config import Config
from .errors import BadRequest, Unauthenticated, VotingError
from .ledger import Ledger
from .matcher import make_matcher
from .models import BIOMETRIC_MODALITIES, Candidate, Election, db, utcnow
from .otp import OtpIssuer
from .realtime import TallyBroadcaster, register_socket_handlers
from .registration import AVATAR_BUCKET, Registrar
from .sessions import SessionRegistry
from .storage import BlobStore
from .store import VoteStore
from .verification import VerificationGate
from .workflow import WorkflowController

logger = logging.getLogger(__name__)

api = Blueprint("api", __name__)

DEMO_ELECTIONS = [
    {
        "id": "1",
        "title": "Student Body President Election",
        "description": "Vote for your student body president for the 2025-2026 academic year",
        "days": 7,
        "candidates": [
            ("1", "Alice Johnson", "Progress Party"),
            ("2", "Bob Smith", "Future Alliance"),
            ("3", "Carol Williams", "Student Voice"),
        ],
    },
    {
        "id": "2",
        "title": "Department Representative Election",
        "description": "Select your department representative for the academic council",
        "days": 5,
        "candidates": [
            ("1", "David Chen", "Tech Innovators"),
            ("2", "Emma Davis", "Academic Excellence"),
        ],
    },
]


# 1. App Configuration
def create_app(overrides=None, clock=None, otp_sender=None, matcher=None, rng=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)
    CORS(app)
    db.init_app(app)

    clock = clock or time.time
    cfg = app.config
    socketio = SocketIO(app, cors_allowed_origins="*", async_mode=cfg["SOCKETIO_ASYNC_MODE"],
                        message_queue=cfg["SOCKETIO_MESSAGE_QUEUE"])

    store = VoteStore()
    blobs = BlobStore(cfg["STORAGE_ROOT"], cfg["STORAGE_PUBLIC_URL"])
    otp = OtpIssuer(cfg["OTP_LENGTH"], cfg["OTP_TTL_SECONDS"], sender=otp_sender, clock=clock)
    gate = VerificationGate(
        store,
        matcher or make_matcher(cfg["MATCHER"]),
        otp,
        clock=clock,
        rng=rng,
        thresholds={"face": cfg["FACE_THRESHOLD"], "palm": cfg["PALM_THRESHOLD"]},
        max_consecutive_failures=cfg["MAX_CONSECUTIVE_FAILURES"],
        max_escalations=cfg["MAX_ESCALATIONS"],
        lockout_seconds=cfg["LOCKOUT_SECONDS"],
        min_gestures=cfg["LIVENESS_MIN_GESTURES"],
        max_gestures=cfg["LIVENESS_MAX_GESTURES"],
    )
    catalog = ElectionCatalog(store, clock=clock)
    store.realtime = TallyBroadcaster(socketio, catalog)
    # Built once per process and handed to every session
    app.extensions["evoting"] = SimpleNamespace(
        store=store,
        blobs=blobs,
        gate=gate,
        capture=FrameCapture(),
        catalog=catalog,
        caster=VoteCaster(store, Ledger(), blobs),
        registrar=Registrar(store, blobs),
        broadcaster=store.realtime,
        sessions=SessionRegistry(cfg["SESSION_IDLE_SECONDS"], clock=clock),
    )

    app.register_blueprint(api)
    app.register_error_handler(VotingError, handle_voting_error)
    register_socket_handlers(socketio)
    register_commands(app)

    with app.app_context():
        db.create_all()
    return app


def services():
    return current_app.extensions["evoting"]


def handle_voting_error(error):
    return jsonify(error.to_dict()), error.status


def current_voter_id():
    # Session/Auth lives in front of this service and forwards the voter id
    voter_id = request.headers.get("X-Voter-Id", "").strip()
    if not voter_id:
        raise Unauthenticated()
    return voter_id


def _json():
    return request.get_json(silent=True) or {}


def _required(data, *fields):
    missing = [f for f in fields if not data.get(f)]
    if missing:
        raise BadRequest(f"Missing required field(s): {', '.join(missing)}")
    return data


# 2. Demo data
def seed_demo_data():
    """Insert the demo elections if they are not there yet. Returns how many were added."""
    added = 0
    for entry in DEMO_ELECTIONS:
        if db.session.get(Election, entry["id"]) is not None:
            continue
        now = utcnow()
        election = Election(id=entry["id"], title=entry["title"], description=entry["description"],
                            start_date=now, end_date=now + timedelta(days=entry["days"]),
                            is_active=True)
        db.session.add(election)
        for candidate_id, name, party in entry["candidates"]:
            db.session.add(Candidate(id=candidate_id, election_id=entry["id"], name=name, party=party))
        added += 1
    db.session.commit()
    return added


def register_commands(app):
    @app.cli.command("init-db")
    def init_db_command():
        """Create the database tables."""
        db.create_all()
        print("Database tables created.")

    @app.cli.command("seed-demo")
    def seed_demo_command():
        """Insert the demo elections and candidates."""
        db.create_all()
        print(f"Seeded {seed_demo_data()} election(s).")


# 3. API Routes
@api.route("/")
def index():
    return "E-Voting verification backend is running!"


@api.route("/storage/avatars/<path:path>")
def avatar_file(path):
    # Only avatars are public; biometric references and voting history never are
    return send_from_directory(os.path.join(services().blobs.root, AVATAR_BUCKET), path)


# --- Profiles & registration ---

@api.route("/api/profiles", methods=["POST"])
def save_profile():
    voter_id = current_voter_id()
    data = _json()
    _required(data, "fullName")
    services().registrar.save_profile(voter_id, data["fullName"], data.get("email"))
    return jsonify(services().registrar.profile_summary(voter_id)), 200


@api.route("/api/profiles/<voter_id>", methods=["GET"])
def get_profile(voter_id):
    return jsonify(services().registrar.profile_summary(voter_id)), 200


@api.route("/api/profiles/<voter_id>/avatar", methods=["POST"])
def upload_avatar(voter_id):
    if current_voter_id() != voter_id:
        return jsonify({"error": "You can only change your own photo.", "code": "forbidden"}), 403
    data = _json()
    _required(data, "imageData")
    profile = services().registrar.upload_avatar(voter_id, data["imageData"])
    return jsonify({"avatarUrl": profile.avatar_url}), 200


@api.route("/api/biometrics/<modality>", methods=["POST"])
def register_biometric(modality):
    voter_id = current_voter_id()
    if modality not in BIOMETRIC_MODALITIES:
        return jsonify({"error": f"Unknown modality: {modality}", "code": "bad_request"}), 400
    data = _json()
    _required(data, "imageData")
    ref = services().registrar.register_biometric(voter_id, modality, data["imageData"])
    return jsonify({
        "message": f"{modality.capitalize()} reference registered successfully!",
        "modality": modality,
        "imagePath": ref.image_path,
    }), 201


# --- Elections & results ---

@api.route("/api/elections", methods=["GET"])
def list_elections():
    svc = services()
    items = []
    for election in svc.catalog.list_active_elections():
        snapshot = svc.catalog.tallies(election.id)
        items.append(election.to_dict(snapshot.counts))
    return jsonify({"items": items}), 200


@api.route("/api/elections/<election_id>/results", methods=["GET"])
def election_results(election_id):
    return jsonify(services().catalog.results(election_id).to_dict()), 200


@api.route("/api/votes/history", methods=["GET"])
def vote_history():
    voter_id = current_voter_id()
    receipts = services().caster.history(voter_id)
    return jsonify({"items": [r.to_dict() for r in receipts]}), 200


# --- Voting sessions ---

def _session(session_id):
    """The caller's open session, or None (unknown, expired, or another voter's)."""
    voter_id = current_voter_id()
    controller = services().sessions.get(session_id)
    if controller is None or controller.voter_id != voter_id:
        return None
    return controller


def _session_not_found():
    return jsonify({"error": "Voting session not found.", "code": "session_not_found"}), 404


def _session_call(session_id, action):
    controller = _session(session_id)
    if controller is None:
        return _session_not_found()
    try:
        result = action(controller)
    except VotingError as e:
        body = e.to_dict()
        body["session"] = controller.snapshot()
        status = e.status
    else:
        body = controller.snapshot()
        if result is not None:
            body["result"] = result
        status = 200
    if controller.finished:
        # Confirmed or locked out: nothing more can happen in this session
        services().sessions.close(session_id)
    return jsonify(body), status


@api.route("/api/sessions", methods=["POST"])
def open_session():
    voter_id = current_voter_id()
    svc = services()
    controller = WorkflowController(voter_id, svc.gate, svc.catalog, svc.caster, svc.capture,
                                    otp_echo=current_app.config["OTP_ECHO"])
    svc.sessions.add(controller)
    logger.info("Opened voting session %s for voter %s", controller.session_id, voter_id)
    return jsonify(controller.snapshot()), 201


@api.route("/api/sessions/<session_id>", methods=["GET"])
def get_session(session_id):
    return _session_call(session_id, lambda c: None)


@api.route("/api/sessions/<session_id>", methods=["DELETE"])
def cancel_session(session_id):
    if _session(session_id) is None:
        return _session_not_found()
    services().sessions.close(session_id)
    return jsonify({"message": "Voting session closed."}), 200


@api.route("/api/sessions/<session_id>/start", methods=["POST"])
def start_session(session_id):
    return _session_call(session_id, lambda c: c.start())


@api.route("/api/sessions/<session_id>/gesture", methods=["POST"])
def confirm_gesture(session_id):
    gesture = _required(_json(), "gesture")["gesture"]
    return _session_call(session_id, lambda c: c.confirm_gesture(gesture).to_dict())


@api.route("/api/sessions/<session_id>/frame", methods=["POST"])
def submit_frame(session_id):
    frame = _json().get("imageData")

    def action(controller):
        verdict = controller.submit_frame(frame)
        return {"modality": verdict.modality, "confidence": verdict.confidence}

    return _session_call(session_id, action)


@api.route("/api/sessions/<session_id>/otp", methods=["POST"])
def submit_otp(session_id):
    code = _required(_json(), "otp")["otp"]

    def action(controller):
        verdict = controller.submit_otp(code)
        return {"modality": verdict.modality, "confidence": verdict.confidence}

    return _session_call(session_id, action)


@api.route("/api/sessions/<session_id>/otp/resend", methods=["POST"])
def resend_otp(session_id):
    return _session_call(session_id, lambda c: c.resend_otp())


@api.route("/api/sessions/<session_id>/retry", methods=["POST"])
def retry_stage(session_id):
    return _session_call(session_id, lambda c: c.retry())


@api.route("/api/sessions/<session_id>/elections", methods=["GET"])
def session_elections(session_id):
    def action(controller):
        elections = controller.elections()
        return [e.to_dict(controller.catalog.tallies(e.id).counts) for e in elections]

    return _session_call(session_id, action)


@api.route("/api/sessions/<session_id>/election", methods=["POST"])
def select_election(session_id):
    election_id = _required(_json(), "electionId")["electionId"]
    return _session_call(session_id, lambda c: c.select_election(str(election_id)).to_dict())


@api.route("/api/sessions/<session_id>/candidate", methods=["POST"])
def select_candidate(session_id):
    candidate_id = _required(_json(), "candidateId")["candidateId"]
    return _session_call(session_id, lambda c: c.select_candidate(str(candidate_id)))


@api.route("/api/sessions/<session_id>/cast", methods=["POST"])
def cast_vote(session_id):
    def action(controller):
        outcome = controller.cast()
        return {"alreadyVoted": outcome.already_voted}

    return _session_call(session_id, action)
