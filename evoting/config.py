# Filename: evoting/config.py
# Settings are read from the environment (or a .env file) once at import.

import os
from dotenv import load_dotenv

load_dotenv()


def _float(name, default):
    return float(os.getenv(name) or default)


def _int(name, default):
    return int(os.getenv(name) or default)


class Config:
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///voting.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Object storage (avatars, biometric references, voting history)
    STORAGE_ROOT = os.getenv("STORAGE_ROOT", "storage")
    STORAGE_PUBLIC_URL = os.getenv("STORAGE_PUBLIC_URL", "/storage")

    # Verification thresholds
    FACE_THRESHOLD = _float("FACE_THRESHOLD", "0.80")
    PALM_THRESHOLD = _float("PALM_THRESHOLD", "0.90")
    MATCHER = os.getenv("MATCHER", "histogram")  # or "simulated"

    # Liveness challenge size
    LIVENESS_MIN_GESTURES = 3
    LIVENESS_MAX_GESTURES = 4

    # OTP settings
    OTP_LENGTH = 6
    OTP_TTL_SECONDS = _int("OTP_TTL_SECONDS", "60")
    OTP_ECHO = os.getenv("OTP_ECHO", "1") == "1"  # show the code in notifications (demo)

    # Failure-escalation / lockout policy
    MAX_CONSECUTIVE_FAILURES = _int("MAX_CONSECUTIVE_FAILURES", "3")
    MAX_ESCALATIONS = _int("MAX_ESCALATIONS", "3")
    LOCKOUT_SECONDS = _int("LOCKOUT_SECONDS", "900")  # 15 minutes

    # Voting sessions idle for longer than this are closed and their camera released
    SESSION_IDLE_SECONDS = _int("SESSION_IDLE_SECONDS", "600")

    # Realtime tallies (Flask-SocketIO). Point the message queue at Redis to
    # fan out emits from several server processes.
    SOCKETIO_ASYNC_MODE = os.getenv("SOCKETIO_ASYNC_MODE", "threading")
    SOCKETIO_MESSAGE_QUEUE = os.getenv("SOCKETIO_MESSAGE_QUEUE") or None
