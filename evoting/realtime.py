# Filename: evoting/realtime.py
# Live tallies over Flask-SocketIO. A client joins an election's room with a
# "watch_tallies" event; after every new vote the election is recounted and
# the snapshot is emitted to that room as "tallies".

import logging
import threading

from flask import current_app, request
from flask_socketio import emit, join_room, leave_room

from .errors import VotingError

logger = logging.getLogger(__name__)

TALLIES_EVENT = "tallies"


def election_room(election_id):
    return f"election:{election_id}"


class TallyBroadcaster:
    """One TallyWatch per election, shared by every client in its room."""

    def __init__(self, socketio, catalog):
        self.socketio = socketio
        self.catalog = catalog
        self._watches = {}  # election_id -> TallyWatch
        # Recount and emit under one lock so a room never sees totals go down
        self._lock = threading.Lock()

    def _recount(self, election_id):
        watch = self._watches.get(election_id)
        if watch is None:
            watch = self._watches[election_id] = self.catalog.watch_candidate_tallies(election_id)
            return watch.latest
        return watch.refresh()

    def join(self, sid, election_id):
        """Add a client to the election's room and send it the current tallies."""
        self.catalog.get_election(election_id)
        room = election_room(election_id)
        with self._lock:
            join_room(room, sid=sid)
            self._recount(election_id)
            snapshot = self._watches[election_id].latest
            self.socketio.emit(TALLIES_EVENT, snapshot.to_dict(), to=sid)
        logger.info("Client %s watching tallies for election %s", sid, election_id)
        return snapshot

    def leave(self, sid, election_id):
        leave_room(election_room(election_id), sid=sid)

    def vote_inserted(self, election_id):
        # The vote is already committed; a failed recount only delays the push
        try:
            with self._lock:
                snapshot = self._recount(election_id)
                if snapshot is not None:
                    self.socketio.emit(TALLIES_EVENT, snapshot.to_dict(), to=election_room(election_id))
        except VotingError as e:
            logger.error("Could not push tallies for election %s: %s", election_id, e)


def _election_id(data):
    return str((data or {}).get("electionId") or "")


def register_socket_handlers(socketio):
    @socketio.on("watch_tallies")
    def watch_tallies(data):
        broadcaster = current_app.extensions["evoting"].broadcaster
        try:
            broadcaster.join(request.sid, _election_id(data))
        except VotingError as e:
            emit("error", e.to_dict())

    @socketio.on("unwatch_tallies")
    def unwatch_tallies(data):
        current_app.extensions["evoting"].broadcaster.leave(request.sid, _election_id(data))
