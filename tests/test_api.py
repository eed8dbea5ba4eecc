import pytest

from conftest import FACE_IMAGE, OTHER_IMAGE, PALM_IMAGE

V1 = {"X-Voter-Id": "v1"}


@pytest.fixture
def session_id(client, registered):
    resp = client.post("/api/sessions", headers=V1)
    assert resp.status_code == 201
    return resp.get_json()["sessionId"]


def pass_liveness(client, session_id, body):
    for gesture in body["verification"]["pendingGestures"]:
        body = client.post(f"/api/sessions/{session_id}/gesture", json={"gesture": gesture},
                           headers=V1).get_json()
    return body


def test_index(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert b"running" in resp.data


def test_voter_header_is_required(client):
    resp = client.post("/api/sessions")
    assert resp.status_code == 401
    assert resp.get_json()["code"] == "unauthenticated"


def test_register_biometric(client, services):
    resp = client.post("/api/biometrics/face", json={"imageData": FACE_IMAGE}, headers=V1)
    assert resp.status_code == 201
    assert resp.get_json()["imagePath"] == "biometrics/v1/face.png"
    assert services.registrar.registered_modalities("v1") == ["face"]


def test_register_biometric_rejects_bad_input(client):
    assert client.post("/api/biometrics/iris", json={"imageData": FACE_IMAGE},
                       headers=V1).status_code == 400
    assert client.post("/api/biometrics/face", json={}, headers=V1).status_code == 400
    resp = client.post("/api/biometrics/face", json={"imageData": "data:image/png;base64,AAAA"},
                       headers=V1)
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "invalid_image"


def test_profile_and_avatar(client):
    resp = client.post("/api/profiles", json={"fullName": "Vera Voter", "email": "vera@example.org"},
                       headers=V1)
    assert resp.status_code == 200
    assert resp.get_json()["fullName"] == "Vera Voter"

    resp = client.post("/api/profiles/v1/avatar", json={"imageData": FACE_IMAGE}, headers=V1)
    assert resp.status_code == 200
    assert resp.get_json()["avatarUrl"].endswith("avatars/v1.png")

    forbidden = client.post("/api/profiles/v2/avatar", json={"imageData": FACE_IMAGE}, headers=V1)
    assert forbidden.status_code == 403

    profile = client.get("/api/profiles/v1").get_json()
    assert profile["email"] == "vera@example.org"
    assert profile["hasVoted"] is False


def test_list_elections_only_active(client):
    items = client.get("/api/elections").get_json()["items"]
    ids = [item["id"] for item in items]
    assert "e1" in ids and "1" in ids
    assert "e2" not in ids


def test_full_session_over_http(client, registered, inbox, session_id):
    base = f"/api/sessions/{session_id}"
    body = client.post(f"{base}/start", headers=V1).get_json()
    assert body["stage"] == "face_verification"

    body = pass_liveness(client, session_id, body)
    resp = client.post(f"{base}/frame", json={"imageData": FACE_IMAGE}, headers=V1)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["result"]["modality"] == "face"
    assert body["stage"] == "palm_verification"

    body = pass_liveness(client, session_id, body)
    body = client.post(f"{base}/frame", json={"imageData": PALM_IMAGE}, headers=V1).get_json()
    assert body["stage"] == "otp_verification"
    assert any("Your OTP is" in n["description"] for n in body["notifications"])
    assert body["otpExpiresIn"] == 60

    body = client.post(f"{base}/otp", json={"otp": inbox.codes["v1"]}, headers=V1).get_json()
    assert body["stage"] == "election_selection"

    elections = client.get(f"{base}/elections", headers=V1).get_json()["result"]
    assert "e1" in [e["id"] for e in elections]

    resp = client.post(f"{base}/election", json={"electionId": "e2"}, headers=V1)
    assert resp.status_code == 409
    assert resp.get_json()["code"] == "election_inactive"

    client.post(f"{base}/election", json={"electionId": "e1"}, headers=V1)
    client.post(f"{base}/candidate", json={"candidateId": "c2"}, headers=V1)
    body = client.post(f"{base}/cast", headers=V1).get_json()
    assert body["stage"] == "confirmed"
    assert body["result"]["alreadyVoted"] is False
    assert body["receipt"]["transactionHash"].startswith("0x")

    history = client.get("/api/votes/history", headers=V1).get_json()["items"]
    assert [h["electionId"] for h in history] == ["e1"]

    results = client.get("/api/elections/e1/results").get_json()
    assert results["totalVotes"] == 1


def test_rejected_frame_reports_attempts_left(client, session_id):
    base = f"/api/sessions/{session_id}"
    body = client.post(f"{base}/start", headers=V1).get_json()
    pass_liveness(client, session_id, body)
    resp = client.post(f"{base}/frame", json={"imageData": OTHER_IMAGE}, headers=V1)
    assert resp.status_code == 401
    body = resp.get_json()
    assert body["code"] == "rejected"
    assert body["session"]["stage"] == "face_verification"


def test_start_without_registration_redirects(client):
    sid = client.post("/api/sessions", headers={"X-Voter-Id": "nobody"}).get_json()["sessionId"]
    resp = client.post(f"/api/sessions/{sid}/start", headers={"X-Voter-Id": "nobody"})
    assert resp.status_code == 412
    body = resp.get_json()
    assert body["redirect"] == "registration"
    assert body["session"]["stage"] == "welcome"


def test_session_belongs_to_its_voter(client, session_id):
    resp = client.get(f"/api/sessions/{session_id}", headers={"X-Voter-Id": "v2"})
    assert resp.status_code == 404
    assert resp.get_json()["code"] == "session_not_found"


def test_cancel_session_releases_camera(client, services, session_id):
    client.post(f"/api/sessions/{session_id}/start", headers=V1)
    assert services.capture.active_count == 1
    assert client.delete(f"/api/sessions/{session_id}", headers=V1).status_code == 200
    assert services.capture.active_count == 0
    assert client.get(f"/api/sessions/{session_id}", headers=V1).status_code == 404


def test_results_for_unknown_election(client):
    resp = client.get("/api/elections/missing/results")
    assert resp.status_code == 404
    assert resp.get_json()["code"] == "election_not_found"


@pytest.fixture
def watcher(app, client):
    sio = app.extensions["socketio"].test_client(app, flask_test_client=client)
    yield sio
    sio.disconnect()


def test_watcher_gets_current_tallies_on_join(watcher, services):
    services.caster.cast_vote("v1", "e1", "c1")
    watcher.emit("watch_tallies", {"electionId": "e1"})
    received = watcher.get_received()
    assert [r["name"] for r in received] == ["tallies"]
    assert received[0]["args"][0]["counts"] == {"c1": 1, "c2": 0}


def test_new_votes_are_pushed_to_the_election_room(watcher, client, registered, inbox, session_id):
    watcher.emit("watch_tallies", {"electionId": "e1"})
    watcher.get_received()

    base = f"/api/sessions/{session_id}"
    body = client.post(f"{base}/start", headers=V1).get_json()
    body = pass_liveness(client, session_id, body)
    body = client.post(f"{base}/frame", json={"imageData": FACE_IMAGE}, headers=V1).get_json()
    pass_liveness(client, session_id, body)
    client.post(f"{base}/frame", json={"imageData": PALM_IMAGE}, headers=V1)
    client.post(f"{base}/otp", json={"otp": inbox.codes["v1"]}, headers=V1)
    client.post(f"{base}/election", json={"electionId": "e1"}, headers=V1)
    client.post(f"{base}/candidate", json={"candidateId": "c2"}, headers=V1)
    client.post(f"{base}/cast", headers=V1)

    received = watcher.get_received()
    assert [r["name"] for r in received] == ["tallies"]
    payload = received[0]["args"][0]
    assert payload["electionId"] == "e1"
    assert payload["counts"]["c2"] == 1
    assert payload["totalVotes"] == 1


def test_watchers_only_hear_their_election(watcher, services):
    watcher.emit("watch_tallies", {"electionId": "e1"})
    watcher.get_received()
    services.caster.cast_vote("v1", "1", "2")
    assert watcher.get_received() == []


def test_unwatch_stops_updates(watcher, services):
    watcher.emit("watch_tallies", {"electionId": "e1"})
    watcher.emit("unwatch_tallies", {"electionId": "e1"})
    watcher.get_received()
    services.caster.cast_vote("v1", "e1", "c1")
    assert watcher.get_received() == []


def test_watch_unknown_election_reports_error(watcher):
    watcher.emit("watch_tallies", {"electionId": "missing"})
    received = watcher.get_received()
    assert [r["name"] for r in received] == ["error"]
    assert received[0]["args"][0]["code"] == "election_not_found"


def test_only_avatars_are_served(client, registered):
    client.post("/api/profiles/v1/avatar", json={"imageData": FACE_IMAGE}, headers=V1)
    assert client.get("/storage/avatars/v1.png").status_code == 200
    assert client.get("/storage/biometrics/v1/face.png").status_code == 404
    assert client.get("/storage/biometrics/v1/palm.png").status_code == 404


def test_missing_gesture_is_a_bad_request(client, services, session_id):
    base = f"/api/sessions/{session_id}"
    client.post(f"{base}/start", headers=V1)
    resp = client.post(f"{base}/gesture", json={}, headers=V1)
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "bad_request"
    assert services.gate._attempts["v1"].failures["face"] == 0
    body = client.get(base, headers=V1).get_json()
    assert body["verification"]["status"] == "liveness"


def test_missing_otp_and_selection_fields(client, session_id):
    base = f"/api/sessions/{session_id}"
    assert client.post(f"{base}/otp", json={}, headers=V1).status_code == 400
    assert client.post(f"{base}/election", json={}, headers=V1).status_code == 400
    assert client.post(f"{base}/candidate", json={}, headers=V1).status_code == 400


def test_finished_session_is_closed(client, services, registered, inbox, session_id):
    base = f"/api/sessions/{session_id}"
    body = client.post(f"{base}/start", headers=V1).get_json()
    body = pass_liveness(client, session_id, body)
    body = client.post(f"{base}/frame", json={"imageData": FACE_IMAGE}, headers=V1).get_json()
    pass_liveness(client, session_id, body)
    client.post(f"{base}/frame", json={"imageData": PALM_IMAGE}, headers=V1)
    client.post(f"{base}/otp", json={"otp": inbox.codes["v1"]}, headers=V1)
    client.post(f"{base}/election", json={"electionId": "e1"}, headers=V1)
    client.post(f"{base}/candidate", json={"candidateId": "c1"}, headers=V1)
    assert client.post(f"{base}/cast", headers=V1).get_json()["stage"] == "confirmed"

    assert len(services.sessions) == 0
    assert services.gate.active_voters == 0
    assert client.get(base, headers=V1).status_code == 404


def test_idle_sessions_expire(client, services, clock, session_id):
    client.post(f"/api/sessions/{session_id}/start", headers=V1)
    assert services.capture.active_count == 1

    clock.advance(400)
    other = client.post("/api/sessions", headers=V1).get_json()["sessionId"]
    clock.advance(300)
    assert client.get(f"/api/sessions/{other}", headers=V1).status_code == 200

    assert len(services.sessions) == 1
    assert services.capture.active_count == 0
    assert services.gate.active_voters == 0
    assert client.get(f"/api/sessions/{session_id}", headers=V1).status_code == 404
