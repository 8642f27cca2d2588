import pytest
from fastapi.testclient import TestClient

from lingotaboo.db import get_db
from lingotaboo.main import app
from lingotaboo.routers.auth import User, get_current_user
from lingotaboo.routers.taboo import get_oracles

from conftest import FakeOracles


@pytest.fixture
def fake():
    return FakeOracles(found=[["FAST", "METAL"], ["RED"]], example="Quick red metal on wheels.")


@pytest.fixture
def client(db, fake):
    def _db():
        yield db

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_current_user] = lambda: User(username="alice")
    app.dependency_overrides[get_oracles] = lambda: fake
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_cards_and_categories(client, car_card):
    r = client.get("/taboo/cards", params={"count": 5})
    assert r.status_code == 200
    body = r.json()
    assert body["count"] == 1
    assert body["cards"][0]["answer_word"] == "CAR"

    r = client.get("/taboo/categories")
    assert r.json() == {"success": True, "categories": ["vehicles"]}


def test_cards_not_found_payload(client):
    r = client.get("/taboo/cards")
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "NOT_FOUND"


def test_full_game_over_http(client, car_card):
    r = client.post("/taboo/sessions/start", json={"cardId": car_card.id, "targetLanguage": "english"})
    assert r.status_code == 200
    session = r.json()["session"]
    assert session["status"] == "initialized"
    sid = session["id"]

    r = client.post(f"/taboo/sessions/{sid}/submit", json={"description": "It is fast and metal"})
    assert r.status_code == 200
    assert r.json()["score"] == 67
    assert r.json()["status"] == "in_progress"

    r = client.post(f"/taboo/sessions/{sid}/submit", json={"description": "It is red", "includeExample": True})
    body = r.json()
    assert body["is_game_complete"] is True
    assert body["words_found"] == ["FAST", "RED", "METAL"]
    assert body["example"] == "Quick red metal on wheels."

    r = client.post(f"/taboo/sessions/{sid}/submit", json={"description": "One more try"})
    assert r.status_code == 409
    assert r.json()["error"] == {
        "code": "ALREADY_COMPLETED",
        "message": "This game session has already been completed",
        "retryable": False,
    }

    detail = client.get(f"/taboo/sessions/{sid}").json()
    assert detail["status"] == "completed"
    assert detail["card"]["category"] == "vehicles"

    history = client.get("/taboo/sessions").json()["sessions"]
    assert [h["id"] for h in history] == [sid]

    stats = client.get("/taboo/stats").json()["stats"]
    assert stats["total_games"] == 1
    assert stats["average_score"] == 100


def test_finish_without_body(client, car_card):
    sid = client.post("/taboo/sessions/start", json={"cardId": car_card.id, "targetLanguage": "en"}).json()["session"]["id"]

    r = client.post(f"/taboo/sessions/{sid}/finish")
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "VALIDATION_ERROR"

    client.post(f"/taboo/sessions/{sid}/submit", json={"description": "It is fast and metal"})
    r = client.post(f"/taboo/sessions/{sid}/finish")
    assert r.status_code == 200
    assert r.json()["score"] == 67
    assert r.json()["words_missed"] == ["RED"]


def test_error_codes(client, car_card, fake):
    r = client.post("/taboo/sessions/start", json={"cardId": "nope", "targetLanguage": "spanish"})
    assert r.status_code == 404

    r = client.post("/taboo/sessions/start", json={"cardId": car_card.id, "targetLanguage": "klingon"})
    assert r.status_code == 400

    fake.translate_error = RuntimeError("boom")
    r = client.post("/taboo/sessions/start", json={"cardId": car_card.id, "targetLanguage": "spanish"})
    assert r.status_code == 502
    assert r.json()["error"]["code"] == "TRANSLATION_FAILED"
    assert r.json()["error"]["retryable"] is True

    sid = client.post("/taboo/sessions/start", json={"cardId": car_card.id, "targetLanguage": "en"}).json()["session"]["id"]
    r = client.post(f"/taboo/sessions/{sid}/submit", json={"description": "abc"})
    assert r.status_code == 400

    fake.evaluate_error = RuntimeError("boom")
    r = client.post(f"/taboo/sessions/{sid}/submit", json={"description": "It is fast"})
    assert r.status_code == 502
    assert r.json()["error"]["code"] == "EVALUATION_FAILED"

    assert client.get("/taboo/sessions/unknown").status_code == 404


def test_requires_auth(db):
    def _db():
        yield db

    app.dependency_overrides[get_db] = _db
    try:
        r = TestClient(app).post("/taboo/sessions/start", json={"cardId": "x", "targetLanguage": "en"})
    finally:
        app.dependency_overrides.clear()
    assert r.status_code == 401


def test_register_login_and_me(db):
    def _db():
        yield db

    app.dependency_overrides[get_db] = _db
    try:
        client = TestClient(app)
        assert client.post("/auth/register", json={"username": "alice", "password": "pw12345"}).status_code == 201
        assert client.post("/auth/register", json={"username": "alice", "password": "pw12345"}).status_code == 409
        assert client.post("/auth/register", json={"username": "guest", "password": "pw"}).status_code == 400

        r = client.post("/auth/token", data={"username": "alice", "password": "wrong"})
        assert r.status_code == 401
        token = client.post("/auth/token", data={"username": "alice", "password": "pw12345"}).json()["access_token"]

        r = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert r.json() == {"username": "alice"}
    finally:
        app.dependency_overrides.clear()
