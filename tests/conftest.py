"""Pytest fixtures: file-backed SQLite database, recording broadcaster, API helpers."""
import uuid
import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from jamqueue.database import Base, get_db
from jamqueue.main import app
from jamqueue.services.broadcaster import JamBroadcaster, get_broadcaster

# Import all models so they register with Base.metadata
from jamqueue.models.jam import Jam                        # noqa: F401
from jamqueue.models.song import Song                      # noqa: F401
from jamqueue.models.instrument_slot import InstrumentSlot  # noqa: F401
from jamqueue.models.candidate import Candidate            # noqa: F401
from jamqueue.models.rating import Rating                  # noqa: F401
from jamqueue.models.guest import Guest                    # noqa: F401
from jamqueue.models.suggestion import Suggestion, SuggestionParticipant  # noqa: F401

SQLITE_URL = "sqlite:///./test.db"


class RecordingBroadcaster(JamBroadcaster):
    """Real broadcaster that also remembers every publish, in order."""

    def __init__(self, heartbeat_interval: float = 30.0):
        super().__init__(heartbeat_interval=heartbeat_interval)
        self.published: list[tuple[str, str, str, dict]] = []

    def publish(self, event_id, jam_id, event_type, payload):
        self.published.append((str(event_id), str(jam_id), event_type, payload))
        return super().publish(event_id, jam_id, event_type, payload)

    def types(self) -> list[str]:
        return [p[2] for p in self.published]

    def of_type(self, event_type: str) -> list[dict]:
        return [p[3] for p in self.published if p[2] == event_type]

    def clear(self) -> None:
        self.published.clear()


@pytest.fixture(scope="function")
def db_engine():
    """Create a fresh SQLite engine for each test."""
    engine = create_engine(SQLITE_URL, connect_args={"check_same_thread": False})

    # Enable WAL mode for better concurrency
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db(session_factory):
    """Yield a database session for service-level tests."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def broadcaster():
    recorder = RecordingBroadcaster()
    yield recorder
    recorder.shutdown()


@pytest.fixture(scope="function")
def client(session_factory, broadcaster):
    """FastAPI TestClient with database and broadcaster dependencies overridden."""

    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_broadcaster] = lambda: broadcaster
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def event_id() -> str:
    return f"evt-{uuid.uuid4().hex[:12]}"


# ---------------------------------------------------------------------------
# Helpers: build fixtures through the API, return the response JSON
# ---------------------------------------------------------------------------
def create_test_guest(client: TestClient, event_id: str, name: str = "Guest",
                      user_id: str = None, checked_in: bool = True) -> dict:
    """Helper: POST a guest (and check them in unless told otherwise)."""
    resp = client.post(f"/api/events/{event_id}/guests", json={
        "display_name": name,
        "user_id": user_id or str(uuid.uuid4()),
    })
    assert resp.status_code == 201, resp.text
    guest = resp.json()
    if checked_in:
        resp = client.post(f"/api/events/{event_id}/guests/{guest['guest_id']}/check-in")
        assert resp.status_code == 200, resp.text
        guest = resp.json()
    return guest


def create_test_jam(client: TestClient, event_id: str, name: str = "Main Stage", slug: str = None) -> dict:
    """Helper: POST a jam for the event."""
    resp = client.post(f"/api/events/{event_id}/jams", json={
        "name": name,
        "slug": slug or f"{name.lower().replace(' ', '-')}-{uuid.uuid4().hex[:8]}",
    })
    assert resp.status_code == 201, resp.text
    return resp.json()


def create_test_song(client: TestClient, event_id: str, jam_id: str, title: str = "Song",
                     instrument_slots: list = None, **fields) -> dict:
    """Helper: POST a planned song, by default with one guitar slot."""
    if instrument_slots is None:
        instrument_slots = [{"instrument": "guitar", "slots": 1}]
    resp = client.post(f"/api/events/{event_id}/jams/{jam_id}/songs", json={
        "title": title,
        "instrument_slots": instrument_slots,
        **fields,
    })
    assert resp.status_code == 201, resp.text
    return resp.json()


def release(client: TestClient, event_id: str, jam_id: str, song_ids: list, action: str = "open"):
    return client.post(f"/api/events/{event_id}/jams/{jam_id}/songs/release", json={
        "song_ids": song_ids,
        "action": action,
    })


def open_song(client: TestClient, event_id: str, jam_id: str, song_id: str) -> None:
    resp = release(client, event_id, jam_id, [song_id])
    assert resp.status_code == 200, resp.text


def apply_for(client: TestClient, event_id: str, jam_id: str, song_id: str, guest: dict,
              instrument: str = "guitar"):
    return client.post(f"/api/events/{event_id}/jams/{jam_id}/songs/{song_id}/candidates", json={
        "instrument": instrument,
        "user_id": guest["user_id"],
    })


def candidate_action(client: TestClient, event_id: str, jam_id: str, song_id: str,
                     candidate_id: str, action: str = "approve"):
    return client.post(
        f"/api/events/{event_id}/jams/{jam_id}/songs/{song_id}/candidates/{candidate_id}/{action}",
        params={"actor_user_id": "staff-1"},
    )


def move(client: TestClient, event_id: str, jam_id: str, song_id: str, status: str):
    return client.post(f"/api/events/{event_id}/jams/{jam_id}/songs/{song_id}/status", json={"status": status})


def set_ready(client: TestClient, event_id: str, jam_id: str, song_id: str, ready: bool = True):
    return client.post(f"/api/events/{event_id}/jams/{jam_id}/songs/{song_id}/ready", json={"ready": ready})
