from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.core.security import get_password_hash
from app.db.models import ChatMessage, ChatSession, User, UserProfile
from app.db.session import SessionLocal, configure_database, create_tables
from app.services.llm import DeltaAccumulator, LLMRequestError, get_llm_client
from app.services.profile import ensure_user_profile
from app.services.realtime import get_event_hub


class FakeScenario(str, Enum):
    OK = "OK"
    STREAM_FAILS_AFTER_DELTA = "STREAM_FAILS_AFTER_DELTA"
    STREAM_FAILS_BEFORE_DELTA = "STREAM_FAILS_BEFORE_DELTA"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"


FAKE_ANALYSIS = {
    "meal_name": "Tavuklu Pilav",
    "total_calories": 500,
    "total_macros": {"p": 30, "c": 40, "f": 10},
    "items": [
        {"name": "Tavuk", "amount": 120, "unit": "g", "calories": 220, "macros": {"p": 26, "c": 0, "f": 6}},
        {"name": "Pilav", "amount": 150, "calories": 280, "macros": {"p": 4, "c": 40, "f": 4}},
    ],
    "confidence": 0.82,
    "health_score": 70,
    "coach_note": "Dengeli bir öğün.",
}


def _upstream_error(message: str) -> LLMRequestError:
    return LLMRequestError(provider="fake", model="fake-model", message=message, status_code=503)


class FakeLLMClient:
    def __init__(
        self,
        scenario: FakeScenario = FakeScenario.OK,
        reply: str = "Bugün protein hedefine yakınsın.",
        snapshots: Optional[list[str]] = None,
        summary: Optional[str] = "Kullanıcı akşamları fazla karbonhidrat tüketiyor.",
    ) -> None:
        self.scenario = scenario
        self.reply = reply
        self.snapshots = snapshots if snapshots is not None else ["Merhaba", "Merhaba! Bugün", "Merhaba! Bugün harika."]
        self.summary = summary
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def called(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def analyze_image(self, image_base64: str, mime_type: str, language: str, model: Optional[str] = None) -> dict:
        self.calls.append(("analyze_image", {"mime_type": mime_type, "language": language, "model": model}))
        if self.scenario == FakeScenario.UPSTREAM_ERROR:
            raise _upstream_error("simulated analysis failure")
        return dict(FAKE_ANALYSIS)

    def complete_chat(self, context: str, history: list[dict[str, str]], image: Optional[dict[str, str]] = None) -> str:
        self.calls.append(("complete_chat", {"context": context, "history": history, "image": image}))
        if self.scenario == FakeScenario.UPSTREAM_ERROR:
            raise _upstream_error("simulated chat failure")
        return self.reply

    def stream_chat(self, context, history, image, on_delta, on_event=None) -> str:
        self.calls.append(("stream_chat", {"context": context, "history": history, "image": image}))
        if self.scenario == FakeScenario.STREAM_FAILS_BEFORE_DELTA:
            raise _upstream_error("simulated stream failure")

        accumulator = DeltaAccumulator()
        snapshots = ["Hel"] if self.scenario == FakeScenario.STREAM_FAILS_AFTER_DELTA else self.snapshots
        for snapshot in snapshots:
            delta = accumulator.feed(snapshot)
            if delta:
                on_delta(delta, accumulator.text)
        if self.scenario == FakeScenario.STREAM_FAILS_AFTER_DELTA:
            raise _upstream_error("simulated stream interruption")
        return accumulator.text.strip()

    def summarize(self, conversation: str) -> Optional[str]:
        self.calls.append(("summarize", {"conversation": conversation}))
        return self.summary


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[tuple[int, str, dict[str, Any]]] = []

    def send_to_user(self, user_id: int, event_name: str, payload: dict[str, Any]) -> None:
        self.events.append((user_id, event_name, payload))

    def named(self, event_name: str) -> list[dict[str, Any]]:
        return [payload for _, name, payload in self.events if name == event_name]


@pytest.fixture(scope="session")
def test_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    db_path = tmp_path_factory.mktemp("db") / "fitcal_test.db"
    configure_database(str(db_path))
    create_tables()
    return db_path


@pytest.fixture(scope="session")
def app(test_db_path: Path):
    from app.main import app as fastapi_app

    return fastapi_app


@pytest.fixture
def client(app):
    app.dependency_overrides = {}
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides = {}


@pytest.fixture
def db_session(test_db_path: Path):
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def create_user(db_session: Session) -> Callable[..., User]:
    def _create_user(name: str = "Ayşe") -> User:
        email = f"user_{uuid4().hex[:10]}@test.com"
        user = User(email=email, name=name, password_hash=get_password_hash("StrongPass123"))
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _create_user


@pytest.fixture
def create_profile(db_session: Session, create_user) -> Callable[..., UserProfile]:
    def _create_profile(**overrides: Any) -> UserProfile:
        profile = ensure_user_profile(db_session, create_user())
        for key, value in overrides.items():
            setattr(profile, key, value)
        db_session.commit()
        db_session.refresh(profile)
        return profile

    return _create_profile


@pytest.fixture
def seed_messages(db_session: Session):
    def _seed(user_id: int, count: int) -> ChatSession:
        start = datetime.now(timezone.utc) - timedelta(hours=1)
        session = ChatSession(user_id=user_id, status="open", created_at=start, updated_at=start)
        db_session.add(session)
        db_session.flush()
        for index in range(count):
            db_session.add(
                ChatMessage(
                    session_id=session.id,
                    user_id=user_id,
                    role="user" if index % 2 == 0 else "assistant",
                    content=f"mesaj {index}",
                    created_at=start + timedelta(seconds=index),
                )
            )
        db_session.commit()
        db_session.refresh(session)
        return session

    return _seed


@pytest.fixture
def auth_token(client: TestClient) -> str:
    email = f"auth_{uuid4().hex[:10]}@test.com"
    password = "StrongPass123"
    signup = client.post("/auth/signup", json={"email": email, "password": password, "name": "Deniz"})
    assert signup.status_code == 201
    login = client.post("/auth/login", data={"username": email, "password": password})
    assert login.status_code == 200
    return login.json()["access_token"]


@pytest.fixture
def auth_headers(auth_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {auth_token}"}


@pytest.fixture
def fake_llm() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def override_llm(app):
    def _override(scenario: FakeScenario = FakeScenario.OK, **kwargs: Any) -> FakeLLMClient:
        fake = FakeLLMClient(scenario=scenario, **kwargs)
        app.dependency_overrides[get_llm_client] = lambda: fake
        return fake

    return _override


@pytest.fixture
def override_sink(app, client, recording_sink: RecordingSink) -> RecordingSink:
    app.dependency_overrides[get_event_hub] = lambda: recording_sink
    return recording_sink
