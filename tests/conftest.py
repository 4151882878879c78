import os
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest
import sqlalchemy as sa
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("MEDSCRIBE_ORG_DOMAIN", "medscribe.health")
os.environ.setdefault("MEDSCRIBE_SUPER_ADMIN_MARKER", "superadmin")
os.environ.pop("USE_OFFLINE_MODEL", None)

from medscribe.config import get_settings  # noqa: E402

get_settings.cache_clear()

from medscribe import main  # noqa: E402
from medscribe.auth import create_access_token  # noqa: E402
from medscribe.openai_client import AzureChatClient  # noqa: E402
from medscribe.speech import SpeechTokenService  # noqa: E402
from medscribe.table_store import TableStore, init_schema  # noqa: E402
from medscribe.users import USERS_TABLE, UserRepository  # noqa: E402

PASSWORD = "secret123"

# username -> role for the accounts seeded into every API test database.
SEED_USERS = {
    "chief": "super_admin",
    "manager": "admin",
    "drsmith": "doctor",
    "provider": "medical_provider",
    "nurse": "nurse",
    "frontdesk": "support_staff",
}


class FakeCompletions:
    """Stands in for ``client.chat.completions`` of the openai SDK."""

    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.content = "CHIEF COMPLAINT:\n**Cough**\n\nASSESSMENT AND PLAN:\n- Rest"
        self.error: Exception | None = None

    def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeOpenAI:
    def __init__(self) -> None:
        self.completions = FakeCompletions()
        self.chat = SimpleNamespace(completions=self.completions)


class FakeSpeechResponse:
    def __init__(self, text: str = "speech-token") -> None:
        self.text = text
        self.status_code = 200


@pytest.fixture
def engine():
    engine = sa.create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_schema(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def fake_openai():
    return FakeOpenAI()


@pytest.fixture
def chat_client(fake_openai):
    return AzureChatClient(
        endpoint="https://medscribe-test.openai.azure.com",
        api_key="test-key",
        deployment="gpt-4",
        client=fake_openai,
    )


@pytest.fixture
def speech_calls(monkeypatch):
    """Record outbound speech token requests instead of sending them."""

    calls: List[Dict[str, Any]] = []

    def fake_post(url, **kwargs):
        calls.append({"url": url, **kwargs})
        return FakeSpeechResponse(f"token-{len(calls)}")

    monkeypatch.setattr("medscribe.speech.secure_post", fake_post)
    return calls


@pytest.fixture
def users(engine) -> Dict[str, Dict[str, Any]]:
    repo = UserRepository(TableStore(engine, USERS_TABLE))
    seeded = {}
    for username, role in SEED_USERS.items():
        seeded[role] = repo.create_user(
            {
                "username": username,
                "password": PASSWORD,
                "name": username.title(),
                "email": f"{username}@clinic.example",
                "role": role,
            },
            created_by="tests",
        )
    return seeded


@pytest.fixture
def tokens(users) -> Dict[str, str]:
    return {role: create_access_token(user) for role, user in users.items()}


@pytest.fixture
def api_client(engine, users, chat_client, speech_calls):
    main.configure(
        db_engine=engine,
        chat_client=chat_client,
        speech_service=SpeechTokenService("speech-key", "eastus"),
    )
    try:
        with TestClient(main.app) as client:
            yield client
    finally:
        main.reset()


def auth_header(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers(tokens):
    """Authorization headers keyed by role."""

    return {role: auth_header(token) for role, token in tokens.items()}


@pytest.fixture
def patient(api_client, headers):
    resp = api_client.post(
        "/patients",
        json={
            "firstName": "Ada",
            "lastName": "Lovelace",
            "dateOfBirth": "1980-12-10",
            "phone": "(555) 123-4567",
            "email": "ada@example.com",
            "medicalHistory": "Hypertension",
            "medications": "Lisinopril 10mg",
        },
        headers=headers["doctor"],
    )
    assert resp.status_code == 200, resp.text
    return resp.json()
