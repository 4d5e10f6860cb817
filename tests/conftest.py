import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
TEST_DATA = ROOT / ".pytest-data"

os.environ.setdefault("DATABASE_URL", f"sqlite:///{TEST_DATA / 'test_conference.db'}")
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("LOG_LEVEL", "warning")
os.environ.setdefault("UI_ORIGIN", "https://ui.conference.test")
os.environ.setdefault("RSVP_URL", "https://ui.conference.test/rsvp")
os.environ.setdefault("ORGANIZER_EMAIL", "organizer@conference.test")
os.environ.setdefault("UPLOAD_DIR", str(TEST_DATA / "uploads"))
os.environ["INTERNAL_SECRET"] = ""
os.environ["SEND_EMAIL"] = "false"
TEST_DATA.mkdir(exist_ok=True)

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fastapi.testclient import TestClient  # noqa: E402

from confreg.main import app  # noqa: E402
from confreg.services import email as email_service  # noqa: E402
from confreg.services.security import EmailAttemptLimiter, InMemoryRateLimiter, InMemorySessionStore  # noqa: E402
from scripts.seed_data import seed  # noqa: E402

UI_ORIGIN = os.environ["UI_ORIGIN"]
ORGANIZER_EMAIL = os.environ["ORGANIZER_EMAIL"]


@pytest.fixture
def organizer_pin():
    app.state.sessions = InMemorySessionStore(3600)
    app.state.email_limiter = EmailAttemptLimiter()
    app.state.rate_limiter = InMemoryRateLimiter()
    email_service.clear_template_cache()
    return seed()


def new_client() -> TestClient:
    return TestClient(app, base_url="https://testserver", headers={"Origin": UI_ORIGIN})


@pytest.fixture
def client(organizer_pin):
    return new_client()


def register(client: TestClient, email: str, **extra) -> dict:
    body = {
        "email": email,
        "lastName": "Lovelace",
        "firstName": "Ada",
        "proxyEmail": "proxy@example.com",
        "question1": "Yes",
        "question2": "No",
        **extra,
    }
    resp = client.post("/api/registrations", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


def login(client: TestClient, email: str, pin: str) -> str:
    resp = client.get("/api/registrations/login", params={"email": email, "pin": pin})
    assert resp.status_code == 200, resp.text
    return resp.json()["csrf"]


@pytest.fixture
def organizer_csrf(client, organizer_pin):
    return login(client, ORGANIZER_EMAIL, organizer_pin)
