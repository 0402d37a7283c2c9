import os
import sys
from datetime import datetime, timedelta
from types import SimpleNamespace

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef")

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest  # noqa: E402

from authcore import models  # noqa: E402,F401
from authcore.config import Settings  # noqa: E402
from authcore.database import Base, build_engine, build_session_factory  # noqa: E402
from authcore.security import get_password_hash  # noqa: E402
from authcore.services.container import build_services  # noqa: E402
from authcore.services.events import EventDispatcher  # noqa: E402

TEST_SECRET_KEY = "0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"
PASSWORD = "Secret1!"


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2026, 3, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def send(self, token_type, recipient_email, token, display_name):
        self.sent.append(SimpleNamespace(
            token_type=token_type,
            recipient_email=recipient_email,
            token=token,
            display_name=display_name,
        ))
        return True

    def last_token(self, token_type: str) -> str:
        return [message for message in self.sent if message.token_type == token_type][-1].token


def make_settings(**overrides) -> Settings:
    values = {"secret_key": TEST_SECRET_KEY, "bcrypt_rounds": 4}
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def session_factory(tmp_path):
    # File-backed so that worker threads share one database.
    engine = build_engine(f"sqlite:///{tmp_path / 'authcore.db'}")
    Base.metadata.create_all(bind=engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def security_events():
    return []


@pytest.fixture
def services(settings, session_factory, clock, notifier, security_events):
    dispatcher = EventDispatcher([security_events.append])
    return build_services(settings, session_factory, notifier=notifier, dispatcher=dispatcher, clock=clock)


@pytest.fixture
def make_user(services):
    def _make_user(
        username: str = "u1",
        email: str = "u1@x.com",
        password: str | None = PASSWORD,
        verified: bool = True,
        role: str = "user",
    ):
        return services.credentials.create_user(
            username=username,
            email=email,
            password_hash=get_password_hash(password, rounds=4) if password else None,
            role=role,
            is_email_verified=verified,
        )

    return _make_user
