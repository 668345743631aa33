import time
from typing import Dict

import pytest
from fastapi.testclient import TestClient

from sps.cache.backend import MemoryBackend
from sps.utils.config import Settings
from sps_web.main import create_app

ADMIN_EMAIL = "admin@spsgroup.com.br"
ADMIN_PASSWORD = "1234"
STRONG_PASSWORD = "Str0ng!Pass"


class FakeClock:
    """Starts at the real time so JWT exp checks still pass; advances only on demand."""

    def __init__(self, start: float = None):
        self.now = time.time() if start is None else start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_settings(**overrides) -> Settings:
    data = {
        "security": {"bcrypt_rounds": 10},
        "rate_limit": {"enabled": True, "window_ms": 60000, "max": 1000},
        "logging": {"level": "WARNING"},
    }
    data.update(overrides)
    return Settings(**data)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend(clock) -> MemoryBackend:
    return MemoryBackend(clock=clock)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def app(settings, backend, clock):
    return create_app(settings, backend=backend, clock=clock)


@pytest.fixture
def container(app):
    return app.state.container


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def login(client: TestClient, email: str = ADMIN_EMAIL, password: str = ADMIN_PASSWORD, **kwargs) -> Dict:
    res = client.post("/api/auth/login", json={"email": email, "password": password}, **kwargs)
    assert res.status_code == 200, res.text
    return res.json()["data"]


def bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(client) -> Dict[str, str]:
    return bearer(login(client)["accessToken"])


@pytest.fixture
def v2_headers(auth_headers) -> Dict[str, str]:
    return {**auth_headers, "X-API-Version": "v2"}
