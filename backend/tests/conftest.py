from __future__ import annotations

import importlib
import sys
from pathlib import Path
from typing import Callable

import pytest
from fastapi.testclient import TestClient

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from anviksha_ai.models import ModelRequest  # noqa: E402
from anviksha_store.database import LocalStateDB  # noqa: E402

_CREDENTIAL_ENV = ("GEMINI_API_KEYS", "GEMINI_API_KEY", "API_KEY", "FDA_KEY")


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    for name in _CREDENTIAL_ENV:
        monkeypatch.delenv(name, raising=False)
    # Keep CI deterministic; dedicated provider tests can override this.
    monkeypatch.setenv("ANVIKSHA_DISABLE_EXTERNAL_WEB", "true")


@pytest.fixture
def db(tmp_path) -> LocalStateDB:
    return LocalStateDB(str(tmp_path / "anviksha-unit.sqlite"))


@pytest.fixture
def corrupt_state(db) -> Callable[[str, str], None]:
    """Store raw, possibly invalid JSON text under a key."""

    def write(key: str, raw_text: str) -> None:
        with db.connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO local_state (key, value_json, updated_at) VALUES (?, ?, ?)",
                (key, raw_text, "2026-03-14T09:30:00Z"),
            )

    return write


class ScriptedTransport:
    """Transport double: plays back one outcome per call and records the keys used."""

    def __init__(self, outcomes: list[object]) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[tuple[ModelRequest, str]] = []

    async def generate(self, request: ModelRequest, credential: str) -> str:
        self.calls.append((request, credential))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return str(outcome)

    @property
    def keys_used(self) -> list[str]:
        return [credential for _, credential in self.calls]


@pytest.fixture
def scripted_transport() -> Callable[[list[object]], ScriptedTransport]:
    return ScriptedTransport


@pytest.fixture
def backend_module(tmp_path, monkeypatch):
    db_path = tmp_path / "anviksha-test.sqlite"
    monkeypatch.setenv("ANVIKSHA_DB_PATH", str(db_path))

    if "main" in sys.modules:
        module = importlib.reload(sys.modules["main"])
    else:
        module = importlib.import_module("main")
    return module


@pytest.fixture
def client(backend_module):
    with TestClient(backend_module.app) as test_client:
        yield test_client
