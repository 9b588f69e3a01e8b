from __future__ import annotations

import asyncio

import httpx
import pytest

from anviksha_ai.credentials import CredentialStore
from anviksha_ai.errors import (
    ConfigurationError,
    CredentialRejectedError,
    FailureKind,
    QuotaExhaustedError,
    SynthesisError,
)
from anviksha_ai.invoker import CredentialStatus, ResilientInvoker, classify_failure
from anviksha_ai.models import Capability, ModelRequest, TextPart, Turn
from anviksha_ai.transport import ProviderError

KEYS = ["key-alpha-00000001", "key-bravo-00000002", "key-charl-00000003"]


def _request() -> ModelRequest:
    return ModelRequest(
        capability=Capability.CHAT,
        model="gemini-2.5-flash",
        system_instruction="Be brief.",
        turns=(Turn(role="user", parts=(TextPart("hello"),)),),
    )


def _quota() -> ProviderError:
    return ProviderError("Resource has been exhausted", status_code=429, status="RESOURCE_EXHAUSTED")


def _store(db, keys: list[str]) -> CredentialStore:
    store = CredentialStore(db, env_fallback=False)
    store.save_credentials(keys)
    return store


def test_all_keys_quota_limited_tries_each_key_once(db, scripted_transport):
    transport = scripted_transport([_quota()])
    invoker = ResilientInvoker(_store(db, KEYS), transport)

    with pytest.raises(QuotaExhaustedError) as excinfo:
        asyncio.run(invoker.invoke(_request()))

    assert excinfo.value.attempts == 3
    assert transport.keys_used == KEYS


def test_non_quota_failure_is_not_retried(db, scripted_transport):
    transport = scripted_transport([ProviderError("Internal error", status_code=500, status="INTERNAL")])
    invoker = ResilientInvoker(_store(db, KEYS), transport)

    with pytest.raises(SynthesisError) as excinfo:
        asyncio.run(invoker.invoke(_request()))

    assert len(transport.calls) == 1
    assert excinfo.value.kind is FailureKind.TRANSIENT_NETWORK
    assert invoker.cursor == 0


def test_rejected_key_surfaces_as_credential_error(db, scripted_transport):
    transport = scripted_transport(
        [ProviderError("API key not valid.", status_code=400, status="INVALID_ARGUMENT", reason="API_KEY_INVALID")]
    )
    invoker = ResilientInvoker(_store(db, KEYS), transport)

    with pytest.raises(CredentialRejectedError):
        asyncio.run(invoker.invoke(_request()))
    assert len(transport.calls) == 1


def test_rotation_then_success_moves_cursor(db, scripted_transport):
    transport = scripted_transport([_quota(), "fine"])
    invoker = ResilientInvoker(_store(db, KEYS), transport)

    assert asyncio.run(invoker.invoke(_request())) == "fine"
    assert transport.keys_used == KEYS[:2]
    assert invoker.cursor == 1

    # The next call starts from the key that last worked.
    asyncio.run(invoker.invoke(_request()))
    assert transport.keys_used[-1] == KEYS[1]


def test_injected_cursor_sets_first_key(db, scripted_transport):
    transport = scripted_transport([_quota(), _quota(), "ok"])
    invoker = ResilientInvoker(_store(db, KEYS), transport, cursor=2)

    assert asyncio.run(invoker.invoke(_request())) == "ok"
    assert transport.keys_used == [KEYS[2], KEYS[0], KEYS[1]]
    assert invoker.cursor == 1


def test_no_credentials_raises_without_calling_provider(db, scripted_transport):
    transport = scripted_transport(["unused"])
    invoker = ResilientInvoker(CredentialStore(db, env_fallback=False), transport)

    assert invoker.is_configured() is False
    with pytest.raises(ConfigurationError):
        asyncio.run(invoker.invoke(_request()))
    assert transport.calls == []


def test_timeout_surfaces_as_synthesis_error(db):
    class SlowTransport:
        async def generate(self, request, credential):
            await asyncio.sleep(1)
            return "late"

    invoker = ResilientInvoker(_store(db, KEYS[:1]), SlowTransport(), timeout_seconds=0.01)
    with pytest.raises(SynthesisError) as excinfo:
        asyncio.run(invoker.invoke(_request()))
    assert excinfo.value.kind is FailureKind.TRANSIENT_NETWORK


def test_classification_prefers_structured_codes():
    assert classify_failure(_quota()) is FailureKind.QUOTA_EXCEEDED
    assert classify_failure(ProviderError("denied", status_code=403, status="PERMISSION_DENIED")) is FailureKind.AUTH_INVALID
    # Structured non-quota code wins over a message that mentions a limit.
    assert (
        classify_failure(ProviderError("Request payload size exceeds the limit", status_code=400, status="INVALID_ARGUMENT"))
        is FailureKind.OTHER
    )
    assert classify_failure(RuntimeError("quota exceeded for project")) is FailureKind.QUOTA_EXCEEDED
    assert classify_failure(httpx.ConnectError("boom")) is FailureKind.TRANSIENT_NETWORK
    assert classify_failure(RuntimeError("something odd")) is FailureKind.OTHER


def test_probe_reports_status_without_moving_cursor(db, scripted_transport):
    transport = scripted_transport([_quota()])
    invoker = ResilientInvoker(_store(db, KEYS), transport, cursor=1)

    status = asyncio.run(invoker.probe(KEYS[0], model="gemini-2.5-flash"))

    assert status is CredentialStatus.QUOTA_LIMITED
    assert invoker.cursor == 1
