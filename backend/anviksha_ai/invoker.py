from __future__ import annotations

import asyncio
import logging
from enum import Enum

import httpx

from .credentials import CredentialStore, mask_credential
from .errors import (
    ConfigurationError,
    CredentialRejectedError,
    FailureKind,
    QuotaExhaustedError,
    SynthesisError,
)
from .models import Capability, ModelRequest, TextPart, Turn
from .transport import ModelTransport, ProviderError

logger = logging.getLogger(__name__)

_QUOTA_MARKERS = ("429", "quota", "exhausted", "limit")
_QUOTA_STATUSES = {"RESOURCE_EXHAUSTED"}
_AUTH_STATUSES = {"UNAUTHENTICATED", "PERMISSION_DENIED"}
_AUTH_REASONS = {"API_KEY_INVALID", "API_KEY_EXPIRED", "API_KEY_SERVICE_BLOCKED", "SERVICE_DISABLED"}
_TRANSIENT_STATUSES = {"UNAVAILABLE", "DEADLINE_EXCEEDED", "INTERNAL"}
_INVOKER_ERRORS = (ProviderError, httpx.HTTPError, asyncio.TimeoutError, TimeoutError, OSError)


class CredentialStatus(str, Enum):
    VALID = "valid"
    QUOTA_LIMITED = "quota_limited"
    INVALID = "invalid"
    UNREACHABLE = "unreachable"


def classify_failure(exc: BaseException) -> FailureKind:
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException, httpx.TransportError)):
        return FailureKind.TRANSIENT_NETWORK
    if isinstance(exc, ProviderError):
        if exc.status_code == 429 or exc.status in _QUOTA_STATUSES:
            return FailureKind.QUOTA_EXCEEDED
        if exc.reason in _AUTH_REASONS or exc.status in _AUTH_STATUSES or exc.status_code == 401:
            return FailureKind.AUTH_INVALID
        if exc.status in _TRANSIENT_STATUSES or (exc.status_code is not None and exc.status_code >= 500):
            return FailureKind.TRANSIENT_NETWORK
        if exc.status_code is not None or exc.status is not None:
            return FailureKind.OTHER
    # Unstructured failures: fall back to the message.
    message = str(exc).lower()
    if any(marker in message for marker in _QUOTA_MARKERS):
        return FailureKind.QUOTA_EXCEEDED
    if "api key" in message and ("invalid" in message or "not valid" in message):
        return FailureKind.AUTH_INVALID
    if isinstance(exc, OSError):
        return FailureKind.TRANSIENT_NETWORK
    return FailureKind.OTHER


def _translate(exc: BaseException, kind: FailureKind) -> SynthesisError:
    provider_message = str(exc) or exc.__class__.__name__
    if kind is FailureKind.AUTH_INVALID:
        return CredentialRejectedError(
            f"AI provider rejected the credential: {provider_message}",
            kind=kind,
            provider_message=provider_message,
        )
    if kind is FailureKind.TRANSIENT_NETWORK:
        return SynthesisError(
            f"AI provider unreachable or timed out: {provider_message}",
            kind=kind,
            provider_message=provider_message,
        )
    return SynthesisError(f"AI model call failed: {provider_message}", kind=kind, provider_message=provider_message)


class ResilientInvoker:
    """Runs one model request, rotating credentials on quota failures.

    The rotation cursor is instance state shared by every call made through
    this invoker. Each call walks its own snapshot of the credential list
    starting at the cursor, so a credential is tried at most once per call and
    a concurrent call's failure never rewinds this call's sequence.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        transport: ModelTransport,
        *,
        timeout_seconds: float = 45.0,
        cursor: int = 0,
    ) -> None:
        self._credentials = credentials
        self._transport = transport
        self._timeout = timeout_seconds
        self._cursor = max(0, cursor)

    @property
    def cursor(self) -> int:
        return self._cursor

    def is_configured(self) -> bool:
        return self._credentials.is_configured()

    async def invoke(self, request: ModelRequest) -> str:
        keys = self._credentials.resolve_credentials()
        if not keys:
            raise ConfigurationError("No AI credentials are configured.")

        total = len(keys)
        start = self._cursor % total
        for attempt in range(total):
            index = (start + attempt) % total
            key = keys[index]
            try:
                text = await asyncio.wait_for(self._transport.generate(request, key), timeout=self._timeout)
            except _INVOKER_ERRORS as exc:
                kind = classify_failure(exc)
                if kind is not FailureKind.QUOTA_EXCEEDED:
                    logger.error(
                        "%s call failed on key %s (%s): %s",
                        request.capability.value,
                        mask_credential(key),
                        kind.value,
                        exc,
                    )
                    raise _translate(exc, kind) from exc
                if attempt + 1 >= total:
                    logger.error(
                        "%s call exhausted all %d credential(s); last key %s",
                        request.capability.value,
                        total,
                        mask_credential(key),
                    )
                    raise QuotaExhaustedError(
                        f"All {total} configured credential(s) are quota-limited.",
                        attempts=total,
                    ) from exc
                self._cursor = (index + 1) % total
                logger.warning(
                    "Quota exceeded on key %s; rotating to key #%d",
                    mask_credential(key),
                    self._cursor,
                )
                continue
            self._cursor = index
            logger.debug("%s call succeeded on key #%d", request.capability.value, index)
            return text
        raise SynthesisError("Credential rotation ended without a result.")

    async def probe(self, credential: str, *, model: str) -> CredentialStatus:
        request = ModelRequest(
            capability=Capability.CHAT,
            model=model,
            system_instruction="Reply with the single word OK.",
            turns=(Turn(role="user", parts=(TextPart("OK"),)),),
            thinking_budget=0,
        )
        try:
            await asyncio.wait_for(self._transport.generate(request, credential.strip()), timeout=self._timeout)
        except _INVOKER_ERRORS as exc:
            kind = classify_failure(exc)
            logger.info("Probe of key %s failed (%s): %s", mask_credential(credential), kind.value, exc)
            if kind is FailureKind.QUOTA_EXCEEDED:
                return CredentialStatus.QUOTA_LIMITED
            if kind is FailureKind.AUTH_INVALID:
                return CredentialStatus.INVALID
            if kind is FailureKind.TRANSIENT_NETWORK:
                return CredentialStatus.UNREACHABLE
            return CredentialStatus.INVALID
        return CredentialStatus.VALID
