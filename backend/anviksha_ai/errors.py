from __future__ import annotations

from enum import Enum


class FailureKind(str, Enum):
    QUOTA_EXCEEDED = "quota_exceeded"
    AUTH_INVALID = "auth_invalid"
    TRANSIENT_NETWORK = "transient_network"
    OTHER = "other"


class AnvikshaError(Exception):
    code = "anviksha_error"


class ConfigurationError(AnvikshaError):
    code = "configuration_required"


class QuotaExhaustedError(AnvikshaError):
    code = "quota_exhausted"

    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class SynthesisError(AnvikshaError):
    code = "synthesis_failed"

    def __init__(self, message: str, *, kind: FailureKind = FailureKind.OTHER, provider_message: str | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.provider_message = provider_message


class CredentialRejectedError(SynthesisError):
    code = "credential_rejected"


class ParseError(AnvikshaError):
    code = "unreadable_response"

    def __init__(self, message: str, *, raw_text: str | None = None) -> None:
        super().__init__(message)
        self.raw_text = raw_text


class SchemaViolationError(ParseError):
    pass


_USER_MESSAGES: dict[type[AnvikshaError], str] = {
    ConfigurationError: "No AI access key is configured. Add a key in Settings to continue.",
    QuotaExhaustedError: (
        "All configured AI keys have reached their usage limit. "
        "Please wait a few minutes or add another key in Settings."
    ),
    CredentialRejectedError: "The AI service rejected the configured key. Please check or replace it in Settings.",
    SynthesisError: "The AI service could not complete this request. Please try again.",
    ParseError: "The AI service returned a report we could not read. Please try again with a clearer input.",
}


def user_message_for(exc: BaseException) -> str:
    for exc_type in type(exc).__mro__:
        message = _USER_MESSAGES.get(exc_type)  # type: ignore[arg-type]
        if message:
            return message
    return "Something went wrong. Please try again."
