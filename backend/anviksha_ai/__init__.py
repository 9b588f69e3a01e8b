from .credentials import CredentialStore, mask_credential
from .errors import (
    AnvikshaError,
    ConfigurationError,
    CredentialRejectedError,
    FailureKind,
    ParseError,
    QuotaExhaustedError,
    SchemaViolationError,
    SynthesisError,
    user_message_for,
)
from .invoker import CredentialStatus, ResilientInvoker, classify_failure
from .models import (
    AnalysisResult,
    BlobPart,
    Capability,
    InputRejected,
    Modality,
    ModelRequest,
    PharmacyResult,
    TriageInputs,
    TriageResult,
)
from .service import CapabilityService
from .settings import AISettings
from .transport import GeminiTransport, ProviderError

__all__ = [
    "AISettings",
    "AnalysisResult",
    "AnvikshaError",
    "BlobPart",
    "Capability",
    "CapabilityService",
    "ConfigurationError",
    "CredentialRejectedError",
    "CredentialStatus",
    "CredentialStore",
    "FailureKind",
    "GeminiTransport",
    "InputRejected",
    "Modality",
    "ModelRequest",
    "ParseError",
    "PharmacyResult",
    "ProviderError",
    "QuotaExhaustedError",
    "ResilientInvoker",
    "SchemaViolationError",
    "SynthesisError",
    "TriageInputs",
    "TriageResult",
    "classify_failure",
    "mask_credential",
    "user_message_for",
]
