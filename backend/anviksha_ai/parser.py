"""Parsing and normalization of structured model output.

Parsing (``parse_structured``) turns raw text into a mapping that satisfies an
``OutputSchema`` or raises ``ParseError``. Normalization (``normalize_*``)
turns that mapping into a result type, consulting a per-field default table
for documented optional fields only.
"""

from __future__ import annotations

import json
import logging
import math
import re
import uuid
from datetime import datetime
from typing import Any

from anviksha_store.time_utils import to_iso, utc_now

from .errors import ParseError, SchemaViolationError
from .models import (
    RECOMMENDATIONS,
    AnalysisOutcome,
    AnalysisResult,
    FieldType,
    InputRejected,
    Medicine,
    Modality,
    OutputSchema,
    PharmacyResult,
    TriageResult,
)

logger = logging.getLogger(__name__)

_FENCE_OPEN_RE = re.compile(r"^\s*```[A-Za-z0-9_-]*[ \t]*\n?")
_FENCE_CLOSE_RE = re.compile(r"\n?[ \t]*```\s*$")

MODEL_VERSION = "Genesis-v3.5 (Optical + Neural Reasoning)"

ANALYSIS_DEFAULTS: dict[str, Any] = {
    "description": "Clinical summary was not provided by the analysis engine.",
    "details": "Granular physiological audit data not extracted.",
    "treatment": "Standard clinical protocol advised.",
    "observationNotes": "No additional observations recorded.",
    "isEmergency": False,
    "clinicalAlerts": [],
    "cost": 1250,
}

TRIAGE_DEFAULTS: dict[str, Any] = {
    "reasoning": "Risk assessment reasoning was not provided.",
}

URGENCY_LABELS = {
    "GET_XRAY": "High Priority",
    "CONSIDER_XRAY": "Moderate Priority",
    "NO_XRAY": "Low Priority",
}

PHARMACY_DEFAULTS: dict[str, Any] = {
    "diagnosis": "No provisional assessment was provided.",
}

MEDICINE_DEFAULTS: dict[str, Any] = {
    "genericName": "Generic name not provided",
    "type": "Medicine",
    "dosage": "Follow label directions or consult a pharmacist.",
    "price": 0.0,
    "genericPrice": 0.0,
    "explanation": "No explanation provided.",
    "compatibilityScore": 0,
}

REJECTION_DESCRIPTION = (
    "The submitted image could not be analyzed as a medical image. "
    "Please capture a clear, well-lit medical image and try again."
)
REJECTION_REASON = "Input flagged as non-medical or unanalyzable."
_REJECTION_CONDITIONS = {"INCONCLUSIVE", "INVALID", "INVALID INPUT", "INVALID IMAGE"}


def strip_fences(raw_text: str) -> str:
    text = (raw_text or "").strip()
    text = _FENCE_OPEN_RE.sub("", text, count=1)
    text = _FENCE_CLOSE_RE.sub("", text, count=1)
    return text.strip()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _matches(value: Any, kind: FieldType) -> bool:
    if kind is FieldType.STRING:
        return isinstance(value, str)
    if kind in (FieldType.INTEGER, FieldType.NUMBER):
        return _is_number(value)
    if kind is FieldType.BOOLEAN:
        return isinstance(value, bool)
    if kind is FieldType.ARRAY:
        return isinstance(value, list)
    return isinstance(value, dict)


def _validate(payload: dict[str, Any], schema: OutputSchema, *, path: str = "") -> dict[str, Any]:
    cleaned: dict[str, Any] = {}
    for name, kind in schema.fields.items():
        label = f"{path}{name}"
        value = payload.get(name)
        if isinstance(value, str) and not value.strip():
            value = None
        if value is None:
            if name in schema.required:
                raise SchemaViolationError(f"Required field '{label}' is missing.")
            continue
        if not _matches(value, kind):
            if name in schema.required:
                raise SchemaViolationError(f"Required field '{label}' is not of type {kind.value}.")
            logger.warning("Dropping optional field %s with unexpected type %s", label, type(value).__name__)
            continue
        if kind is FieldType.ARRAY:
            value = _validate_items(value, schema.items.get(name, FieldType.STRING), label=label)
        cleaned[name] = value.strip() if isinstance(value, str) else value
    return cleaned


def _validate_items(values: list[Any], item: OutputSchema | FieldType, *, label: str) -> list[Any]:
    items: list[Any] = []
    for position, value in enumerate(values):
        if isinstance(item, OutputSchema):
            if not isinstance(value, dict):
                logger.warning("Dropping non-object entry %s[%d]", label, position)
                continue
            try:
                items.append(_validate(value, item, path=f"{label}[{position}]."))
            except SchemaViolationError as exc:
                logger.warning("Dropping malformed entry %s[%d]: %s", label, position, exc)
            continue
        if isinstance(value, str) and not value.strip():
            continue
        if _matches(value, item):
            items.append(value.strip() if isinstance(value, str) else value)
    return items


def _decode(raw_text: str) -> dict[str, Any]:
    text = strip_fences(raw_text)
    if not text:
        raise ParseError("Model returned an empty structured response.", raw_text=raw_text)
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.error("Unparseable structured response (%s): %.200s", exc, text)
        raise ParseError(f"Model response is not valid JSON: {exc.msg}", raw_text=raw_text) from exc
    if not isinstance(payload, dict):
        raise ParseError("Model response is not a JSON object.", raw_text=raw_text)
    return payload


def parse_structured(raw_text: str, schema: OutputSchema) -> dict[str, Any]:
    return _validate(_decode(raw_text), schema)


def _with_defaults(payload: dict[str, Any], defaults: dict[str, Any]) -> dict[str, Any]:
    merged = dict(payload)
    for key, default in defaults.items():
        if merged.get(key) is None:
            merged[key] = list(default) if isinstance(default, list) else default
    return merged


def _clamp_percent(value: Any) -> int:
    return int(round(max(0.0, min(100.0, float(value)))))


def is_rejection(payload: dict[str, Any]) -> bool:
    if payload.get("isValidMedicalImage") is False:
        return True
    condition = payload.get("condition")
    return isinstance(condition, str) and condition.strip().upper() in _REJECTION_CONDITIONS


def normalize_analysis(
    payload: dict[str, Any],
    modality: Modality,
    *,
    model_used: str,
    now: datetime | None = None,
) -> AnalysisOutcome:
    if is_rejection(payload):
        return InputRejected(modality=modality, reason=REJECTION_REASON, description=REJECTION_DESCRIPTION)
    for name in ("condition", "confidence"):
        if payload.get(name) is None:
            raise SchemaViolationError(f"Required field '{name}' is missing.")
    data = _with_defaults(payload, ANALYSIS_DEFAULTS)
    return AnalysisResult(
        id=f"scan-{uuid.uuid4().hex[:16]}",
        date=to_iso(now or utc_now()),
        modality=modality,
        condition=str(data["condition"]).strip(),
        confidence=_clamp_percent(data["confidence"]),
        description=str(data["description"]),
        details=str(data["details"]),
        treatment=str(data["treatment"]),
        is_emergency=bool(data["isEmergency"]),
        clinical_alerts=tuple(str(alert) for alert in data["clinicalAlerts"]),
        observation_notes=str(data["observationNotes"]),
        model_version=MODEL_VERSION,
        model_used=model_used,
        cost=int(round(float(data["cost"]))),
    )


def parse_analysis(
    raw_text: str,
    schema: OutputSchema,
    modality: Modality,
    *,
    model_used: str,
    now: datetime | None = None,
) -> AnalysisOutcome:
    """Parse an image-analysis reply, short-circuiting rejections.

    A rejected image often omits the required fields, so the rejection check
    runs on the decoded object before schema validation.
    """
    payload = _decode(raw_text)
    if is_rejection(payload):
        return InputRejected(modality=modality, reason=REJECTION_REASON, description=REJECTION_DESCRIPTION)
    return normalize_analysis(_validate(payload, schema), modality, model_used=model_used, now=now)


def normalize_triage(payload: dict[str, Any]) -> TriageResult:
    if payload.get("riskScore") is None:
        raise SchemaViolationError("Required field 'riskScore' is missing.")
    recommendation = str(payload.get("recommendation") or "").strip().upper().replace(" ", "_")
    if recommendation not in RECOMMENDATIONS:
        raise SchemaViolationError(f"Unsupported triage recommendation: {payload.get('recommendation')!r}")
    data = _with_defaults(payload, {**TRIAGE_DEFAULTS, "urgencyLabel": URGENCY_LABELS[recommendation]})
    return TriageResult(
        risk_score=_clamp_percent(data["riskScore"]),
        recommendation=recommendation,
        reasoning=str(data["reasoning"]),
        urgency_label=str(data["urgencyLabel"]),
    )


def normalize_pharmacy(payload: dict[str, Any]) -> PharmacyResult:
    if payload.get("medicines") is None:
        raise SchemaViolationError("Required field 'medicines' is missing.")
    data = _with_defaults(payload, PHARMACY_DEFAULTS)
    medicines: list[Medicine] = []
    for entry in data["medicines"]:
        item = _with_defaults(entry, MEDICINE_DEFAULTS)
        medicines.append(
            Medicine(
                name=str(item["name"]),
                generic_name=str(item["genericName"]),
                type=str(item["type"]),
                dosage=str(item["dosage"]),
                price=float(item["price"]),
                generic_price=float(item["genericPrice"]),
                explanation=str(item["explanation"]),
                compatibility_score=_clamp_percent(item["compatibilityScore"]),
            )
        )
    return PharmacyResult(diagnosis=str(data["diagnosis"]), medicines=tuple(medicines))
