from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from anviksha_ai.errors import ParseError, SchemaViolationError
from anviksha_ai.models import AnalysisResult, InputRejected, Modality
from anviksha_ai.parser import (
    ANALYSIS_DEFAULTS,
    MODEL_VERSION,
    REJECTION_DESCRIPTION,
    normalize_pharmacy,
    normalize_triage,
    parse_analysis,
    parse_structured,
    strip_fences,
)
from anviksha_ai.prompts import ANALYSIS_SCHEMA, PHARMACY_SCHEMA, TRIAGE_SCHEMA

NOW = datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc)


def _analysis(raw: str) -> AnalysisResult | InputRejected:
    return parse_analysis(
        raw,
        ANALYSIS_SCHEMA,
        Modality.XRAY,
        model_used="gemini-2.5-flash",
        now=NOW,
    )


def test_fenced_json_is_parsed():
    raw = '```json\n{"condition": "Lobar Pneumonia", "confidence": 82}\n```'
    assert strip_fences(raw) == '{"condition": "Lobar Pneumonia", "confidence": 82}'
    assert parse_structured(raw, ANALYSIS_SCHEMA)["condition"] == "Lobar Pneumonia"


def test_malformed_json_raises_parse_error():
    with pytest.raises(ParseError) as excinfo:
        parse_structured('{"condition": "Lobar Pneumonia", ', ANALYSIS_SCHEMA)
    assert excinfo.value.raw_text.startswith('{"condition"')


def test_non_object_and_empty_payloads_are_rejected():
    with pytest.raises(ParseError):
        parse_structured("[1, 2, 3]", ANALYSIS_SCHEMA)
    with pytest.raises(ParseError):
        parse_structured("```\n```", ANALYSIS_SCHEMA)


def test_missing_required_field_is_a_schema_violation():
    with pytest.raises(SchemaViolationError):
        parse_structured('{"condition": "Cardiomegaly"}', ANALYSIS_SCHEMA)
    with pytest.raises(SchemaViolationError):
        parse_structured('{"condition": "Cardiomegaly", "confidence": "high"}', ANALYSIS_SCHEMA)


def test_missing_details_uses_documented_placeholder():
    result = _analysis('{"condition": "Pleural Effusion", "confidence": 74, "description": "Blunted angle."}')

    assert isinstance(result, AnalysisResult)
    assert result.details == ANALYSIS_DEFAULTS["details"]
    assert result.description == "Blunted angle."
    assert result.model_version == MODEL_VERSION
    assert result.model_used == "gemini-2.5-flash"
    assert result.date == "2026-03-14T09:30:00Z"
    assert result.id.startswith("scan-")


def test_empty_and_wrong_type_optional_fields_fall_back_to_defaults():
    raw = json.dumps(
        {
            "condition": "Sinus Tachycardia",
            "confidence": 140,
            "details": "   ",
            "isEmergency": "yes",
            "clinicalAlerts": ["Rate above 100 bpm", "", 7],
        }
    )
    result = _analysis(raw)

    assert isinstance(result, AnalysisResult)
    assert result.confidence == 100
    assert result.details == ANALYSIS_DEFAULTS["details"]
    assert result.is_emergency is False
    assert result.clinical_alerts == ("Rate above 100 bpm",)


def test_rejected_image_becomes_input_rejected():
    result = _analysis(
        '{"condition": "INCONCLUSIVE", "confidence": 35, "isValidMedicalImage": false, "isEmergency": true}'
    )

    assert isinstance(result, InputRejected)
    assert result.confidence == 0
    assert result.condition == "INVALID INPUT"
    assert result.description == REJECTION_DESCRIPTION
    assert result.to_payload()["rejected"] is True


def test_validity_flag_alone_triggers_rejection():
    result = _analysis('{"condition": "Photo of a cat", "confidence": 90, "isValidMedicalImage": false}')
    assert isinstance(result, InputRejected)


def test_rejection_without_required_fields_is_not_a_schema_violation():
    assert isinstance(_analysis('{"isValidMedicalImage": false}'), InputRejected)
    assert isinstance(_analysis('{"condition": "INCONCLUSIVE"}'), InputRejected)
    assert isinstance(_analysis('```json\n{"condition": "invalid image"}\n```'), InputRejected)

    with pytest.raises(SchemaViolationError):
        _analysis('{"condition": "Cardiomegaly", "isValidMedicalImage": true}')


def test_non_finite_numbers_never_escape_as_raw_errors():
    result = _analysis('{"condition": "Pneumonia", "confidence": 80, "cost": Infinity}')
    assert isinstance(result, AnalysisResult)
    assert result.cost == ANALYSIS_DEFAULTS["cost"]

    with pytest.raises(SchemaViolationError):
        _analysis('{"condition": "Pneumonia", "confidence": NaN}')

    pharmacy = normalize_pharmacy(
        parse_structured(
            '{"medicines": [{"name": "Dolo 650", "price": NaN, "genericPrice": -Infinity}]}',
            PHARMACY_SCHEMA,
        )
    )
    assert (pharmacy.medicines[0].price, pharmacy.medicines[0].generic_price) == (0.0, 0.0)


def test_normalization_is_idempotent_for_required_fields():
    first = _analysis('{"condition": "Atrial Fibrillation", "confidence": 88.6, "isEmergency": true}')
    assert isinstance(first, AnalysisResult)

    second = _analysis(json.dumps(first.to_payload()))
    assert isinstance(second, AnalysisResult)
    assert (second.condition, second.confidence, second.is_emergency) == (
        first.condition,
        first.confidence,
        first.is_emergency,
    )
    assert second.details == first.details
    assert AnalysisResult.from_payload(first.to_payload()) == first


def test_triage_recommendation_is_normalized_and_labelled():
    result = normalize_triage(
        parse_structured('{"riskScore": 78, "recommendation": "get xray", "reasoning": "Cough > 3 weeks."}', TRIAGE_SCHEMA)
    )
    assert result.recommendation == "GET_XRAY"
    assert result.urgency_label == "High Priority"
    assert result.reasoning == "Cough > 3 weeks."


def test_unknown_triage_recommendation_is_a_schema_violation():
    with pytest.raises(SchemaViolationError):
        normalize_triage(parse_structured('{"riskScore": 10, "recommendation": "MAYBE"}', TRIAGE_SCHEMA))


def test_pharmacy_drops_malformed_medicines_and_fills_defaults():
    raw = json.dumps(
        {
            "diagnosis": "Likely viral upper respiratory infection.",
            "medicines": [
                {"name": "Dolo 650", "genericName": "Paracetamol", "price": 30, "genericPrice": 12, "compatibilityScore": 92},
                {"genericName": "missing brand name"},
                "not-an-object",
                {"name": "Cetirizine"},
            ],
        }
    )
    result = normalize_pharmacy(parse_structured(raw, PHARMACY_SCHEMA))

    assert [medicine.name for medicine in result.medicines] == ["Dolo 650", "Cetirizine"]
    assert result.medicines[0].compatibility_score == 92
    assert result.medicines[1].price == 0.0
    assert result.medicines[1].type == "Medicine"
