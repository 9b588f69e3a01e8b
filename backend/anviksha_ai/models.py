from __future__ import annotations

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class Capability(str, Enum):
    IMAGE_ANALYSIS = "image_analysis"
    PHARMACY_LOOKUP = "pharmacy_lookup"
    CHAT = "chat"
    THERAPY = "therapy"
    TRIAGE = "triage"
    TRANSCRIPTION = "transcription"


class Modality(str, Enum):
    XRAY = "XRAY"
    ECG = "ECG"
    BLOOD = "BLOOD"
    MRI = "MRI"
    CT = "CT"
    DERMA = "DERMA"
    GENERAL = "GENERAL"
    DENTAL = "DENTAL"
    OPHTHAL = "OPHTHAL"
    ENT = "ENT"
    PEDIATRIC = "PEDIATRIC"
    GYNE = "GYNE"
    ORTHO = "ORTHO"
    UROLOGY = "UROLOGY"
    GASTRO = "GASTRO"
    NEURO = "NEURO"
    ONCO = "ONCO"
    PATHOLOGY = "PATHOLOGY"
    GENETIC = "GENETIC"
    VITALS = "VITALS"
    DIET = "DIET"
    MENTAL = "MENTAL"
    SLEEP = "SLEEP"
    PREGNANCY = "PREGNANCY"
    VACCINE = "VACCINE"


class FieldType(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"


@dataclass(frozen=True)
class OutputSchema:
    fields: dict[str, FieldType]
    required: tuple[str, ...] = ()
    items: dict[str, "OutputSchema | FieldType"] = field(default_factory=dict)

    def to_provider(self) -> dict[str, Any]:
        properties: dict[str, Any] = {}
        for name, kind in self.fields.items():
            spec: dict[str, Any] = {"type": kind.value.upper()}
            if kind is FieldType.ARRAY:
                item = self.items.get(name, FieldType.STRING)
                if isinstance(item, OutputSchema):
                    spec["items"] = item.to_provider()
                else:
                    spec["items"] = {"type": item.value.upper()}
            properties[name] = spec
        return {"type": "OBJECT", "properties": properties, "required": list(self.required)}


@dataclass(frozen=True)
class TextPart:
    text: str

    def to_provider(self) -> dict[str, Any]:
        return {"text": self.text}


@dataclass(frozen=True)
class BlobPart:
    data: bytes
    mime_type: str

    def to_provider(self) -> dict[str, Any]:
        return {
            "inlineData": {
                "mimeType": self.mime_type,
                "data": base64.b64encode(self.data).decode("ascii"),
            }
        }


ContentPart = Union[TextPart, BlobPart]


@dataclass(frozen=True)
class Turn:
    role: str
    parts: tuple[ContentPart, ...]

    def to_provider(self) -> dict[str, Any]:
        return {"role": self.role, "parts": [part.to_provider() for part in self.parts]}


@dataclass(frozen=True)
class ModelRequest:
    capability: Capability
    model: str
    system_instruction: str
    turns: tuple[Turn, ...]
    output_schema: OutputSchema | None = None
    thinking_budget: int | None = None
    temperature: float | None = None

    @property
    def structured(self) -> bool:
        return self.output_schema is not None


@dataclass(frozen=True)
class AnalysisResult:
    id: str
    date: str
    modality: Modality
    condition: str
    confidence: int
    description: str
    details: str
    treatment: str
    is_emergency: bool
    clinical_alerts: tuple[str, ...] = ()
    observation_notes: str = ""
    model_version: str = ""
    model_used: str = ""
    cost: int | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date,
            "modality": self.modality.value,
            "condition": self.condition,
            "confidence": self.confidence,
            "description": self.description,
            "details": self.details,
            "treatment": self.treatment,
            "isEmergency": self.is_emergency,
            "clinicalAlerts": list(self.clinical_alerts),
            "observationNotes": self.observation_notes,
            "modelVersion": self.model_version,
            "modelUsed": self.model_used,
            "cost": self.cost,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "AnalysisResult":
        cost = payload.get("cost")
        return cls(
            id=str(payload["id"]),
            date=str(payload["date"]),
            modality=Modality(payload.get("modality") or Modality.GENERAL.value),
            condition=str(payload["condition"]),
            confidence=int(payload["confidence"]),
            description=str(payload["description"]),
            details=str(payload.get("details") or ""),
            treatment=str(payload.get("treatment") or ""),
            is_emergency=bool(payload.get("isEmergency")),
            clinical_alerts=tuple(str(item) for item in payload.get("clinicalAlerts") or []),
            observation_notes=str(payload.get("observationNotes") or ""),
            model_version=str(payload.get("modelVersion") or ""),
            model_used=str(payload.get("modelUsed") or ""),
            cost=int(cost) if isinstance(cost, (int, float)) and not isinstance(cost, bool) else None,
        )


@dataclass(frozen=True)
class InputRejected:
    """A valid negative classification: the input is not analyzable."""

    modality: Modality
    reason: str
    condition: str = "INVALID INPUT"
    confidence: int = 0
    description: str = ""

    def to_payload(self) -> dict[str, Any]:
        return {
            "rejected": True,
            "modality": self.modality.value,
            "condition": self.condition,
            "confidence": self.confidence,
            "description": self.description,
            "reason": self.reason,
        }


AnalysisOutcome = Union[AnalysisResult, InputRejected]


COUGH_DURATIONS = ("None", "< 1 Week", "1-3 Weeks", "> 3 Weeks")
RECOMMENDATIONS = ("GET_XRAY", "CONSIDER_XRAY", "NO_XRAY")


@dataclass(frozen=True)
class TriageInputs:
    cough_duration: str = "None"
    fever: bool = False
    chest_pain: bool = False
    breathing_difficulty: bool = False
    sputum: bool = False
    weight_loss: bool = False
    visual_observation: BlobPart | None = None

    def __post_init__(self) -> None:
        if self.cough_duration not in COUGH_DURATIONS:
            raise ValueError(f"Unsupported cough duration bucket: {self.cough_duration}")

    def to_payload(self) -> dict[str, Any]:
        return {
            "coughDuration": self.cough_duration,
            "fever": self.fever,
            "chestPain": self.chest_pain,
            "breathingDifficulty": self.breathing_difficulty,
            "sputum": self.sputum,
            "weightLoss": self.weight_loss,
            "visualObservationProvided": self.visual_observation is not None,
        }


@dataclass(frozen=True)
class TriageResult:
    risk_score: int
    recommendation: str
    reasoning: str
    urgency_label: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "riskScore": self.risk_score,
            "recommendation": self.recommendation,
            "reasoning": self.reasoning,
            "urgencyLabel": self.urgency_label,
        }


@dataclass(frozen=True)
class Medicine:
    name: str
    generic_name: str
    type: str
    dosage: str
    price: float
    generic_price: float
    explanation: str
    compatibility_score: int = 0

    def to_payload(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "genericName": self.generic_name,
            "type": self.type,
            "dosage": self.dosage,
            "price": self.price,
            "genericPrice": self.generic_price,
            "explanation": self.explanation,
            "compatibilityScore": self.compatibility_score,
        }


@dataclass(frozen=True)
class PharmacyResult:
    diagnosis: str
    medicines: tuple[Medicine, ...]

    def to_payload(self) -> dict[str, Any]:
        return {"diagnosis": self.diagnosis, "medicines": [med.to_payload() for med in self.medicines]}
