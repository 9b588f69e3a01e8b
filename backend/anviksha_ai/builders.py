from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from . import prompts
from .models import BlobPart, Capability, ContentPart, Modality, ModelRequest, TextPart, TriageInputs, Turn
from .settings import AISettings

_IST = timezone(timedelta(hours=5, minutes=30), "IST")
_HISTORY_TURNS = 10
_HISTORY_CHARS = 1200
_MESSAGE_CHARS = 4000


def _zone(name: str) -> tzinfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return _IST


def format_now(settings: AISettings, now: datetime | None = None) -> str:
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    local = current.astimezone(_zone(settings.timezone))
    return local.strftime("%A, %d %B %Y, %I:%M %p")


def _history_turns(history: Sequence[tuple[str, str]]) -> list[Turn]:
    turns: list[Turn] = []
    for role, text in list(history)[-_HISTORY_TURNS:]:
        cleaned = (text or "").strip()
        if not cleaned:
            continue
        provider_role = "user" if role == "user" else "model"
        turns.append(Turn(role=provider_role, parts=(TextPart(cleaned[:_HISTORY_CHARS]),)))
    return turns


def build_image_analysis(
    image: BlobPart,
    modality: Modality,
    *,
    settings: AISettings,
    now: datetime | None = None,
) -> ModelRequest:
    return ModelRequest(
        capability=Capability.IMAGE_ANALYSIS,
        model=settings.vision_model,
        system_instruction=prompts.image_analysis_instruction(modality, format_now(settings, now)),
        turns=(Turn(role="user", parts=(image, TextPart(prompts.image_analysis_prompt(modality)))),),
        output_schema=prompts.ANALYSIS_SCHEMA,
        thinking_budget=settings.thinking_budget,
        temperature=0.2,
    )


def build_triage(
    inputs: TriageInputs,
    *,
    settings: AISettings,
    now: datetime | None = None,
) -> ModelRequest:
    # The record goes to the model as-is; scoring happens remotely.
    parts: list[ContentPart] = [
        TextPart("Patient triage answers (JSON):\n" + json.dumps(inputs.to_payload(), sort_keys=True)),
    ]
    if inputs.visual_observation is not None:
        parts.append(inputs.visual_observation)
    return ModelRequest(
        capability=Capability.TRIAGE,
        model=settings.chat_model,
        system_instruction=prompts.triage_instruction(format_now(settings, now)),
        turns=(Turn(role="user", parts=tuple(parts)),),
        output_schema=prompts.TRIAGE_SCHEMA,
        thinking_budget=settings.thinking_budget,
        temperature=0.1,
    )


def build_pharmacy(
    query: str,
    *,
    settings: AISettings,
    user_history: str | None = None,
    fda_labels: Sequence[dict[str, Any]] = (),
    now: datetime | None = None,
) -> ModelRequest:
    cleaned = query.strip()
    if not cleaned:
        raise ValueError("Pharmacy query must not be empty")
    prompt = (
        f"USER_CONTEXT: {(user_history or '').strip() or 'General Consultation'}\n"
        f"SYMPTOMS: {cleaned[:_MESSAGE_CHARS]}\n"
        f"RAW_FDA_DATA: {json.dumps(list(fda_labels), ensure_ascii=True)}"
    )
    return ModelRequest(
        capability=Capability.PHARMACY_LOOKUP,
        model=settings.pharmacy_model,
        system_instruction=prompts.pharmacy_instruction(format_now(settings, now)),
        turns=(Turn(role="user", parts=(TextPart(prompt),)),),
        output_schema=prompts.PHARMACY_SCHEMA,
        thinking_budget=settings.thinking_budget,
        temperature=0.2,
    )


def build_chat(
    message: str,
    *,
    settings: AISettings,
    history: Sequence[tuple[str, str]] = (),
    image: BlobPart | None = None,
    now: datetime | None = None,
) -> ModelRequest:
    text = message.strip()[:_MESSAGE_CHARS] or "Please analyze the attached image."
    parts: list[ContentPart] = []
    if image is not None:
        parts.append(image)
    parts.append(TextPart(text))
    return ModelRequest(
        capability=Capability.CHAT,
        model=settings.chat_model,
        system_instruction=prompts.chat_instruction(format_now(settings, now)),
        turns=(*_history_turns(history), Turn(role="user", parts=tuple(parts))),
        thinking_budget=0,
        temperature=0.4,
    )


def build_therapy(
    message: str,
    *,
    settings: AISettings,
    history: Sequence[tuple[str, str]] = (),
    now: datetime | None = None,
) -> ModelRequest:
    text = message.strip()
    if not text:
        raise ValueError("Therapy message must not be empty")
    return ModelRequest(
        capability=Capability.THERAPY,
        model=settings.chat_model,
        system_instruction=prompts.therapy_instruction(format_now(settings, now)),
        turns=(*_history_turns(history), Turn(role="user", parts=(TextPart(text[:_MESSAGE_CHARS]),))),
        thinking_budget=0,
        temperature=0.7,
    )


def build_transcription(
    audio: BlobPart,
    *,
    settings: AISettings,
    language_hint: str | None = None,
) -> ModelRequest:
    return ModelRequest(
        capability=Capability.TRANSCRIPTION,
        model=settings.chat_model,
        system_instruction=prompts.transcription_instruction(language_hint),
        turns=(Turn(role="user", parts=(audio, TextPart("Transcribe this recording."))),),
        thinking_budget=0,
        temperature=0.0,
    )
