from __future__ import annotations

import json
import logging
from typing import Any, Protocol

import httpx

from .models import ModelRequest

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Raw failure reported by the generative-AI provider."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        status: str | None = None,
        reason: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.status = status
        self.reason = reason


class ModelTransport(Protocol):
    async def generate(self, request: ModelRequest, credential: str) -> str: ...


def _provider_error(response: httpx.Response) -> ProviderError:
    message = response.text.strip()
    status: str | None = None
    reason: str | None = None
    try:
        payload = response.json()
    except (json.JSONDecodeError, ValueError):
        payload = None
    if isinstance(payload, list) and payload and isinstance(payload[0], dict):
        payload = payload[0]
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict):
            msg = err.get("message")
            if isinstance(msg, str) and msg.strip():
                message = msg.strip()
            if isinstance(err.get("status"), str):
                status = err["status"]
            for detail in err.get("details") or []:
                if isinstance(detail, dict) and isinstance(detail.get("reason"), str):
                    reason = detail["reason"]
                    break
    return ProviderError(
        message or f"HTTP {response.status_code}",
        status_code=response.status_code,
        status=status,
        reason=reason,
    )


def coerce_candidate_text(response_json: dict[str, Any]) -> str:
    candidates = response_json.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return ""
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    if not isinstance(content, dict):
        return ""
    parts: list[str] = []
    for item in content.get("parts") or []:
        if not isinstance(item, dict) or item.get("thought"):
            continue
        text_value = item.get("text")
        if isinstance(text_value, str):
            parts.append(text_value)
    return "".join(parts).strip()


def build_payload(request: ModelRequest) -> dict[str, Any]:
    generation_config: dict[str, Any] = {}
    if request.temperature is not None:
        generation_config["temperature"] = request.temperature
    if request.structured:
        generation_config["responseMimeType"] = "application/json"
        generation_config["responseSchema"] = request.output_schema.to_provider()
    if request.thinking_budget is not None:
        generation_config["thinkingConfig"] = {"thinkingBudget": request.thinking_budget}
    payload: dict[str, Any] = {
        "systemInstruction": {"parts": [{"text": request.system_instruction}]},
        "contents": [turn.to_provider() for turn in request.turns],
    }
    if generation_config:
        payload["generationConfig"] = generation_config
    return payload


class GeminiTransport:
    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = httpx.Timeout(timeout_seconds, connect=8.0)
        self._client = client

    async def _post(self, url: str, headers: dict[str, str], payload: dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, headers=headers, json=payload, timeout=self._timeout)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(url, headers=headers, json=payload)

    async def generate(self, request: ModelRequest, credential: str) -> str:
        url = f"{self._base_url}/models/{request.model}:generateContent"
        headers = {"x-goog-api-key": credential, "Content-Type": "application/json"}
        response = await self._post(url, headers, build_payload(request))
        if response.status_code >= 400:
            raise _provider_error(response)
        try:
            body = response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise ProviderError("Provider returned a non-JSON envelope.", status_code=response.status_code) from exc
        text = coerce_candidate_text(body if isinstance(body, dict) else {})
        if not text:
            feedback = body.get("promptFeedback") if isinstance(body, dict) else None
            block_reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
            if block_reason:
                raise ProviderError(f"Request blocked by provider safety filters ({block_reason}).")
            logger.info("Provider returned empty text for %s", request.capability.value)
        return text
