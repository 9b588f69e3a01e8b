from __future__ import annotations

import os
from dataclasses import dataclass


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


@dataclass(frozen=True)
class AISettings:
    api_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    vision_model: str = "gemini-2.5-flash"
    chat_model: str = "gemini-2.5-flash"
    pharmacy_model: str = "gemini-2.5-pro"
    thinking_budget: int = 1024
    timeout_seconds: float = 45.0
    timezone: str = "Asia/Kolkata"
    openfda_base_url: str = "https://api.fda.gov"

    @classmethod
    def from_env(cls) -> "AISettings":
        return cls(
            api_base_url=(os.getenv("GEMINI_API_BASE_URL") or cls.api_base_url).rstrip("/"),
            vision_model=(os.getenv("ANVIKSHA_VISION_MODEL") or cls.vision_model).strip(),
            chat_model=(os.getenv("ANVIKSHA_CHAT_MODEL") or cls.chat_model).strip(),
            pharmacy_model=(os.getenv("ANVIKSHA_PHARMACY_MODEL") or cls.pharmacy_model).strip(),
            thinking_budget=_env_int("ANVIKSHA_THINKING_BUDGET", cls.thinking_budget),
            timeout_seconds=_env_float("ANVIKSHA_AI_TIMEOUT_SECONDS", cls.timeout_seconds),
            timezone=(os.getenv("ANVIKSHA_TIMEZONE") or cls.timezone).strip(),
            openfda_base_url=(os.getenv("OPENFDA_BASE_URL") or cls.openfda_base_url).rstrip("/"),
        )
