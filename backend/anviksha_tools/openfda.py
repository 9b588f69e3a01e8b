from __future__ import annotations

import logging
import os
import re
from dataclasses import asdict, dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

_EXCERPT_CHARS = 400


def _normalize_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def _first(values: Any) -> str | None:
    if isinstance(values, list) and values:
        text = _normalize_whitespace(str(values[0]))
        return text[:_EXCERPT_CHARS] or None
    return None


def _search_term(query: str) -> str:
    # OpenFDA search syntax treats quotes and colons as operators.
    cleaned = re.sub(r"[\"':+()\[\]]", " ", query)
    return _normalize_whitespace(cleaned)[:120]


@dataclass
class FDALabel:
    brand: str | None
    generic: str | None
    warnings: str | None
    adverse: str | None

    def as_prompt_row(self) -> dict[str, Any]:
        return asdict(self)


class OpenFDAClient:
    def __init__(
        self,
        *,
        base_url: str = "https://api.fda.gov",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.disable_external = os.getenv("ANVIKSHA_DISABLE_EXTERNAL_WEB", "false").lower() == "true"
        self.timeout = float(os.getenv("ANVIKSHA_FDA_TIMEOUT_SECONDS", "6.0"))
        self._client = client

    async def _get(self, params: dict[str, Any]) -> httpx.Response:
        url = f"{self.base_url}/drug/label.json"
        if self._client is not None:
            return await self._client.get(url, params=params, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.get(url, params=params)

    def _params(self, term: str, api_key: str | None, limit: int) -> dict[str, Any]:
        params: dict[str, Any] = {
            "search": f'openfda.brand_name:"{term}" openfda.substance_name:"{term}"',
            "limit": max(1, min(limit, 5)),
        }
        if api_key:
            params["api_key"] = api_key
        return params

    async def lookup_labels(self, query: str, *, api_key: str | None = None, limit: int = 3) -> list[FDALabel]:
        """Pull label excerpts for a drug or symptom query.

        Any failure yields an empty list; the pharmacy call then proceeds on
        model knowledge alone.
        """
        term = _search_term(query)
        if self.disable_external or not term:
            return []
        try:
            response = await self._get(self._params(term, api_key, limit))
            if response.status_code == 404:
                return []
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("OpenFDA lookup failed, continuing without label data: %s", exc)
            return []

        labels: list[FDALabel] = []
        for row in payload.get("results") or []:
            if not isinstance(row, dict):
                continue
            openfda = row.get("openfda") if isinstance(row.get("openfda"), dict) else {}
            labels.append(
                FDALabel(
                    brand=_first(openfda.get("brand_name")),
                    generic=_first(openfda.get("substance_name")) or _first(openfda.get("generic_name")),
                    warnings=_first(row.get("warnings")),
                    adverse=_first(row.get("adverse_reactions")),
                )
            )
        return labels[:limit]

    async def probe(self, api_key: str | None) -> bool:
        try:
            response = await self._get(self._params("paracetamol", api_key, 1))
        except httpx.HTTPError as exc:
            logger.info("OpenFDA probe failed: %s", exc)
            return False
        return response.status_code < 400 or response.status_code == 404
