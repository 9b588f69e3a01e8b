#!/usr/bin/env python3
"""Live end-to-end smoke run against the configured AI provider.

Drives the FastAPI app in-process through chat, therapy, triage and pharmacy
and writes a markdown report. Needs at least one real key in the environment.
"""

from __future__ import annotations

import importlib
import json
import os
import sys
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from fastapi.testclient import TestClient


@dataclass
class Scenario:
    name: str
    run: Callable[[TestClient], Any]
    check: Callable[[Any], str | None]


def _chat(client: TestClient) -> Any:
    client.post("/conversations/chat/sessions")
    return client.post("/conversations/chat/messages", data={"text": "I have a dry cough for five days. What should I watch for?"})


def _therapy(client: TestClient) -> Any:
    client.post("/conversations/therapy/sessions")
    return client.post("/conversations/therapy/messages", data={"text": "I have been feeling overwhelmed at work."})


def _triage(client: TestClient) -> Any:
    client.post("/navigation/open", json={"screen": "triage"})
    return client.post("/navigation/triage", data={"cough_duration": "> 3 Weeks", "fever": "true", "weight_loss": "true"})


def _pharmacy(client: TestClient) -> Any:
    return client.post("/pharmacy", json={"query": "fever and body ache", "include_profile": False})


def _check_reply(response: Any) -> str | None:
    if response.status_code != 200:
        return f"HTTP {response.status_code}"
    body = response.json()
    if body.get("failed"):
        return f"reply failed ({body.get('errorCode')})"
    if not (body.get("reply") or {}).get("text"):
        return "empty reply"
    return None


def _check_triage(response: Any) -> str | None:
    if response.status_code != 200:
        return f"HTTP {response.status_code}"
    body = response.json()
    if body.get("screen") != "triage-result":
        return f"stayed on {body.get('screen')}: {body.get('error')}"
    return None


def _check_pharmacy(response: Any) -> str | None:
    if response.status_code != 200:
        return f"HTTP {response.status_code}: {response.json().get('code')}"
    if not response.json().get("medicines"):
        return "no medicines suggested"
    return None


SCENARIOS = [
    Scenario("Chat reply", _chat, _check_reply),
    Scenario("Therapy reply", _therapy, _check_reply),
    Scenario("Triage scoring", _triage, _check_triage),
    Scenario("Pharmacy suggestion", _pharmacy, _check_pharmacy),
]


def run() -> int:
    repo_root = Path(__file__).resolve().parents[1]
    backend_dir = repo_root / "backend"
    if str(backend_dir) not in sys.path:
        sys.path.insert(0, str(backend_dir))

    # Isolated device state so the smoke run never touches real records.
    os.environ["ANVIKSHA_DB_PATH"] = str(Path(tempfile.mkdtemp(prefix="anviksha-smoke-")) / "smoke.sqlite")

    backend_module = importlib.import_module("main")
    backend_module = importlib.reload(backend_module)
    if not backend_module.container.credentials.is_configured():
        print("No AI keys configured; set GEMINI_API_KEYS or GEMINI_API_KEY.")
        return 2

    results: list[dict[str, Any]] = []
    with TestClient(backend_module.app) as client:
        for scenario in SCENARIOS:
            response = scenario.run(client)
            error = scenario.check(response)
            try:
                body = response.json()
            except ValueError:
                body = {"raw": response.text[:500]}
            results.append({"name": scenario.name, "pass": error is None, "error": error, "body": body})

    passed = sum(1 for item in results if item["pass"])
    lines = [
        "# Anviksha E2E Smoke Report",
        "",
        f"- Timestamp (UTC): `{datetime.now(timezone.utc).isoformat()}`",
        f"- Keys configured: `{len(backend_module.container.credentials.resolve_credentials())}`",
        f"- Passed: `{passed}/{len(results)}`",
        "",
    ]
    for item in results:
        lines.append(f"## {'PASS' if item['pass'] else 'FAIL'} - {item['name']}")
        if item["error"]:
            lines.append(f"- Error: `{item['error']}`")
        lines.append("```json")
        lines.append(json.dumps(item["body"], indent=2, ensure_ascii=True)[:4000])
        lines.append("```")
        lines.append("")

    report_path = repo_root / "E2E_SMOKE_REPORT.md"
    report_path.write_text("\n".join(lines), encoding="utf-8")
    print(f"Wrote report: {report_path}")
    print(f"Passed {passed}/{len(results)} scenarios.")
    return 0 if passed == len(results) else 1


if __name__ == "__main__":
    raise SystemExit(run())
