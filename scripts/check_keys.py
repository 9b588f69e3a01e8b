#!/usr/bin/env python3
"""Probe every configured AI key and report whether it is usable.

Keys come from the same place the backend reads them: the device store at
ANVIKSHA_DB_PATH first, then GEMINI_API_KEYS / GEMINI_API_KEY / API_KEY.
A quota-limited key is still a valid key.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path


def _backend_on_path() -> None:
    backend_dir = Path(__file__).resolve().parents[1] / "backend"
    if str(backend_dir) not in sys.path:
        sys.path.insert(0, str(backend_dir))


async def probe_all(keys: list[str], model: str) -> list[dict[str, str]]:
    from anviksha_ai import AISettings, GeminiTransport, ResilientInvoker, mask_credential
    from anviksha_ai.credentials import CredentialStore
    from anviksha_store import LocalStateDB

    settings = AISettings.from_env()
    db = LocalStateDB(os.getenv("ANVIKSHA_DB_PATH", str(Path(__file__).resolve().parents[1] / "backend/anviksha.sqlite")))
    store = CredentialStore(db)
    invoker = ResilientInvoker(
        store,
        GeminiTransport(base_url=settings.api_base_url, timeout_seconds=settings.timeout_seconds),
        timeout_seconds=settings.timeout_seconds,
    )
    candidates = keys or store.resolve_credentials()
    results: list[dict[str, str]] = []
    for key in candidates:
        status = await invoker.probe(key, model=model or settings.chat_model)
        results.append({"key": mask_credential(key), "status": status.value})
    return results


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("keys", nargs="*", help="Keys to probe instead of the configured ones.")
    parser.add_argument("--model", default="", help="Model to probe with (defaults to ANVIKSHA_CHAT_MODEL).")
    args = parser.parse_args()

    _backend_on_path()
    results = asyncio.run(probe_all(args.keys, args.model))
    if not results:
        print("No AI keys configured.")
        return 2
    print(json.dumps(results, indent=2))
    usable = [item for item in results if item["status"] in {"valid", "quota_limited"}]
    print(f"Usable keys: {len(usable)}/{len(results)}")
    return 0 if usable else 1


if __name__ == "__main__":
    raise SystemExit(main())
