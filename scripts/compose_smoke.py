#!/usr/bin/env python3
from __future__ import annotations

import json
import os
import sys
import time

from urllib.request import Request, urlopen
from urllib.error import URLError


def main() -> int:
    base_url = os.getenv("DOCASSIST_API_URL", "http://localhost:8000")
    health = f"{base_url.rstrip('/')}/healthz"
    status = f"{base_url.rstrip('/')}/status"
    api_key = os.getenv("DOCASSIST_API_KEY")
    try:
        with urlopen(health, timeout=5) as r:
            print("/healthz:", r.read().decode("utf-8"))
        # Give the service a moment to finish boot
        time.sleep(0.5)
        headers = {"X-API-Key": api_key} if api_key else {}
        with urlopen(Request(status, headers=headers), timeout=5) as r2:
            payload = json.loads(r2.read().decode("utf-8"))
            print("/status:", json.dumps(payload))
    except (URLError, Exception) as exc:
        print(f"Smoke check failed: {exc}", file=sys.stderr)
        return 1
    if not payload.get("status", {}).get("initialized"):
        print("Smoke check failed: remote client not initialised (missing API key?)", file=sys.stderr)
        return 1
    print("Smoke check passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
