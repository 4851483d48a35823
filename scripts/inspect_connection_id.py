#!/usr/bin/env python3
"""
Open a Jira connection id (sealed session blob) and optionally call /myself with it.

Usage:
  ENCRYPTION_KEY=... python scripts/inspect_connection_id.py <connection-id> [--call]
Tokens are masked in the output.
"""
import argparse
import sys
import time
from pathlib import Path

import httpx

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from src.backend.app.integrations.jira_cloud import api_url  # noqa: E402
from src.backend.app.sessions import JiraSession  # noqa: E402


def _mask(token: str) -> str:
    if not token:
        return "-"
    return f"{token[:6]}…{token[-4:]}" if len(token) > 12 else "***"


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("connection_id")
    parser.add_argument("--call", action="store_true", help="GET /rest/api/3/myself with the access token")
    args = parser.parse_args()

    session = JiraSession.from_connection_id(args.connection_id)
    if session is None:
        print("Could not open connection id (wrong ENCRYPTION_KEY or corrupted blob)")
        return 2

    remaining = (session.expires_at_ms - int(time.time() * 1000)) // 1000
    print(f"cloud id:      {session.cloud_id}")
    print(f"access token:  {_mask(session.access_token)}")
    print(f"refresh token: {_mask(session.refresh_token or '')}")
    print(f"expires in:    {remaining}s" + (" (expired)" if remaining <= 0 else ""))
    print(f"needs refresh: {session.needs_refresh()}")

    if args.call:
        r = httpx.get(
            api_url(session.cloud_id, "/rest/api/3/myself"),
            headers={"Authorization": f"Bearer {session.access_token}", "Accept": "application/json"},
            timeout=20,
        )
        print(f"/myself -> {r.status_code}: {r.text[:300]}")
        if r.status_code >= 400:
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
