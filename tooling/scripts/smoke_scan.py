#!/usr/bin/env python3
"""Smoke test for the scan -> reward flow.

Usage (HTTP, against a running service and its real record store):
    python tooling/scripts/smoke_scan.py --base-url http://localhost:8000 --code <MEMBER_CODE>

Usage (in-process, seeded in-memory store, no network sockets required):
    python tooling/scripts/smoke_scan.py --in-process

The in-process run seeds one member one scan away from a reward and checks:
1. API health (`/healthz`)
2. A scan that crosses the reward threshold (`POST /api/v1/scans`)
3. An unknown code is rejected with 404
4. Observability counters (`/api/v1/observability/rewards`)
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any

import httpx
from httpx import ASGITransport


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Rewards scan smoke test")
    parser.add_argument("--base-url", default="http://localhost:8000", help="Ignored with --in-process")
    parser.add_argument("--code", default="SMOKE-0001", help="Member code to scan")
    parser.add_argument("--timeout", type=float, default=10.0, help="Request timeout in seconds")
    parser.add_argument(
        "--in-process",
        action="store_true",
        help="Run against the ASGI app with a seeded in-memory store.",
    )
    return parser.parse_args()


def _build_in_process_app(code: str) -> Any:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from rewards_api.app import create_app  # type: ignore import-position
    from rewards_api.schemas.records import Collection  # type: ignore import-position
    from rewards_api.services.scans import ScanLedgerService  # type: ignore import-position
    from rewards_api.services.store import InMemoryRecordStore  # type: ignore import-position

    store = InMemoryRecordStore()
    store.seed(Collection.MEMBER_TYPES, [{"id": 1, "name": "Smoke", "scans_required": 3, "reward_type_id": 1, "total_scans": 0}])
    store.seed(
        Collection.MEMBERS,
        [{"id": 1, "qr_code": code, "name": "Smoke Member", "member_type_id": 1, "points": 2, "total_scans": 2}],
    )
    app = create_app()
    app.state.record_store = store
    app.state.scan_ledger = ScanLedgerService(store)
    return app


async def _run(args: argparse.Namespace) -> int:
    if args.in_process:
        transport: httpx.AsyncBaseTransport | None = ASGITransport(app=_build_in_process_app(args.code))
        base_url = "http://smoke"
    else:
        transport = None
        base_url = args.base_url

    async with httpx.AsyncClient(transport=transport, base_url=base_url, timeout=args.timeout) as client:
        health = await client.get("/healthz")
        health.raise_for_status()
        print(f"[ok] health: {health.json()['status']}")

        scan = await client.post("/api/v1/scans", json={"code": args.code})
        scan.raise_for_status()
        body = scan.json()
        print(f"[ok] scan: {body['memberName']} {body['pointsAfter']}/{body['scansRequiredForReward']}")
        if args.in_process and not body["rewardDue"]:
            print("[fail] expected the seeded member to earn a reward")
            return 1

        missing = await client.post("/api/v1/scans", json={"code": f"{args.code}-missing"})
        if missing.status_code != 404:
            print(f"[fail] unknown code returned {missing.status_code}")
            return 1
        print("[ok] unknown code rejected")

        counters = await client.get("/api/v1/observability/rewards")
        counters.raise_for_status()
        print(f"[ok] observability: {counters.json()['scans']}")
    return 0


def main() -> int:
    return asyncio.run(_run(parse_args()))


if __name__ == "__main__":
    sys.exit(main())
