#!/usr/bin/env python3
"""
Seed script: loads tenants from a dashboard JSON export, or creates one demo tenant.
Run after migrations:
    python scripts/seed.py                     # demo tenant
    python scripts/seed.py data/database.json  # import an export
"""

import asyncio
import json
import os
import sys
from datetime import datetime, timezone

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from callsync.database import async_session_maker
from callsync.storage.repositories import write_document


DEMO_DOCUMENT = {
    "clients": [
        {
            "tenant_id": "c_demo",
            "name": "Demo Tenant",
            "email": "demo@example.com",
            "created_at": "2025-01-15T00:00:00Z",
            "minute_limit": 1000,
            "used_minutes": 0,
            "overages_enabled": False,
            "webhook_url": None,
            "provider_api_key": os.environ.get("DEMO_PROVIDER_API_KEY"),
        }
    ],
    "callCache": {},
}

# Dashboard export field -> tenant column
LEGACY_CLIENT_FIELDS = {
    "id": "tenant_id",
    "name": "name",
    "email": "email",
    "createdAt": "created_at",
    "minuteLimit": "minute_limit",
    "usedMinutes": "used_minutes",
    "overagesEnabled": "overages_enabled",
    "webhookUrl": "webhook_url",
    "vapiApiKey": "provider_api_key",
}


def convert_legacy(document: dict) -> dict:
    """Translate a dashboard export (camelCase clients, Call objects) into the store shape."""
    clients = []
    for client in document.get("clients") or []:
        if "tenant_id" in client:
            clients.append(client)
            continue
        converted = {new: client.get(old) for old, new in LEGACY_CLIENT_FIELDS.items()}
        converted["overages_enabled"] = bool(converted["overages_enabled"])
        converted["notifications"] = [
            {
                "id": n["id"],
                "title": n["title"],
                "message": n["message"],
                "kind": n.get("type", "info"),
                "created_at": n["date"],
                "read": n.get("read", False),
                "delivered": n.get("webhookSent", False),
            }
            for n in client.get("notifications") or []
        ]
        clients.append(converted)

    call_cache = {}
    for tenant_id, entry in (document.get("callCache") or {}).items():
        calls = []
        for call in entry.get("calls") or []:
            calls.append(
                {
                    "id": call["id"],
                    "started_at": call.get("startedAt") or call.get("started_at"),
                    "duration_seconds": call.get("durationSeconds", call.get("duration_seconds", 0)),
                    "end_reason": call.get("endReason", call.get("end_reason", "error")),
                    "status": call.get("status", "completed"),
                    "customer_phone": call.get("customerPhone", call.get("customer_phone", "Unknown")),
                    "assistant_id": call.get("assistantId", call.get("assistant_id", "Unknown")),
                    "recording_url": call.get("recordingUrl", call.get("recording_url")),
                    "transcript": call.get("transcript"),
                    "summary": call.get("summary"),
                    "cost": call.get("cost", 0),
                }
            )
        call_cache[tenant_id] = {"lastSync": entry.get("lastSync"), "calls": calls}
    return {"clients": clients, "callCache": call_cache}


async def seed(path: str | None) -> None:
    if path:
        with open(path, encoding="utf-8") as fh:
            document = convert_legacy(json.load(fh))
    else:
        document = DEMO_DOCUMENT

    async with async_session_maker() as session, session.begin():
        written = await write_document(session, document)

    print(f"Seed complete! {written} tenant(s) written at {datetime.now(timezone.utc).isoformat()}")
    print("Trigger a sync with:")
    print("  curl -X POST http://localhost:8000/v1/sync -H \"x-api-key: $MASTER_API_KEY\"")


if __name__ == "__main__":
    asyncio.run(seed(sys.argv[1] if len(sys.argv) > 1 else None))
