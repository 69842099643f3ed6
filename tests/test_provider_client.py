"""Unit tests for the provider call-listing client."""

from datetime import datetime, timezone

import httpx
import pytest

from callsync.provider.client import ProviderClient, ProviderError, RetentionLimitError, parse_calls
from callsync.schemas.calls import CallStatus, EndReason


def client_for(handler) -> ProviderClient:
    http = httpx.AsyncClient(base_url="https://provider.test", transport=httpx.MockTransport(handler))
    return ProviderClient(http_client=http)


def test_parse_maps_provider_shape():
    """Provider JSON maps onto CallRecord fields."""
    records = parse_calls(
        [
            {
                "id": "call_1",
                "status": "ended",
                "startedAt": "2026-03-20T10:00:00.000Z",
                "durationSeconds": 95,
                "endedReason": "customer-ended-call",
                "customer": {"number": "+61400000000"},
                "assistantId": "asst_9",
                "recordingUrl": "https://rec.example/1.wav",
                "transcript": "Hello",
                "cost": 0.42,
            }
        ]
    )
    assert len(records) == 1
    call = records[0]
    assert call.id == "call_1"
    assert call.started_at == datetime(2026, 3, 20, 10, 0, tzinfo=timezone.utc)
    assert call.duration_seconds == 95
    assert call.end_reason is EndReason.CUSTOMER_ENDED
    assert call.status is CallStatus.COMPLETED
    assert call.customer_phone == "+61400000000"
    assert call.cost == 0.42


def test_parse_defaults_and_fallbacks():
    """Duration derives from endedAt; status, reason, phone and transcript fall back."""
    records = parse_calls(
        [
            {
                "id": "call_2",
                "status": "in-progress",
                "startedAt": "2026-03-20T10:00:00Z",
                "endedAt": "2026-03-20T10:02:30Z",
                "endedReason": "silence-timed-out",
                "analysis": {"summary": "Caller asked about hours"},
            },
            {
                "id": "call_3",
                "status": "failed",
                "startedAt": "2026-03-20T09:00:00Z",
                "endedReason": "assistant-said-end-call-phrase",
                "durationSeconds": -5,
            },
        ]
    )
    first, second = records
    assert first.duration_seconds == 150
    assert first.status is CallStatus.ONGOING
    assert first.end_reason is EndReason.SILENCE_TIMEOUT
    assert first.customer_phone == "Unknown"
    assert first.transcript == "Caller asked about hours"
    assert second.duration_seconds == 0
    assert second.status is CallStatus.FAILED
    assert second.end_reason is EndReason.ASSISTANT_ENDED


def test_parse_skips_malformed_calls():
    """Calls without an id or a valid startedAt are dropped, others kept."""
    records = parse_calls(
        [
            {"startedAt": "2026-03-20T10:00:00Z"},
            {"id": "bad_ts", "startedAt": "not-a-date"},
            {"id": "ok", "startedAt": "2026-03-20T10:00:00Z", "endedReason": "pipeline-error"},
            "garbage",
        ]
    )
    assert [r.id for r in records] == ["ok"]
    assert records[0].end_reason is EndReason.ERROR


def test_parse_non_list_is_empty():
    assert parse_calls({"error": "unexpected"}) == []


@pytest.mark.asyncio
async def test_list_calls_sends_window_and_auth():
    """Window bounds go out as createdAtGt/createdAtLt with a bearer token."""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json=[])

    client = client_for(handler)
    await client.list_calls(
        "key_abc",
        250,
        started_after=datetime(2026, 3, 1, tzinfo=timezone.utc),
        started_before=datetime(2026, 3, 20, 8, 30, tzinfo=timezone.utc),
    )
    await client.aclose()

    assert seen["path"] == "/call"
    assert seen["auth"] == "Bearer key_abc"
    assert seen["params"] == {
        "limit": "250",
        "createdAtGt": "2026-03-01T00:00:00Z",
        "createdAtLt": "2026-03-20T08:30:00Z",
    }


@pytest.mark.asyncio
async def test_retention_error_detected():
    """HTTP 400 mentioning retention raises RetentionLimitError."""

    def handler(request):
        return httpx.Response(400, json={"message": "Query exceeds your plan's data retention"})

    client = client_for(handler)
    with pytest.raises(RetentionLimitError):
        await client.list_calls("key_abc", 10)


@pytest.mark.asyncio
async def test_other_http_error_raises_provider_error():
    """Non-retention failures raise ProviderError with the status code."""

    def handler(request):
        return httpx.Response(500, text="internal")

    client = client_for(handler)
    with pytest.raises(ProviderError) as exc_info:
        await client.list_calls("key_abc", 10)
    assert not isinstance(exc_info.value, RetentionLimitError)
    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_transport_error_raises_provider_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = client_for(handler)
    with pytest.raises(ProviderError):
        await client.list_calls("key_abc", 10)
