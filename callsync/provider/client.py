"""Provider call-listing client - one HTTP call per page."""

import logging
from datetime import datetime

import httpx
from pydantic import ValidationError

from callsync.config import settings
from callsync.schemas.calls import CallRecord, ProviderCall

logger = logging.getLogger(__name__)

RETENTION_MARKERS = ("retention", "subscription plan")


class ProviderError(Exception):
    """Provider request failed (transport error or non-2xx response)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RetentionLimitError(ProviderError):
    """Requested window is older than the provider plan retains."""


def _iso(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


def parse_calls(payload: object) -> list[CallRecord]:
    """Map a raw call-listing body to CallRecords, skipping malformed entries."""
    if not isinstance(payload, list):
        logger.warning("Provider returned non-list body (%s); treating as empty page", type(payload).__name__)
        return []
    records: list[CallRecord] = []
    for raw in payload:
        try:
            records.append(ProviderCall.model_validate(raw).to_record())
        except ValidationError as exc:
            call_id = raw.get("id") if isinstance(raw, dict) else None
            logger.warning("Skipping malformed provider call %s: %s", call_id, exc.error_count())
    return records


class ProviderClient:
    """Thin typed wrapper over GET /call."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._client = http_client or httpx.AsyncClient(
            base_url=(base_url or settings.provider_base_url).rstrip("/"),
            timeout=timeout or settings.provider_timeout_seconds,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def list_calls(
        self,
        api_key: str,
        limit: int,
        started_after: datetime | None = None,
        started_before: datetime | None = None,
    ) -> list[CallRecord]:
        """
        Fetch one page of calls, newest first.
        Raises RetentionLimitError for windows beyond the plan's retention,
        ProviderError for any other failure.
        """
        params: dict[str, str | int] = {"limit": limit}
        if started_after is not None:
            params["createdAtGt"] = _iso(started_after)
        if started_before is not None:
            params["createdAtLt"] = _iso(started_before)

        try:
            response = await self._client.get(
                "/call",
                params=params,
                headers={"Authorization": f"Bearer {api_key}"},
            )
        except httpx.HTTPError as exc:
            raise ProviderError(f"Provider request failed: {exc.__class__.__name__}") from exc

        if response.status_code == 400 and any(m in response.text for m in RETENTION_MARKERS):
            raise RetentionLimitError("Requested window exceeds provider retention", 400)
        if not response.is_success:
            raise ProviderError(
                f"Provider responded with HTTP {response.status_code}", response.status_code
            )

        try:
            payload = response.json()
        except ValueError:
            logger.warning("Provider returned a non-JSON body; treating as empty page")
            return []
        return parse_calls(payload)
