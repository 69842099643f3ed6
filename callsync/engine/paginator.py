"""Batch paginator - pulls a bounded number of calls across provider pages."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum

from callsync.config import settings
from callsync.provider.client import ProviderClient, ProviderError, RetentionLimitError
from callsync.schemas.calls import CallRecord

logger = logging.getLogger(__name__)


class FetchOutcome(str, Enum):
    """How a fetch ended."""

    COMPLETE = "complete"
    DEGRADED = "degraded"  # second retention failure, partial data
    FAILED = "failed"  # non-retention provider failure, caller discards records


@dataclass
class FetchResult:
    """Records pulled in one fetch plus how the fetch ended."""

    records: list[CallRecord] = field(default_factory=list)
    outcome: FetchOutcome = FetchOutcome.COMPLETE
    pages: int = 0
    retried: bool = False
    error: str | None = None


class _RetentionHit(Exception):
    def __init__(self, partial: FetchResult):
        self.partial = partial


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BatchPaginator:
    """Drives ProviderClient page by page with pacing and a retention fallback."""

    def __init__(
        self,
        client: ProviderClient,
        page_cap: int | None = None,
        pacing_delay: float | None = None,
        retention_days: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.client = client
        self.page_cap = settings.page_cap if page_cap is None else page_cap
        self.pacing_delay = settings.pacing_delay_seconds if pacing_delay is None else pacing_delay
        self.retention_days = settings.retention_fallback_days if retention_days is None else retention_days
        self._sleep = sleep
        self._clock = clock

    async def fetch(self, api_key: str, total_limit: int, since: datetime | None) -> FetchResult:
        """
        Fetch up to total_limit calls started after `since`, newest first.
        Never raises for provider failures; see FetchResult.outcome.
        """
        try:
            return await self._paginate(api_key, total_limit, since)
        except _RetentionHit:
            narrowed = self._clock() - timedelta(days=self.retention_days)
            logger.warning(
                "Retention limit hit; retrying with a %d-day window (since %s)",
                self.retention_days,
                narrowed.isoformat(),
            )

        try:
            result = await self._paginate(api_key, total_limit, narrowed)
        except _RetentionHit as hit:
            result = hit.partial
            result.outcome = FetchOutcome.DEGRADED
            result.error = "retention limit exceeded after narrowing window"
            logger.warning(
                "Retention limit hit again after narrowing; keeping %d partial records",
                len(result.records),
            )
        result.retried = True
        return result

    async def _paginate(
        self, api_key: str, total_limit: int, since: datetime | None
    ) -> FetchResult:
        result = FetchResult()
        cursor: datetime | None = None

        while len(result.records) < total_limit:
            if result.pages > 0:
                await self._sleep(self.pacing_delay)

            limit = min(self.page_cap, total_limit - len(result.records))
            try:
                page = await self.client.list_calls(
                    api_key, limit, started_after=since, started_before=cursor
                )
            except RetentionLimitError as exc:
                raise _RetentionHit(result) from exc
            except ProviderError as exc:
                logger.error("Aborting pagination after %d pages: %s", result.pages, exc)
                result.outcome = FetchOutcome.FAILED
                result.error = str(exc)
                return result

            result.pages += 1
            if not page:
                break
            page = page[:limit]
            result.records.extend(page)
            cursor = page[-1].started_at
            if len(page) < limit:
                break

        logger.info("Fetched %d calls in %d pages", len(result.records), result.pages)
        return result
