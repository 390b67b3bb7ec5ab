"""
Concurrent metadata fetcher.

Resolves message ids to header metadata in fixed-size batches. Inside a batch
a small pool of worker coroutines share one cursor over the ids; each worker
paces itself and retries rate-limited requests with exponential backoff.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from typing import TypeVar

from sweeper.features.sweep.domain.models import MessageMetadata, MetadataFetchResult
from sweeper.infrastructure.observability.logging import get_logger
from sweeper.services.gmail.client import GmailClient
from sweeper.services.google_errors import AuthError, GoogleApiError, RateLimitError

logger = get_logger(__name__)

T = TypeVar("T")

BATCH_SIZE = 200
BATCH_DELAY_SECONDS = 0.5
CONCURRENCY = 5
REQUEST_DELAY_SECONDS = 0.05
MAX_ATTEMPTS = 5
BASE_BACKOFF_SECONDS = 1.0

Sleeper = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class FetchProgress:
    phase: str
    messages_processed: int
    total_messages: int
    percentage: int


ProgressCallback = Callable[[FetchProgress], Awaitable[None]]


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    max_attempts: int = MAX_ATTEMPTS,
    base_delay: float = BASE_BACKOFF_SECONDS,
    sleep: Sleeper = asyncio.sleep,
) -> T:
    """
    Retry ``func`` on RateLimitError with delays base, 2*base, 4*base, ...

    AuthError and any other error propagate on first occurrence. The last
    RateLimitError propagates once ``max_attempts`` calls have failed.
    """
    for attempt in range(max_attempts):
        try:
            return await func()
        except RateLimitError as e:
            if attempt == max_attempts - 1:
                raise
            delay = base_delay * (2**attempt)
            logger.info(
                "Rate limited fetching Gmail metadata, backing off",
                attempt=attempt + 1,
                max_attempts=max_attempts,
                delay_ms=int(delay * 1000),
                status_code=e.status_code,
            )
            await sleep(delay)

    raise RuntimeError("retry_with_backoff called with max_attempts < 1")


class MetadataFetcher:
    """Best-effort metadata resolution for a list of message ids."""

    def __init__(
        self,
        client: GmailClient,
        batch_size: int = BATCH_SIZE,
        concurrency: int = CONCURRENCY,
        batch_delay: float = BATCH_DELAY_SECONDS,
        request_delay: float = REQUEST_DELAY_SECONDS,
        max_attempts: int = MAX_ATTEMPTS,
        base_backoff: float = BASE_BACKOFF_SECONDS,
        sleep: Sleeper = asyncio.sleep,
    ):
        self._client = client
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.batch_delay = batch_delay
        self.request_delay = request_delay
        self.max_attempts = max_attempts
        self.base_backoff = base_backoff
        self._sleep = sleep

    async def fetch_metadata(
        self,
        access_token: str,
        message_ids: list[str],
        on_progress: ProgressCallback | None = None,
    ) -> MetadataFetchResult:
        """
        Fetch metadata for every id; ids that keep failing are skipped.

        Raises:
            AuthError: Any request reported invalid credentials. The whole
                fetch is abandoned so the caller can refresh and start over.
        """
        result = MetadataFetchResult()
        ids = [message_id for message_id in message_ids if message_id]
        if not ids:
            logger.info("No messages to process for metadata")
            return result

        total = len(ids)
        total_batches = (total + self.batch_size - 1) // self.batch_size
        start_time = time.monotonic()

        logger.info(
            "Fetching message metadata",
            total_messages=total,
            batch_size=self.batch_size,
            total_batches=total_batches,
        )

        for batch_number, offset in enumerate(range(0, total, self.batch_size), start=1):
            batch = ids[offset : offset + self.batch_size]
            batch_start = time.monotonic()

            await self._fetch_batch(access_token, batch, result)

            processed = offset + len(batch)
            percentage = round(processed / total * 100)
            logger.info(
                "Metadata batch done",
                batch_number=batch_number,
                total_batches=total_batches,
                fetched=len(result.messages),
                processed=processed,
                total_messages=total,
                percentage=percentage,
                batch_seconds=round(time.monotonic() - batch_start, 1),
            )

            if on_progress:
                await on_progress(
                    FetchProgress(
                        phase="processing_metadata",
                        messages_processed=processed,
                        total_messages=total,
                        percentage=percentage,
                    )
                )

            if processed < total:
                await self._sleep(self.batch_delay)

        if result.failed_ids:
            logger.warning(
                "Some messages were skipped",
                failed_count=len(result.failed_ids),
                total_messages=total,
            )

        logger.info(
            "Metadata fetch completed",
            fetched=len(result.messages),
            total_messages=total,
            elapsed_seconds=round(time.monotonic() - start_time, 1),
        )
        return result

    async def _fetch_batch(
        self, access_token: str, batch: list[str], result: MetadataFetchResult
    ) -> None:
        cursor = iter(batch)
        workers = [
            asyncio.create_task(self._worker(worker_id, access_token, cursor, result))
            for worker_id in range(1, min(self.concurrency, len(batch)) + 1)
        ]

        try:
            await asyncio.gather(*workers)
        except BaseException:
            # stop sibling workers before re-raising
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

    async def _worker(
        self,
        worker_id: int,
        access_token: str,
        cursor: Iterator[str],
        result: MetadataFetchResult,
    ) -> None:
        for message_id in cursor:
            try:
                metadata: MessageMetadata = await retry_with_backoff(
                    lambda: self._client.get_message_metadata(access_token, message_id),
                    max_attempts=self.max_attempts,
                    base_delay=self.base_backoff,
                    sleep=self._sleep,
                )
                result.messages.append(metadata)
            except AuthError:
                logger.error(
                    "Gmail auth error fetching metadata, aborting",
                    worker_id=worker_id,
                    message_id=message_id,
                )
                raise
            except GoogleApiError as e:
                result.failed_ids.append(message_id)
                logger.warning(
                    "Failed to fetch message metadata",
                    worker_id=worker_id,
                    message_id=message_id,
                    error_kind=e.kind,
                    status_code=e.status_code,
                )
            except Exception as e:
                result.failed_ids.append(message_id)
                logger.warning(
                    "Unreadable message metadata, skipping",
                    worker_id=worker_id,
                    message_id=message_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

            await self._sleep(self.request_delay)
