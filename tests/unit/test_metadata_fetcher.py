import asyncio

import pytest

from sweeper.features.sweep.domain import MessageMetadata
from sweeper.services.gmail.metadata_fetcher import MetadataFetcher, retry_with_backoff
from sweeper.services.google_errors import AuthError, FetchError, RateLimitError


class FlakyGmailClient:
    """Per-id scripted failures; every other id resolves immediately."""

    def __init__(self, failures: dict[str, list[Exception]] | None = None):
        self.failures = {k: list(v) for k, v in (failures or {}).items()}
        self.calls: list[str] = []

    async def get_message_metadata(self, access_token, message_id):
        self.calls.append(message_id)
        await asyncio.sleep(0)
        queued = self.failures.get(message_id)
        if queued:
            raise queued.pop(0)
        return MessageMetadata(id=message_id, sender=f"x@{message_id}.com", subject="hi")


def _rate_limited():
    return RateLimitError("Rate limit exceeded", status_code=429)


@pytest.mark.asyncio
async def test_backoff_delays_double_until_success(recorded_sleeps):
    attempts = {"n": 0}

    async def flaky():
        attempts["n"] += 1
        if attempts["n"] < 4:
            raise _rate_limited()
        return "ok"

    result = await retry_with_backoff(flaky, sleep=recorded_sleeps)

    assert result == "ok"
    assert recorded_sleeps.delays == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
async def test_fifth_rate_limit_propagates_without_sixth_attempt(recorded_sleeps):
    attempts = {"n": 0}

    async def always_limited():
        attempts["n"] += 1
        raise _rate_limited()

    with pytest.raises(RateLimitError):
        await retry_with_backoff(always_limited, sleep=recorded_sleeps)

    assert attempts["n"] == 5
    assert [int(d * 1000) for d in recorded_sleeps.delays] == [1000, 2000, 4000, 8000]


@pytest.mark.asyncio
async def test_auth_and_fetch_errors_are_not_retried(recorded_sleeps):
    for error in (AuthError("expired", status_code=401), FetchError("boom", status_code=500)):
        attempts = {"n": 0}

        async def failing():
            attempts["n"] += 1
            raise error

        with pytest.raises(type(error)):
            await retry_with_backoff(failing, sleep=recorded_sleeps)
        assert attempts["n"] == 1

    assert recorded_sleeps.delays == []


@pytest.mark.asyncio
async def test_fetches_all_ids_in_batches_with_progress(recorded_sleeps):
    client = FlakyGmailClient()
    fetcher = MetadataFetcher(client, batch_size=200, sleep=recorded_sleeps)
    ids = [f"id{i}" for i in range(450)]
    progress = []

    async def on_progress(update):
        progress.append((update.messages_processed, update.total_messages, update.percentage))

    result = await fetcher.fetch_metadata("token", ids, on_progress)

    assert sorted(m.id for m in result.messages) == sorted(ids)
    assert result.failed_ids == []
    assert progress == [(200, 450, 44), (400, 450, 89), (450, 450, 100)]
    # two pauses between three batches, plus one pacing delay per request
    assert recorded_sleeps.delays.count(0.5) == 2
    assert recorded_sleeps.delays.count(0.05) == 450


@pytest.mark.asyncio
async def test_failed_items_are_skipped_and_reported(recorded_sleeps):
    client = FlakyGmailClient(
        failures={
            "bad": [FetchError("not found", status_code=404)],
            "slow": [_rate_limited(), _rate_limited()],
        }
    )
    fetcher = MetadataFetcher(client, sleep=recorded_sleeps)

    result = await fetcher.fetch_metadata("token", ["a", "bad", "slow", "b"])

    assert sorted(m.id for m in result.messages) == ["a", "b", "slow"]
    assert result.failed_ids == ["bad"]
    assert client.calls.count("bad") == 1
    assert client.calls.count("slow") == 3
    assert [d for d in recorded_sleeps.delays if d >= 1] == [1.0, 2.0]


@pytest.mark.asyncio
async def test_unexpected_item_error_is_skipped_not_fatal(recorded_sleeps):
    client = FlakyGmailClient(failures={"bad": [ValueError("unexpected payload shape")]})
    fetcher = MetadataFetcher(client, sleep=recorded_sleeps)

    result = await fetcher.fetch_metadata("token", ["ok1", "bad", "ok2", "ok3"])

    assert sorted(m.id for m in result.messages) == ["ok1", "ok2", "ok3"]
    assert result.failed_ids == ["bad"]
    assert client.calls.count("bad") == 1


@pytest.mark.asyncio
async def test_auth_error_aborts_whole_fetch(recorded_sleeps):
    client = FlakyGmailClient(failures={"id3": [AuthError("Invalid Credentials", status_code=401)]})
    fetcher = MetadataFetcher(client, batch_size=10, sleep=recorded_sleeps)
    ids = [f"id{i}" for i in range(40)]

    with pytest.raises(AuthError):
        await fetcher.fetch_metadata("token", ids)

    assert client.calls.count("id3") == 1
    assert not any(call in client.calls for call in ("id10", "id20", "id30"))
    assert 0.5 not in recorded_sleeps.delays


@pytest.mark.asyncio
async def test_empty_input_does_nothing(recorded_sleeps):
    client = FlakyGmailClient()
    result = await MetadataFetcher(client, sleep=recorded_sleeps).fetch_metadata("token", [])

    assert result.messages == []
    assert client.calls == []
