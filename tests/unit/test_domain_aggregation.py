from datetime import UTC, datetime

import pytest

from sweeper.features.sweep.pipeline.aggregation import (
    DomainAggregationService,
    ServiceResolutionError,
)


@pytest.mark.asyncio
async def test_spotify_mailbox_produces_one_scored_service(fake_catalog, make_metadata):
    messages = [
        make_metadata(
            "Spotify <no-reply@spotify.com>",
            "Welcome to Spotify! Account created",
            datetime(2023, 5, 1, tzinfo=UTC),
        ),
        make_metadata(
            "Spotify <no-reply@spotify.com>",
            "Your receipt from Spotify",
            datetime(2024, 2, 1, tzinfo=UTC),
        ),
        make_metadata(
            "Spotify <no-reply@spotify.com>",
            "Password reset for your Spotify account",
            datetime(2023, 9, 1, tzinfo=UTC),
        ),
    ]
    service = DomainAggregationService(fake_catalog, logo_token="pk_test")

    ranked = await service.aggregate(messages)

    assert len(ranked) == 1
    candidate = ranked[0]
    assert candidate.domain == "spotify.com"
    assert candidate.aggregate.email_count == 3
    assert candidate.aggregate.first_seen_at == datetime(2023, 5, 1, tzinfo=UTC)
    assert candidate.aggregate.last_seen_at == datetime(2024, 2, 1, tzinfo=UTC)
    assert candidate.confidence >= 10 + 7 + 8
    assert candidate.display_name == "Spotify"
    assert candidate.category == "Streaming & Entertainment"

    assert [s.domain for s in fake_catalog.created] == ["spotify.com"]
    created = fake_catalog.created[0]
    assert created.name == "Spotify"
    assert created.logo_url == "https://img.logo.dev/spotify.com?token=pk_test"
    assert created.default_privacy_email == "privacy@spotify.com"
    assert candidate.service_id == fake_catalog.services["spotify.com"].id


@pytest.mark.asyncio
async def test_existing_services_are_reused_and_cached(fake_catalog, make_metadata):
    existing = fake_catalog.seed("github.com", name="GitHub")
    messages = [
        make_metadata("GitHub <noreply@github.com>", "Security alert"),
        make_metadata("notifications@reply.github.com", "Verify your email"),
    ]
    service = DomainAggregationService(fake_catalog)

    ranked = await service.aggregate(messages)
    await service.aggregate(messages)

    assert [c.service_id for c in ranked] == [existing.id]
    assert fake_catalog.created == []
    assert fake_catalog.lookups == ["github.com"]


@pytest.mark.asyncio
async def test_observed_contact_addresses_raise_confidence(fake_catalog, make_metadata):
    messages = [
        make_metadata("Acme Support <support@acme.io>", "Your ticket"),
        make_metadata("Acme <privacy@acme.io>", "Privacy policy update"),
        make_metadata("Beta <noreply@beta.io>", "Welcome to Beta"),
    ]
    service = DomainAggregationService(fake_catalog)

    ranked = {c.domain: c.aggregate for c in await service.aggregate(messages)}

    acme = ranked["acme.io"]
    assert acme.support_email == "support@acme.io"
    assert acme.privacy_email == "privacy@acme.io"
    assert acme.contact_confidence == "high"
    assert fake_catalog.services["acme.io"].default_privacy_email == "privacy@acme.io"

    beta = ranked["beta.io"]
    assert beta.support_email == "support@beta.io"
    assert beta.privacy_email == "privacy@beta.io"
    assert beta.contact_confidence == "low"


@pytest.mark.asyncio
async def test_spam_domains_are_dropped_after_resolution(fake_catalog, make_metadata):
    messages = [
        make_metadata("News <news@acme.io>", "Our weekly newsletter"),
        make_metadata("Beta <noreply@beta.io>", "Welcome to Beta"),
        make_metadata("Unknown sender", "No address"),
    ]
    service = DomainAggregationService(fake_catalog)

    ranked = await service.aggregate(messages)

    assert [c.domain for c in ranked] == ["beta.io"]


@pytest.mark.asyncio
async def test_catalog_failure_is_fatal(fake_catalog, make_metadata):
    fake_catalog.fail_create = RuntimeError("insert failed")
    service = DomainAggregationService(fake_catalog)

    with pytest.raises(ServiceResolutionError) as exc_info:
        await service.aggregate([make_metadata("hi@acme.io", "Welcome to Acme")])

    assert exc_info.value.domain == "acme.io"
    assert exc_info.value.kind == "service_resolution"
