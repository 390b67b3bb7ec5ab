import pytest

from sweeper.features.sweep.pipeline.aggregation.domains import (
    canonical_domain,
    canonicalize_host,
    extract_display_name,
    extract_email_address,
)


@pytest.mark.parametrize(
    "sender, expected",
    [
        ("alerts@facebookmail.com", "facebook.com"),
        ("no-reply@announce.airtimetools.com", "airtimetools.com"),
        ("notifications@mail.netflix.com", "netflix.com"),
        ("Spotify <no-reply@spotify.com>", "spotify.com"),
        ("GitHub <noreply@github.com>", "github.com"),
        ("someone@reply.github.com", "github.com"),
        ("receipts@email.eu.uber.com", "uber.com"),
        ("hello@auths.allgoodhq.app", "allgoodhq.app"),
        ("orders@www.shop.example.co.uk", "example.co.uk"),
        ("bounce@amazonses.com", "amazon.com"),
    ],
)
def test_canonical_domain_cases(sender, expected):
    assert canonical_domain(sender) == expected


@pytest.mark.parametrize(
    "sender",
    [
        "alerts@facebookmail.com",
        "no-reply@announce.airtimetools.com",
        "news@mail.example.com.au",
        "team@updates.app.example.io",
        "a@b.c.d.example.org",
        "x@em.team.co.uk",
        "x@news.support.com.au",
        "support.com.au",
    ],
)
def test_canonicalization_is_idempotent(sender):
    once = canonical_domain(sender)
    assert once is not None
    assert canonicalize_host(once) == once
    assert canonical_domain(once) == once


def test_bracketed_address_wins_over_bare_address():
    header = "billing@other.com via Service <accounts@service.com>"
    assert extract_email_address(header) == "accounts@service.com"
    assert canonical_domain(header) == "service.com"


def test_prefix_stripping_keeps_two_labels():
    # "support" is a noise prefix but only stripped while more than two labels remain
    assert canonicalize_host("support.com") == "support.com"
    assert canonicalize_host("www.support.com") == "support.com"


def test_unparseable_senders_have_no_domain():
    assert canonical_domain("") is None
    assert canonical_domain(None) is None
    assert canonical_domain("Mailer Daemon") is None
    assert extract_email_address("no address here") is None


def test_extract_display_name():
    assert extract_display_name('"Spotify" <no-reply@spotify.com>') == "Spotify"
    assert extract_display_name("Netflix <info@mail.netflix.com>") == "Netflix"
    assert extract_display_name("no-reply@spotify.com") is None
    assert extract_display_name("<no-reply@spotify.com>") is None


def test_prefix_label_is_kept_under_multipart_suffix():
    assert canonical_domain("x@em.team.co.uk") == "team.co.uk"
    assert canonical_domain("x@news.support.com.au") == "support.com.au"
