import itertools

from sweeper.features.sweep.domain import DomainAggregate
from sweeper.features.sweep.pipeline.scoring.service import (
    ScoringService,
    calculate_confidence_score,
    categorize_service,
    generate_account_summary,
    get_service_logo_url,
    is_likely_spam,
    normalize_service_name,
)


def _aggregate(domain, subjects, senders=None, email_count=None):
    aggregate = DomainAggregate(domain=domain)
    aggregate.subjects = list(subjects)
    aggregate.from_addresses = list(senders or [f"hello@{domain}"])
    aggregate.email_count = email_count if email_count is not None else len(subjects)
    return aggregate


def test_signals_are_additive():
    score = calculate_confidence_score(
        "spotify.com",
        [
            "Welcome to Spotify! Account created",
            "Your receipt from Spotify",
            "Password reset for your Spotify account",
        ],
        ["Spotify <no-reply@spotify.com>"],
        3,
    )
    # onboarding 10 + transactional 7 + security 8 + automated sender 4
    # + own domain 3 + volume(>=2) 1
    assert score == 33


def test_each_signal_counts_once_per_domain():
    score = calculate_confidence_score(
        "gmail.com", ["verify your email", "Verify your email again"], ["friend@gmail.com"], 1
    )
    assert score == 9


def test_score_is_order_independent():
    subjects = [
        "Your invoice is ready",
        "Security alert",
        "Subscription renewed",
        "Welcome to Acme",
    ]
    senders = ["Acme <noreply@acme.io>", "Acme Billing <billing@acme.io>"]
    scores = {
        calculate_confidence_score("acme.io", perm, senders, 4)
        for perm in itertools.permutations(subjects)
    }
    assert len(scores) == 1


def test_volume_bands():
    def volume_only(email_count):
        return calculate_confidence_score("gmail.com", [], [], email_count)

    assert volume_only(1) == 0
    assert volume_only(2) == 1
    assert volume_only(5) == 2
    assert volume_only(10) == 4
    assert volume_only(20) == 6
    assert volume_only(500) == 6


def test_newsletter_is_spam_regardless_of_score():
    subjects = [
        "Welcome to Acme! Account created",
        "Verify your email",
        "Unsubscribe from our newsletter",
    ]
    assert calculate_confidence_score("acme.io", subjects, [], 30) > 0
    assert is_likely_spam("acme.io", subjects) is True


def test_bulk_mail_provider_domains_are_spam():
    assert is_likely_spam("mailchimpapp.net", ["Your receipt"]) is True
    assert is_likely_spam("sendgrid.net", []) is True
    assert is_likely_spam("spotify.com", ["Your receipt from Spotify"]) is False


def test_rank_filters_spam_and_sorts_stably():
    service = ScoringService()
    low_a = _aggregate("alpha.com", ["hello"])
    high = _aggregate("beta.com", ["Welcome to Beta", "Your receipt"])
    spam = _aggregate("gamma.com", ["Weekly newsletter", "Welcome to Gamma"])
    low_b = _aggregate("delta.com", ["hi"])

    ranked = service.rank([low_a, high, spam, low_b])

    assert [c.domain for c in ranked] == ["beta.com", "alpha.com", "delta.com"]
    assert ranked[1].confidence == ranked[2].confidence


def test_categorize_service():
    assert categorize_service("spotify.com", ["Your receipt"]) == "Streaming & Entertainment"
    assert categorize_service("facebook.com") == "Social Media"
    assert categorize_service("acme.io", ["Your order has shipped"]) == "Shopping & E-commerce"
    assert categorize_service("github.com") == "Productivity & Work"
    assert categorize_service("acme.io", ["hello"]) == "Other"


def test_normalize_service_name():
    assert normalize_service_name("spotify.com") == "Spotify"
    assert normalize_service_name("twitter.com") == "X (Twitter)"
    assert normalize_service_name("airtimetools.com") == "Airtimetools"
    assert normalize_service_name("") == "Unknown Service"


def test_logo_url_and_summary_text():
    assert get_service_logo_url("Spotify.com", "pk_123") == "https://img.logo.dev/spotify.com?token=pk_123"
    assert generate_account_summary(1, 0) == "Found 1 account"
    assert generate_account_summary(12, 2) == "Found 12 accounts, 2 breaches detected"
    assert generate_account_summary(3, 1) == "Found 3 accounts, 1 breach detected"
