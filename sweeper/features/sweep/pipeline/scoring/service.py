"""
Account-likelihood scoring - ranks domain aggregates and drops bulk mail.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from sweeper.features.sweep.domain.models import DomainAggregate, ScoredCandidate
from sweeper.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

LOGO_BASE_URL = "https://img.logo.dev"

# (pattern over subjects, weight). Each signal counts once per domain.
SUBJECT_SIGNALS: tuple[tuple[re.Pattern[str], int], ...] = (
    (re.compile(r"account created|welcome to|registration successful|you're all set"), 10),
    (re.compile(r"verify your email|confirm your email|verify your account"), 9),
    (re.compile(r"password reset|security alert|two-factor|2fa|verification code"), 8),
    (re.compile(r"receipt|order confirmation|invoice|payment received|purchase"), 7),
    (re.compile(r"subscription|trial started|billing|renewed"), 6),
    (re.compile(r"account closed|account deletion|reactivate"), 5),
)

AUTOMATED_SENDER_RE = re.compile(r"noreply@|no-reply@|notifications@|accounts@")
AUTOMATED_SENDER_WEIGHT = 4

FREEMAIL_DOMAIN_RE = re.compile(r"(gmail|yahoo|hotmail|outlook|aol|icloud)\.com")
OWN_DOMAIN_WEIGHT = 3

# (minimum email count, bonus), highest band first.
VOLUME_BANDS: tuple[tuple[int, int], ...] = ((20, 6), (10, 4), (5, 2), (2, 1))

SPAM_SUBJECT_RE = re.compile(
    r"unsubscribe|newsletter|digest|weekly summary|promotional|limited time offer"
    r"|act now|click here",
    re.IGNORECASE,
)
SPAM_DOMAINS = ("mailchimp", "sendgrid", "constantcontact")

CATEGORY_RULES: tuple[tuple[str, re.Pattern[str]], ...] = (
    (
        "Social Media",
        re.compile(r"facebook|instagram|twitter|tiktok|snapchat|linkedin|reddit|pinterest"),
    ),
    (
        "Streaming & Entertainment",
        re.compile(r"netflix|spotify|hulu|disney|hbo|youtube|twitch|pandora|music"),
    ),
    ("Shopping & E-commerce", re.compile(r"amazon|ebay|etsy|shopify|walmart|target|shop|store")),
    ("Financial & Payments", re.compile(r"paypal|venmo|stripe|bank|cash|robinhood|coinbase|payment")),
    ("Productivity & Work", re.compile(r"slack|notion|dropbox|github|zoom|asana|trello|figma|docs")),
    ("Travel & Transportation", re.compile(r"airbnb|booking|expedia|uber|lyft|hotel|flight|travel")),
    ("Food & Delivery", re.compile(r"doordash|ubereats|grubhub|postmates|food|delivery|restaurant")),
    ("Gaming", re.compile(r"steam|epic|playstation|xbox|nintendo|gaming|game")),
    ("Health & Fitness", re.compile(r"fitness|health|gym|peloton|strava|workout")),
    ("News & Media", re.compile(r"news|medium|substack|times|post|journalism")),
    ("Email & Communication", re.compile(r"gmail|outlook|yahoo|mail|email")),
)
SHOPPING_SUBJECT_RE = re.compile(r"order|purchase|shipped|delivered")
DEFAULT_CATEGORY = "Other"

KNOWN_SERVICES = {
    "amazon.com": "Amazon",
    "amazon.co.uk": "Amazon UK",
    "google.com": "Google",
    "apple.com": "Apple",
    "microsoft.com": "Microsoft",
    "facebook.com": "Facebook",
    "instagram.com": "Instagram",
    "twitter.com": "X (Twitter)",
    "x.com": "X (Twitter)",
    "linkedin.com": "LinkedIn",
    "tiktok.com": "TikTok",
    "reddit.com": "Reddit",
    "discord.com": "Discord",
    "netflix.com": "Netflix",
    "spotify.com": "Spotify",
    "hulu.com": "Hulu",
    "disneyplus.com": "Disney+",
    "youtube.com": "YouTube",
    "twitch.tv": "Twitch",
    "slack.com": "Slack",
    "notion.so": "Notion",
    "dropbox.com": "Dropbox",
    "zoom.us": "Zoom",
    "github.com": "GitHub",
    "gitlab.com": "GitLab",
    "figma.com": "Figma",
    "ebay.com": "eBay",
    "etsy.com": "Etsy",
    "bestbuy.com": "Best Buy",
    "aliexpress.com": "AliExpress",
    "paypal.com": "PayPal",
    "venmo.com": "Venmo",
    "cashapp.com": "Cash App",
    "coinbase.com": "Coinbase",
    "airbnb.com": "Airbnb",
    "booking.com": "Booking.com",
    "uber.com": "Uber",
    "lyft.com": "Lyft",
    "doordash.com": "DoorDash",
    "ubereats.com": "Uber Eats",
    "nytimes.com": "New York Times",
    "steampowered.com": "Steam",
    "epicgames.com": "Epic Games",
    "playstation.com": "PlayStation",
    "myfitnesspal.com": "MyFitnessPal",
    "strava.com": "Strava",
}


def calculate_confidence_score(
    domain: str,
    subjects: Iterable[str],
    from_addresses: Iterable[str],
    email_count: int,
) -> int:
    """
    Additive account-likelihood score.

    Every signal is evaluated independently and summed, so the result does
    not depend on the order of subjects or senders.
    """
    domain = (domain or "").lower()
    lowered_subjects = [s.lower() for s in subjects if s]
    lowered_senders = [s.lower() for s in from_addresses if s]

    score = 0
    for pattern, weight in SUBJECT_SIGNALS:
        if any(pattern.search(subject) for subject in lowered_subjects):
            score += weight

    if any(AUTOMATED_SENDER_RE.search(sender) for sender in lowered_senders):
        score += AUTOMATED_SENDER_WEIGHT

    if domain and not FREEMAIL_DOMAIN_RE.search(domain):
        score += OWN_DOMAIN_WEIGHT

    for threshold, bonus in VOLUME_BANDS:
        if email_count >= threshold:
            score += bonus
            break

    return score


def is_likely_spam(domain: str, subjects: Iterable[str]) -> bool:
    domain = (domain or "").lower()
    if any(spam_domain in domain for spam_domain in SPAM_DOMAINS):
        return True
    return any(SPAM_SUBJECT_RE.search(subject) for subject in subjects if subject)


def categorize_service(domain: str, subjects: Iterable[str] = ()) -> str:
    """First matching rule wins; shopping also matches on order/shipping subjects."""
    domain = (domain or "").lower()
    lowered_subjects = [s.lower() for s in subjects if s]

    for category, pattern in CATEGORY_RULES:
        if pattern.search(domain):
            return category
        if category == "Shopping & E-commerce" and any(
            SHOPPING_SUBJECT_RE.search(subject) for subject in lowered_subjects
        ):
            return category
    return DEFAULT_CATEGORY


def normalize_service_name(domain: str) -> str:
    domain = (domain or "").lower().strip()
    if not domain:
        return "Unknown Service"
    if domain in KNOWN_SERVICES:
        return KNOWN_SERVICES[domain]
    brand = domain.split(".")[0]
    return brand[:1].upper() + brand[1:]


def get_service_logo_url(domain: str, token: str | None) -> str:
    return f"{LOGO_BASE_URL}/{domain.lower()}?token={token or ''}"


def generate_account_summary(total_accounts: int, breach_count: int) -> str:
    account_text = "account" if total_accounts == 1 else "accounts"
    if breach_count > 0:
        breach_text = "breach" if breach_count == 1 else "breaches"
        return f"Found {total_accounts} {account_text}, {breach_count} {breach_text} detected"
    return f"Found {total_accounts} {account_text}"


class ScoringService:
    """Scores aggregates, removes likely bulk mail, and ranks the rest."""

    def score(self, aggregate: DomainAggregate) -> ScoredCandidate:
        return ScoredCandidate(
            aggregate=aggregate,
            confidence=calculate_confidence_score(
                aggregate.domain,
                aggregate.subjects,
                aggregate.from_addresses,
                aggregate.email_count,
            ),
            display_name=normalize_service_name(aggregate.domain),
            category=categorize_service(aggregate.domain, aggregate.subjects),
        )

    def rank(self, aggregates: Iterable[DomainAggregate]) -> list[ScoredCandidate]:
        """
        Score every aggregate, drop spam, and sort by descending confidence.

        sorted() is stable, so equal scores keep their arrival order.
        """
        candidates: list[ScoredCandidate] = []
        spam_count = 0

        for aggregate in aggregates:
            if is_likely_spam(aggregate.domain, aggregate.subjects):
                spam_count += 1
                logger.debug("Dropping likely bulk mail domain", domain=aggregate.domain)
                continue
            candidates.append(self.score(aggregate))

        ranked = sorted(candidates, key=lambda c: c.confidence, reverse=True)
        logger.info("Candidates ranked", kept=len(ranked), spam_filtered=spam_count)
        return ranked


scoring_service = ScoringService()
