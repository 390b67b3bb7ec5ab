"""
Paginated candidate-message lister.

Finds message ids that are likely to be account-related (onboarding,
verification, security, billing, privacy, account management) using Gmail
search, with a sender/subject fallback query when the keyword search is thin.
"""

from datetime import datetime

from sweeper.features.sweep.domain.models import PLAN_LIMITS, Plan
from sweeper.infrastructure.observability.logging import get_logger
from sweeper.services.gmail.client import GmailClient
from sweeper.services.google_errors import AuthError, FetchError, GoogleApiError

logger = get_logger(__name__)

PAGE_SIZE = 500
FALLBACK_THRESHOLD = 50

ONBOARDING_PHRASES = (
    "account created",
    "welcome to",
    "thanks for signing up",
    "registration successful",
    "your account is ready",
    "get started with",
    "activate your account",
    "you're all set",
    "welcome aboard",
    "onboarding",
)
VERIFICATION_PHRASES = (
    "verify your email",
    "confirm your email",
    "verify your account",
    "email confirmation",
    "click to verify",
    "confirm your address",
)
SECURITY_PHRASES = (
    "password reset",
    "reset your password",
    "new device login",
    "security alert",
    "unusual activity",
    "suspicious activity",
    "two-factor",
    "2fa",
    "verification code",
    "sign-in attempt",
)
BILLING_PHRASES = (
    "receipt for your",
    "your receipt",
    "order confirmation",
    "purchase confirmation",
    "your order",
    "invoice",
    "payment received",
    "subscription renewed",
    "subscription confirmed",
    "billing update",
    "trial started",
    "free trial",
)
PRIVACY_PHRASES = (
    "privacy policy",
    "terms of service",
    "terms and conditions",
    "data access request",
    "GDPR",
    "CCPA",
    "your privacy",
)
MANAGEMENT_PHRASES = (
    "account closed",
    "account deletion",
    "account deactivated",
    "reactivate your account",
    "we miss you",
    "come back",
    "subscription cancelled",
)

KEYWORD_GROUPS = (
    ONBOARDING_PHRASES,
    VERIFICATION_PHRASES,
    SECURITY_PHRASES,
    BILLING_PHRASES,
    PRIVACY_PHRASES,
    MANAGEMENT_PHRASES,
)

FALLBACK_TERMS = (
    "from:noreply",
    "from:no-reply",
    "from:notifications",
    "from:accounts",
    "from:support",
    "from:hello",
    "from:team",
    'subject:"verify"',
    'subject:"welcome"',
    'subject:"account"',
    'subject:"receipt"',
    'subject:"order"',
    'subject:"confirm"',
)


def build_date_filter(plan: Plan, since: datetime | None = None) -> str:
    """Incremental scans look strictly after ``since``; full scans use the plan lookback."""
    if since is not None:
        return f"after:{int(since.timestamp())}"
    return f"newer_than:{PLAN_LIMITS[plan].lookback_years}y"


def build_keyword_query(date_filter: str) -> str:
    phrases = " OR ".join(f'"{phrase}"' for group in KEYWORD_GROUPS for phrase in group)
    return f"{date_filter} ({phrases}) -category:promotions"


def build_fallback_query(date_filter: str) -> str:
    terms = " OR ".join(FALLBACK_TERMS)
    return f"{date_filter} ({terms}) -category:promotions -category:forums"


def dedupe_ids(ids: list[str]) -> list[str]:
    """Drop repeated ids, keeping first-seen order."""
    return list(dict.fromkeys(i for i in ids if i))


class GmailMessageLister:
    """Enumerates candidate message ids for one mailbox."""

    def __init__(self, client: GmailClient, page_size: int = PAGE_SIZE):
        self._client = client
        self._page_size = page_size

    async def list_candidate_messages(
        self, access_token: str, plan: Plan, since: datetime | None = None
    ) -> list[str]:
        """
        List deduplicated candidate message ids.

        Raises:
            AuthError: Credentials rejected; left for the token manager to handle
            FetchError: Any other listing failure aborts the whole listing
        """
        limits = PLAN_LIMITS[plan]
        date_filter = build_date_filter(plan, since)

        logger.info(
            "Listing candidate messages",
            plan=plan.value,
            incremental=since is not None,
            date_filter=date_filter,
            max_pages=limits.max_list_pages,
        )

        ids = await self._fetch_ids(
            access_token, build_keyword_query(date_filter), limits.max_list_pages
        )
        logger.info("Keyword search finished", message_count=len(ids))

        if len(ids) < FALLBACK_THRESHOLD:
            logger.info("Low keyword yield, running sender fallback", message_count=len(ids))
            fallback_ids = await self._fetch_ids(
                access_token, build_fallback_query(date_filter), limits.max_list_pages
            )
            ids = ids + fallback_ids
            logger.info("Sender fallback finished", fallback_count=len(fallback_ids))

        unique_ids = dedupe_ids(ids)
        logger.info("Candidate messages listed", unique_count=len(unique_ids))
        return unique_ids

    async def _fetch_ids(self, access_token: str, query: str, max_pages: int) -> list[str]:
        ids: list[str] = []
        page_token: str | None = None
        max_messages = max_pages * self._page_size

        for page_number in range(1, max_pages + 1):
            batch_size = min(self._page_size, max_messages - len(ids))
            if batch_size <= 0:
                break

            try:
                batch, page_token = await self._client.list_message_ids(
                    access_token,
                    query,
                    max_results=batch_size,
                    page_token=page_token,
                    include_spam_trash=False,
                )
            except AuthError:
                logger.error("Gmail auth error while listing", page=page_number)
                raise
            except GoogleApiError as e:
                logger.error(
                    "Gmail listing failed",
                    page=page_number,
                    status_code=e.status_code,
                    error_kind=e.kind,
                    error=str(e),
                )
                raise FetchError(
                    f"Failed to scan inbox on page {page_number}: {e}",
                    status_code=e.status_code,
                    response_data=e.response_data,
                ) from e

            if not batch:
                break

            ids.extend(batch)
            logger.debug("Listed page", page=page_number, batch_count=len(batch), total=len(ids))

            if not page_token:
                break

        return ids[:max_messages]
