"""
Sweep orchestrator.

Claims one pending sweep and drives it through
pending -> processing -> completed | failed:

    resolve user + mailbox -> plan -> incremental window -> list -> fetch
    -> aggregate/score -> breaches -> plan cap -> persist -> metrics
    -> completed -> notify

Any exception past the claim is caught once, at the top, and turns the job
into `failed` with a structured error detail. Writes made before the failure
are not rolled back, and failed jobs are never retried here.
"""

import json
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from sweeper.config import settings
from sweeper.features.sweep.domain import (
    PLAN_LIMITS,
    GmailAccount,
    MetadataFetchResult,
    Plan,
    ScoredCandidate,
    SweepJob,
    SweepMetrics,
    SweepStatus,
)
from sweeper.features.sweep.pipeline.aggregation import DomainAggregationService
from sweeper.features.sweep.repository import (
    SweepRepository,
    service_catalog_repository,
    sweep_repository,
)
from sweeper.infrastructure.observability.logging import (
    bind_sweep_context,
    clear_sweep_context,
    get_logger,
)
from sweeper.services.breach_service import BreachService
from sweeper.services.gmail.client import GmailClient
from sweeper.services.gmail.lister import GmailMessageLister
from sweeper.services.gmail.metadata_fetcher import FetchProgress, MetadataFetcher
from sweeper.services.google_oauth_service import GoogleOAuthService
from sweeper.services.infrastructure.encryption_service import build_token_vault
from sweeper.services.notification_service import NotificationService, SweepSummary
from sweeper.services.token_service import TokenLifecycleManager

logger = get_logger(__name__)

INCREMENTAL_WINDOW = timedelta(hours=24)


class PreconditionError(Exception):
    """User or mailbox connection missing before any external work."""

    kind = "precondition"


def describe_error(error: BaseException) -> dict[str, Any]:
    """Structured error detail persisted on failed jobs."""
    to_dict = getattr(error, "to_dict", None)
    if callable(to_dict):
        return to_dict()

    detail: dict[str, Any] = {
        "kind": getattr(error, "kind", "internal"),
        "message": str(error) or type(error).__name__,
    }
    status_code = getattr(error, "status_code", None)
    if status_code is not None:
        detail["status_code"] = status_code
    return detail


def apply_plan_limit(candidates: list[ScoredCandidate], plan: Plan) -> list[ScoredCandidate]:
    cap = PLAN_LIMITS[plan].max_saved_services
    return candidates if cap is None else candidates[:cap]


@dataclass(slots=True)
class SweepOutcome:
    sweep_id: str
    status: SweepStatus
    services_found: int = 0
    services_saved: int = 0
    breaches_found: int = 0
    is_incremental: bool = False
    error: dict[str, Any] | None = None


class SweepOrchestrator:
    """Runs claimed sweep jobs end to end. Stateless between jobs."""

    def __init__(
        self,
        repository: SweepRepository,
        token_manager: TokenLifecycleManager,
        lister: GmailMessageLister,
        fetcher: MetadataFetcher,
        aggregation_factory: Callable[[], DomainAggregationService],
        breach_service: BreachService,
        notifications: NotificationService,
        clock: Callable[[], datetime] | None = None,
        incremental_window: timedelta = INCREMENTAL_WINDOW,
        on_close: Callable[[], Any] | None = None,
    ):
        self._repo = repository
        self._tokens = token_manager
        self._lister = lister
        self._fetcher = fetcher
        self._aggregation_factory = aggregation_factory
        self._breaches = breach_service
        self._notifications = notifications
        self._clock = clock or (lambda: datetime.now(UTC))
        self.incremental_window = incremental_window
        self._on_close = on_close

    async def close(self) -> None:
        if self._on_close:
            await self._on_close()

    async def process_next_job(self) -> bool:
        """Claim and run one pending sweep. Returns False when the queue is empty."""
        job = await self._repo.claim_next_pending_job()
        if not job:
            return False

        await self.process_job(job)
        return True

    async def process_job(self, job: SweepJob) -> SweepOutcome:
        bind_sweep_context(job.id, job.user_id)
        started = time.monotonic()
        recipient: str | None = None
        account: GmailAccount | None = None

        try:
            try:
                recipient = await self._repo.get_user_email(job.user_id)
                if not recipient:
                    raise PreconditionError(f"User {job.user_id} not found")

                account = await self._repo.get_gmail_account(job.user_id)
                if not account:
                    raise PreconditionError("Gmail account not found")

                outcome, summary = await self._run(job, account, recipient, started)
            except Exception as e:
                return await self._fail(job, e, recipient, account)

            # job is already completed; notification errors are logged only
            await self._notify_completed(job.user_id, recipient, summary)
            return outcome

        finally:
            clear_sweep_context()

    async def _run(
        self, job: SweepJob, account: GmailAccount, recipient: str, started: float
    ) -> tuple[SweepOutcome, SweepSummary]:
        others = await self._repo.count_other_active_jobs(job.user_id, job.id)
        if others:
            logger.warning("User has other active sweeps", other_active_jobs=others)

        plan = await self._repo.get_current_plan(job.user_id)
        since = await self.incremental_since(job.user_id)
        is_incremental = since is not None

        logger.info(
            "Sweep started",
            plan=plan.value,
            incremental=is_incremental,
            since=since.isoformat() if since else None,
        )

        message_ids = await self._tokens.with_valid_credential(
            account,
            lambda token: self._lister.list_candidate_messages(token, plan, since),
        )

        async def report_progress(progress: FetchProgress) -> None:
            await self._repo.update_progress(job.id, progress.percentage)

        fetched: MetadataFetchResult = await self._tokens.with_valid_credential(
            account,
            lambda token: self._fetcher.fetch_metadata(token, message_ids, report_progress),
        )

        ranked = await self._aggregation_factory().aggregate(fetched.messages)
        breaches = await self._breaches.lookup_breaches(account.gmail_address)

        to_save = apply_plan_limit(ranked, plan)
        total_found = len(ranked)
        logger.info(
            "Saving sweep results",
            services_found=total_found,
            services_saved=len(to_save),
            breaches_found=len(breaches),
        )

        if is_incremental:
            await self._repo.merge_user_services(job.user_id, to_save)
        else:
            await self._repo.replace_user_services(job.user_id, to_save)
            await self._repo.mark_previous_sweeps_stale(job.user_id, job.id)

        if breaches:
            await self._repo.upsert_breaches(job.user_id, breaches)
            await self._repo.flag_breached_services(b.domain for b in breaches if b.domain)

        duration_ms = int((time.monotonic() - started) * 1000)
        await self._record_metrics(
            SweepMetrics(
                user_id=job.user_id,
                sweep_id=job.id,
                duration_ms=duration_ms,
                messages_scanned=len(message_ids),
                messages_skipped=len(fetched.failed_ids),
                accounts_found=total_found,
                breaches_found=len(breaches),
                is_incremental=is_incremental,
            )
        )

        await self._repo.touch_last_sweep_at(job.user_id)
        await self._repo.mark_completed(job.id, total_found, len(breaches))

        logger.info("Sweep completed", duration_ms=duration_ms, services_found=total_found)

        outcome = SweepOutcome(
            sweep_id=job.id,
            status=SweepStatus.COMPLETED,
            services_found=total_found,
            services_saved=len(to_save),
            breaches_found=len(breaches),
            is_incremental=is_incremental,
        )
        summary = SweepSummary(
            services_found=total_found,
            breaches_found=len(breaches),
            plan_label=plan.value,
            duration_seconds=(time.monotonic() - started),
            gmail_address=account.gmail_address,
        )
        return outcome, summary

    async def incremental_since(self, user_id: str) -> datetime | None:
        """
        Start instant of the last completed sweep if it finished within the
        freshness window, else None (full scan).
        """
        latest = await self._repo.get_latest_completed_job(user_id)
        if not latest or not latest.completed_at:
            return None

        if self._clock() - latest.completed_at > self.incremental_window:
            return None

        return latest.started_at or latest.created_at

    async def _notify_completed(
        self, user_id: str, recipient: str, summary: SweepSummary
    ) -> None:
        try:
            await self._notifications.notify_completed(user_id, recipient, summary)
        except Exception as e:
            logger.error("Failed to send sweep completion notification", error=str(e))

    async def _record_metrics(self, metrics: SweepMetrics) -> None:
        try:
            await self._repo.record_sweep_metrics(metrics)
        except Exception as e:
            logger.warning("Failed to record sweep metrics", error=str(e))

    async def _fail(
        self,
        job: SweepJob,
        error: Exception,
        recipient: str | None,
        account: GmailAccount | None,
    ) -> SweepOutcome:
        detail = describe_error(error)
        logger.error(
            "Sweep failed",
            error_kind=detail["kind"],
            error=detail["message"],
            status_code=detail.get("status_code"),
            exc_info=not isinstance(error, PreconditionError),
        )

        try:
            await self._repo.mark_failed(job.id, json.dumps(detail))
        except Exception as e:
            logger.error("Could not persist sweep failure", error=str(e))

        try:
            await self._notifications.notify_failed(
                job.user_id,
                recipient,
                account.gmail_address if account else None,
                detail["message"],
            )
        except Exception as e:
            logger.error("Failed to send sweep failure notification", error=str(e))

        return SweepOutcome(sweep_id=job.id, status=SweepStatus.FAILED, error=detail)


def build_sweep_orchestrator() -> SweepOrchestrator:
    """Wire the orchestrator from process settings."""
    token_manager = TokenLifecycleManager(
        build_token_vault(), GoogleOAuthService(), sweep_repository
    )
    gmail_client = GmailClient()

    return SweepOrchestrator(
        repository=sweep_repository,
        token_manager=token_manager,
        lister=GmailMessageLister(gmail_client),
        fetcher=MetadataFetcher(gmail_client),
        aggregation_factory=lambda: DomainAggregationService(
            service_catalog_repository, settings.LOGO_DEV_PUBLISHABLE_KEY
        ),
        breach_service=BreachService(),
        notifications=NotificationService(sweep_repository),
        on_close=gmail_client.close,
    )
