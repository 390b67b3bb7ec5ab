from collections.abc import Callable
from datetime import UTC, datetime
from itertools import count

import pytest
from cryptography.fernet import Fernet

from sweeper.features.sweep.domain import (
    BreachRecord,
    CanonicalService,
    GmailAccount,
    MessageMetadata,
    NewService,
    Plan,
    ScoredCandidate,
    SweepJob,
    SweepMetrics,
    SweepStatus,
)
from sweeper.features.sweep.repository import SweepRepositoryError
from sweeper.services.infrastructure.encryption_service import TokenVault


class FakeSweepRepository:
    """In-memory stand-in for SweepRepository."""

    def __init__(self):
        self.jobs: dict[str, SweepJob] = {}
        self.user_emails: dict[str, str] = {}
        self.accounts: dict[str, GmailAccount] = {}
        self.plans: dict[str, Plan] = {}
        self.progress_updates: list[tuple[str, int]] = []
        self.replaced: dict[str, list[ScoredCandidate]] = {}
        self.merged: dict[str, list[ScoredCandidate]] = {}
        self.breaches: dict[str, list[BreachRecord]] = {}
        self.breached_domains: list[str] = []
        self.metrics: list[SweepMetrics] = []
        self.notifications: list[dict] = []
        self.token_updates: list[tuple[str, bytes, datetime | None]] = []
        self.stale_marked: list[tuple[str, str]] = []
        self.last_sweep_touched: list[str] = []
        self.other_active_jobs = 0
        self.latest_completed: dict[str, SweepJob] = {}
        self.fail_on: dict[str, Exception] = {}

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.fail_on:
            raise self.fail_on[operation]

    def add_pending_job(self, job_id: str = "sweep-1", user_id: str = "user-1") -> SweepJob:
        job = SweepJob(
            id=job_id,
            user_id=user_id,
            status=SweepStatus.PENDING,
            created_at=datetime.now(UTC),
        )
        self.jobs[job_id] = job
        return job

    async def claim_next_pending_job(self) -> SweepJob | None:
        for job in self.jobs.values():
            if job.status == SweepStatus.PENDING:
                job.status = SweepStatus.PROCESSING
                job.started_at = datetime.now(UTC)
                return job
        return None

    async def update_progress(self, job_id: str, progress: int) -> None:
        self.progress_updates.append((job_id, progress))
        self.jobs[job_id].progress = progress

    async def mark_completed(self, job_id: str, services_found: int, breaches_found: int) -> None:
        self._maybe_fail("mark_completed")
        job = self.jobs[job_id]
        if job.status != SweepStatus.PROCESSING:
            raise SweepRepositoryError(
                f"Sweep {job_id} was not in processing state", operation="mark_completed"
            )
        job.status = SweepStatus.COMPLETED
        job.progress = 100
        job.services_found = services_found
        job.breaches_found = breaches_found
        job.completed_at = datetime.now(UTC)

    async def mark_failed(self, job_id: str, error_detail: str) -> None:
        job = self.jobs[job_id]
        if job.status != SweepStatus.PROCESSING:
            return
        job.status = SweepStatus.FAILED
        job.error_message = error_detail
        job.completed_at = datetime.now(UTC)

    async def get_latest_completed_job(self, user_id: str) -> SweepJob | None:
        return self.latest_completed.get(user_id)

    async def count_other_active_jobs(self, user_id: str, job_id: str) -> int:
        return self.other_active_jobs

    async def mark_previous_sweeps_stale(self, user_id: str, job_id: str) -> int:
        self.stale_marked.append((user_id, job_id))
        return 1

    async def get_user_email(self, user_id: str) -> str | None:
        return self.user_emails.get(user_id)

    async def get_gmail_account(self, user_id: str) -> GmailAccount | None:
        return self.accounts.get(user_id)

    async def update_gmail_access_token(
        self, user_id: str, access_token_encrypted: bytes, token_expires_at: datetime | None
    ) -> None:
        self._maybe_fail("update_gmail_access_token")
        self.token_updates.append((user_id, access_token_encrypted, token_expires_at))

    async def get_current_plan(self, user_id: str) -> Plan:
        return self.plans.get(user_id, Plan.FREE)

    async def touch_last_sweep_at(self, user_id: str) -> None:
        self.last_sweep_touched.append(user_id)

    async def replace_user_services(self, user_id: str, candidates: list[ScoredCandidate]) -> int:
        self._maybe_fail("replace_user_services")
        self.replaced[user_id] = list(candidates)
        return len(candidates)

    async def merge_user_services(self, user_id: str, candidates: list[ScoredCandidate]) -> int:
        self.merged[user_id] = list(candidates)
        return len(candidates)

    async def upsert_breaches(self, user_id: str, breaches) -> int:
        self.breaches[user_id] = list(breaches)
        return len(self.breaches[user_id])

    async def flag_breached_services(self, domains) -> int:
        self.breached_domains.extend(domains)
        return len(self.breached_domains)

    async def record_sweep_metrics(self, metrics: SweepMetrics) -> None:
        self._maybe_fail("record_sweep_metrics")
        self.metrics.append(metrics)

    async def insert_notification(
        self, user_id: str, notification_type: str, title: str, message: str, metadata: dict
    ) -> None:
        self._maybe_fail("insert_notification")
        self.notifications.append(
            {
                "user_id": user_id,
                "type": notification_type,
                "title": title,
                "message": message,
                "metadata": metadata,
            }
        )


class FakeServiceCatalog:
    def __init__(self):
        self.services: dict[str, CanonicalService] = {}
        self.created: list[NewService] = []
        self.lookups: list[str] = []
        self._ids = count(1)
        self.fail_create: Exception | None = None

    def seed(self, domain: str, **fields) -> CanonicalService:
        service = CanonicalService(id=f"svc-{next(self._ids)}", domain=domain, **fields)
        self.services[domain] = service
        return service

    async def get_service_by_domain(self, domain: str) -> CanonicalService | None:
        self.lookups.append(domain)
        return self.services.get(domain)

    async def create_service(self, service: NewService) -> CanonicalService:
        if self.fail_create:
            raise self.fail_create
        self.created.append(service)
        return self.seed(
            service.domain,
            name=service.name,
            category=service.category,
            logo_url=service.logo_url,
            default_privacy_email=service.default_privacy_email,
        )


@pytest.fixture
def fake_repository():
    return FakeSweepRepository()


@pytest.fixture
def fake_catalog():
    return FakeServiceCatalog()


@pytest.fixture
def token_vault():
    return TokenVault(Fernet.generate_key())


@pytest.fixture
def make_metadata() -> Callable[..., MessageMetadata]:
    ids = count(1)

    def _make(sender: str, subject: str = "", received_at: datetime | None = None):
        return MessageMetadata(
            id=f"msg-{next(ids)}",
            sender=sender,
            subject=subject,
            received_at=received_at or datetime(2024, 1, 1, tzinfo=UTC),
        )

    return _make


@pytest.fixture
def recorded_sleeps():
    """Sleep replacement that records delays instead of waiting."""
    delays: list[float] = []

    async def _sleep(delay: float) -> None:
        delays.append(delay)

    _sleep.delays = delays
    return _sleep
