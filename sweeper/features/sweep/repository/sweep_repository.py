"""
Persistence layer for the sweep feature.

Job lifecycle, credential, plan, result and notification writes all go
through here so the orchestrator only deals in domain objects.
"""

from collections.abc import Iterable
from datetime import datetime

from psycopg.types.json import Jsonb

from sweeper.db.helpers import (
    DatabaseError,
    execute_many,
    execute_query,
    execute_transaction,
    fetch_one,
    fetch_val,
    with_db_retry,
)
from sweeper.features.sweep.domain import (
    BreachRecord,
    CanonicalService,
    GmailAccount,
    NewService,
    Plan,
    ScoredCandidate,
    SweepJob,
    SweepMetrics,
)
from sweeper.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

ERROR_DETAIL_MAX_LENGTH = 2000


class SweepRepositoryError(DatabaseError):
    """More specific exception for repository failures."""


UPSERT_SERVICE_REPLACE = """
    INSERT INTO user_services (
        user_id, service_id, email_count, first_seen_at, last_seen_at, confidence_score
    )
    VALUES (%s, %s, %s, %s, %s, %s)
    ON CONFLICT (user_id, service_id) DO UPDATE SET
        email_count = EXCLUDED.email_count,
        first_seen_at = EXCLUDED.first_seen_at,
        last_seen_at = EXCLUDED.last_seen_at,
        confidence_score = EXCLUDED.confidence_score
"""

UPSERT_SERVICE_MERGE = """
    INSERT INTO user_services (
        user_id, service_id, email_count, first_seen_at, last_seen_at, confidence_score
    )
    VALUES (%s, %s, %s, %s, %s, %s)
    ON CONFLICT (user_id, service_id) DO UPDATE SET
        email_count = user_services.email_count + EXCLUDED.email_count,
        first_seen_at = LEAST(user_services.first_seen_at, EXCLUDED.first_seen_at),
        last_seen_at = GREATEST(user_services.last_seen_at, EXCLUDED.last_seen_at),
        confidence_score = GREATEST(user_services.confidence_score, EXCLUDED.confidence_score)
"""


def _service_link_params(user_id: str, candidate: ScoredCandidate) -> tuple:
    aggregate = candidate.aggregate
    return (
        user_id,
        candidate.service_id,
        aggregate.email_count,
        aggregate.first_seen_at,
        aggregate.last_seen_at,
        candidate.confidence,
    )


class SweepRepository:
    """Persistence helpers backing the sweep orchestrator."""

    JOB_SELECT_COLUMNS = """
        id, user_id, status, created_at, started_at, completed_at,
        progress, services_found, breaches_found, error_message, is_stale
    """

    @staticmethod
    def _row_to_job(row: dict | None) -> SweepJob | None:
        if not row:
            return None
        return SweepJob(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            status=row["status"],
            created_at=row.get("created_at"),
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
            progress=row.get("progress") or 0,
            services_found=row.get("services_found"),
            breaches_found=row.get("breaches_found"),
            error_message=row.get("error_message"),
            is_stale=bool(row.get("is_stale")),
        )

    # ------------------------------------------------------------------
    # Job lifecycle
    # ------------------------------------------------------------------

    @with_db_retry()
    async def claim_next_pending_job(self) -> SweepJob | None:
        """
        Atomically move the oldest pending job to processing.

        The status guard plus SKIP LOCKED means two pollers can never claim
        the same row.
        """
        query = f"""
            UPDATE sweep_events
            SET status = 'processing',
                started_at = NOW(),
                updated_at = NOW(),
                progress = 0
            WHERE id = (
                SELECT id
                FROM sweep_events
                WHERE status = 'pending'
                ORDER BY created_at ASC
                LIMIT 1
                FOR UPDATE SKIP LOCKED
            )
            AND status = 'pending'
            RETURNING {self.JOB_SELECT_COLUMNS}
        """
        job = self._row_to_job(await fetch_one(query))
        if job:
            logger.info("Sweep job claimed", sweep_id=job.id, user_id=job.user_id)
        return job

    async def update_progress(self, job_id: str, progress: int) -> None:
        query = """
            UPDATE sweep_events
            SET progress = %s, updated_at = NOW()
            WHERE id = %s AND status = 'processing'
        """
        await execute_query(query, (max(0, min(100, progress)), job_id))

    @with_db_retry()
    async def mark_completed(self, job_id: str, services_found: int, breaches_found: int) -> None:
        query = """
            UPDATE sweep_events
            SET status = 'completed',
                progress = 100,
                services_found = %s,
                breaches_found = %s,
                completed_at = NOW(),
                updated_at = NOW(),
                error_message = NULL
            WHERE id = %s AND status = 'processing'
        """
        updated = await execute_query(query, (services_found, breaches_found, job_id))
        if not updated:
            raise SweepRepositoryError(
                f"Sweep {job_id} was not in processing state", operation="mark_completed"
            )
        logger.info("Sweep job completed", sweep_id=job_id)

    @with_db_retry()
    async def mark_failed(self, job_id: str, error_detail: str) -> None:
        query = """
            UPDATE sweep_events
            SET status = 'failed',
                error_message = %s,
                completed_at = NOW(),
                updated_at = NOW()
            WHERE id = %s AND status = 'processing'
        """
        await execute_query(query, ((error_detail or "")[:ERROR_DETAIL_MAX_LENGTH], job_id))
        logger.info("Sweep job failed", sweep_id=job_id)

    async def get_latest_completed_job(self, user_id: str) -> SweepJob | None:
        query = f"""
            SELECT {self.JOB_SELECT_COLUMNS}
            FROM sweep_events
            WHERE user_id = %s AND status = 'completed'
            ORDER BY completed_at DESC NULLS LAST
            LIMIT 1
        """
        return self._row_to_job(await fetch_one(query, (user_id,)))

    async def count_other_active_jobs(self, user_id: str, job_id: str) -> int:
        query = """
            SELECT COUNT(*)
            FROM sweep_events
            WHERE user_id = %s
              AND id <> %s
              AND status IN ('pending', 'processing')
        """
        return int(await fetch_val(query, (user_id, job_id)) or 0)

    async def mark_previous_sweeps_stale(self, user_id: str, job_id: str) -> int:
        query = """
            UPDATE sweep_events
            SET is_stale = TRUE, updated_at = NOW()
            WHERE user_id = %s
              AND id <> %s
              AND status IN ('completed', 'failed')
              AND is_stale = FALSE
        """
        return await execute_query(query, (user_id, job_id))

    # ------------------------------------------------------------------
    # User, credential and plan
    # ------------------------------------------------------------------

    async def get_user_email(self, user_id: str) -> str | None:
        return await fetch_val("SELECT email FROM auth.users WHERE id = %s", (user_id,))

    async def get_gmail_account(self, user_id: str) -> GmailAccount | None:
        query = """
            SELECT user_id, gmail_address, access_token_encrypted,
                   refresh_token_encrypted, token_expires_at
            FROM gmail_accounts
            WHERE user_id = %s
            LIMIT 1
        """
        row = await fetch_one(query, (user_id,))
        if not row or not row.get("access_token_encrypted"):
            return None
        return GmailAccount(
            user_id=str(row["user_id"]),
            gmail_address=row["gmail_address"],
            access_token_encrypted=bytes(row["access_token_encrypted"]),
            refresh_token_encrypted=(
                bytes(row["refresh_token_encrypted"])
                if row.get("refresh_token_encrypted")
                else None
            ),
            token_expires_at=row.get("token_expires_at"),
        )

    @with_db_retry()
    async def update_gmail_access_token(
        self, user_id: str, access_token_encrypted: bytes, token_expires_at: datetime
    ) -> None:
        query = """
            UPDATE gmail_accounts
            SET access_token_encrypted = %s,
                token_expires_at = %s,
                updated_at = NOW()
            WHERE user_id = %s
        """
        updated = await execute_query(query, (access_token_encrypted, token_expires_at, user_id))
        if not updated:
            raise SweepRepositoryError(
                "No gmail account row to update", operation="update_gmail_access_token"
            )

    async def get_current_plan(self, user_id: str) -> Plan:
        value = await fetch_val(
            "SELECT current_plan FROM user_subscriptions WHERE user_id = %s", (user_id,)
        )
        return Plan.from_value(value)

    async def touch_last_sweep_at(self, user_id: str) -> None:
        await execute_query(
            "UPDATE user_subscriptions SET last_sweep_at = NOW() WHERE user_id = %s",
            (user_id,),
        )

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    async def replace_user_services(self, user_id: str, candidates: list[ScoredCandidate]) -> int:
        """Full scan: drop every existing link, then write the new set."""
        statements: list[tuple] = [("DELETE FROM user_services WHERE user_id = %s", (user_id,))]
        statements.extend(
            (UPSERT_SERVICE_REPLACE, _service_link_params(user_id, c))
            for c in candidates
            if c.service_id
        )
        await execute_transaction(statements)
        logger.info("User services replaced", user_id=user_id, link_count=len(statements) - 1)
        return len(statements) - 1

    async def merge_user_services(self, user_id: str, candidates: list[ScoredCandidate]) -> int:
        """Incremental scan: add counts and widen the seen window of existing links."""
        params = [_service_link_params(user_id, c) for c in candidates if c.service_id]
        written = await execute_many(UPSERT_SERVICE_MERGE, params)
        logger.info("User services merged", user_id=user_id, link_count=written)
        return written

    async def upsert_breaches(self, user_id: str, breaches: Iterable[BreachRecord]) -> int:
        query = """
            INSERT INTO user_breaches (
                user_id, breach_name, breach_date, data_classes, description
            )
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (user_id, breach_name) DO UPDATE SET
                breach_date = EXCLUDED.breach_date,
                data_classes = EXCLUDED.data_classes,
                description = EXCLUDED.description
        """
        params = [
            (user_id, b.name, b.breach_date, b.data_classes, b.description) for b in breaches
        ]
        return await execute_many(query, params)

    async def flag_breached_services(self, domains: Iterable[str]) -> int:
        domain_list = sorted({d.lower() for d in domains if d})
        if not domain_list:
            return 0
        return await execute_query(
            "UPDATE services SET is_breached = TRUE WHERE domain = ANY(%s) AND is_breached = FALSE",
            (domain_list,),
        )

    async def record_sweep_metrics(self, metrics: SweepMetrics) -> None:
        query = """
            INSERT INTO sweep_metrics (
                user_id, sweep_id, duration_ms, messages_scanned, messages_skipped,
                accounts_found, breaches_found, is_incremental, created_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, NOW())
        """
        await execute_query(
            query,
            (
                metrics.user_id,
                metrics.sweep_id,
                metrics.duration_ms,
                metrics.messages_scanned,
                metrics.messages_skipped,
                metrics.accounts_found,
                metrics.breaches_found,
                metrics.is_incremental,
            ),
        )

    async def insert_notification(
        self, user_id: str, notification_type: str, title: str, message: str, metadata: dict
    ) -> None:
        query = """
            INSERT INTO user_notifications (user_id, type, title, message, metadata)
            VALUES (%s, %s, %s, %s, %s)
        """
        await execute_query(query, (user_id, notification_type, title, message, Jsonb(metadata)))


class ServiceCatalogRepository:
    """Canonical service rows, keyed by domain."""

    SERVICE_COLUMNS = "id, domain, name, category, logo_url, default_privacy_email, is_breached"

    @staticmethod
    def _row_to_service(row: dict | None) -> CanonicalService | None:
        if not row:
            return None
        return CanonicalService(
            id=str(row["id"]),
            domain=row["domain"],
            name=row.get("name"),
            category=row.get("category"),
            logo_url=row.get("logo_url"),
            default_privacy_email=row.get("default_privacy_email"),
            is_breached=bool(row.get("is_breached")),
        )

    async def get_service_by_domain(self, domain: str) -> CanonicalService | None:
        query = f"SELECT {self.SERVICE_COLUMNS} FROM services WHERE domain = %s LIMIT 1"
        return self._row_to_service(await fetch_one(query, (domain,)))

    async def create_service(self, service: NewService) -> CanonicalService:
        """
        Insert a service row; a concurrent insert of the same domain wins and
        its row is returned instead.
        """
        query = f"""
            INSERT INTO services (
                domain, name, category, logo_url, default_privacy_email, is_breached
            )
            VALUES (%s, %s, %s, %s, %s, FALSE)
            ON CONFLICT (domain) DO UPDATE SET domain = EXCLUDED.domain
            RETURNING {self.SERVICE_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                service.domain,
                service.name,
                service.category,
                service.logo_url,
                service.default_privacy_email,
            ),
        )
        created = self._row_to_service(row)
        if created is None:
            raise SweepRepositoryError(
                f"Failed to create service for {service.domain}", operation="create_service"
            )
        return created


sweep_repository = SweepRepository()
service_catalog_repository = ServiceCatalogRepository()
