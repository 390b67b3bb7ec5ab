"""
Sweep domain models.

Persistent rows are pydantic models; pipeline-internal working sets are
slotted dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class Plan(str, Enum):
    FREE = "free"
    PRO = "pro"

    @classmethod
    def from_value(cls, value: str | None) -> "Plan":
        return cls.PRO if (value or "").lower() == cls.PRO.value else cls.FREE


@dataclass(frozen=True, slots=True)
class PlanLimits:
    lookback_years: int
    max_list_pages: int
    max_saved_services: int | None


PLAN_LIMITS: dict[Plan, PlanLimits] = {
    Plan.FREE: PlanLimits(lookback_years=10, max_list_pages=8, max_saved_services=50),
    Plan.PRO: PlanLimits(lookback_years=15, max_list_pages=20, max_saved_services=None),
}


class SweepStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SweepJob(BaseModel):
    """A row of sweep_events."""

    id: str
    user_id: str
    status: SweepStatus
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    progress: int = 0
    services_found: int | None = None
    breaches_found: int | None = None
    error_message: str | None = None
    is_stale: bool = False


class GmailAccount(BaseModel):
    """Stored mailbox connection (credential record); tokens stay encrypted."""

    user_id: str
    gmail_address: str
    access_token_encrypted: bytes
    refresh_token_encrypted: bytes | None = None
    token_expires_at: datetime | None = None

    @property
    def has_refresh_token(self) -> bool:
        return bool(self.refresh_token_encrypted)

    def is_expired(self, now: datetime | None = None) -> bool:
        if not self.token_expires_at:
            return False
        return (now or datetime.now(UTC)) > self.token_expires_at


class MessageMetadata(BaseModel):
    """Header metadata for a single message. Bodies are never fetched."""

    id: str
    sender: str = ""
    subject: str = ""
    date: str = ""
    received_at: datetime | None = None


class BreachRecord(BaseModel):
    name: str
    breach_date: str | None = None
    data_classes: list[str] = Field(default_factory=list)
    description: str | None = None
    domain: str | None = None

    @classmethod
    def from_hibp(cls, data: dict[str, Any]) -> "BreachRecord":
        return cls(
            name=data.get("Name") or data.get("Title") or "unknown",
            breach_date=data.get("BreachDate"),
            data_classes=list(data.get("DataClasses") or []),
            description=data.get("Description"),
            domain=(data.get("Domain") or "").lower() or None,
        )


class CanonicalService(BaseModel):
    """A row of services."""

    id: str
    domain: str
    name: str | None = None
    category: str | None = None
    logo_url: str | None = None
    default_privacy_email: str | None = None
    is_breached: bool = False


class NewService(BaseModel):
    domain: str
    name: str
    category: str
    logo_url: str
    default_privacy_email: str


ContactConfidence = Literal["high", "medium", "low"]


@dataclass(slots=True)
class DomainAggregate:
    """Per-domain working set built from message metadata."""

    domain: str
    email_count: int = 0
    first_seen_at: datetime | None = None
    last_seen_at: datetime | None = None
    subjects: list[str] = field(default_factory=list)
    from_addresses: list[str] = field(default_factory=list)
    service_id: str | None = None
    support_email: str | None = None
    privacy_email: str | None = None
    contact_confidence: ContactConfidence = "low"

    def observe(self, sender: str, subject: str, seen_at: datetime | None) -> None:
        self.email_count += 1
        if subject:
            self.subjects.append(subject)
        if sender:
            self.from_addresses.append(sender)
        if seen_at is not None:
            if self.first_seen_at is None or seen_at < self.first_seen_at:
                self.first_seen_at = seen_at
            if self.last_seen_at is None or seen_at > self.last_seen_at:
                self.last_seen_at = seen_at


@dataclass(slots=True)
class ScoredCandidate:
    aggregate: DomainAggregate
    confidence: int
    display_name: str
    category: str

    @property
    def domain(self) -> str:
        return self.aggregate.domain

    @property
    def service_id(self) -> str | None:
        return self.aggregate.service_id


@dataclass(slots=True)
class MetadataFetchResult:
    """Successful metadata plus the identifiers that were skipped."""

    messages: list[MessageMetadata] = field(default_factory=list)
    failed_ids: list[str] = field(default_factory=list)


@dataclass(slots=True)
class SweepMetrics:
    user_id: str
    sweep_id: str
    duration_ms: int = 0
    messages_scanned: int = 0
    messages_skipped: int = 0
    accounts_found: int = 0
    breaches_found: int = 0
    is_incremental: bool = False
