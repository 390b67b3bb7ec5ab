"""
Domain aggregation service.

Groups message metadata by canonical sender domain, resolves (or lazily
creates) the canonical service row for each domain, works out contact
addresses, then hands the groups to the scoring service for ranking.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Protocol

from .domains import canonical_domain, extract_display_name, extract_email_address
from sweeper.features.sweep.domain.models import (
    CanonicalService,
    DomainAggregate,
    MessageMetadata,
    NewService,
    ScoredCandidate,
)
from sweeper.features.sweep.pipeline.scoring.service import (
    ScoringService,
    categorize_service,
    get_service_logo_url,
    scoring_service,
)
from sweeper.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SUPPORT_ADDRESS_RE = re.compile(r"support|help|contact|service|customer", re.IGNORECASE)
PRIVACY_ADDRESS_RE = re.compile(r"privacy|dpo|data.?protection", re.IGNORECASE)


class ServiceResolutionError(Exception):
    """Reading or creating a canonical service failed."""

    kind = "service_resolution"

    def __init__(self, message: str, domain: str | None = None):
        super().__init__(message)
        self.domain = domain


class ServiceCatalog(Protocol):
    async def get_service_by_domain(self, domain: str) -> CanonicalService | None: ...

    async def create_service(self, service: NewService) -> CanonicalService: ...


def find_contact_addresses(from_addresses: Iterable[str]) -> tuple[str | None, str | None]:
    """Observed (support, privacy) addresses, if any sender looks like one."""
    addresses = [a for a in (extract_email_address(f) for f in from_addresses) if a]
    support = next((a for a in addresses if SUPPORT_ADDRESS_RE.search(a)), None)
    privacy = next((a for a in addresses if PRIVACY_ADDRESS_RE.search(a)), None)
    return support, privacy


def group_by_domain(metadata: Iterable[MessageMetadata]) -> dict[str, DomainAggregate]:
    groups: dict[str, DomainAggregate] = {}
    for message in metadata:
        domain = canonical_domain(message.sender)
        if not domain:
            continue
        if domain not in groups:
            groups[domain] = DomainAggregate(domain=domain)
        groups[domain].observe(message.sender, message.subject, message.received_at)
    return groups


class DomainAggregationService:
    """
    One instance per sweep: the domain -> service id cache lives on the
    instance so repeated domains never trigger duplicate lookups or creates.
    """

    def __init__(
        self,
        catalog: ServiceCatalog,
        logo_token: str | None = None,
        scoring: ScoringService | None = None,
    ):
        self._catalog = catalog
        self._logo_token = logo_token
        self._scoring = scoring or scoring_service
        self._service_ids: dict[str, str] = {}

    async def aggregate(self, metadata: Iterable[MessageMetadata]) -> list[ScoredCandidate]:
        """
        Group, resolve, score and rank.

        Raises:
            ServiceResolutionError: A service row could not be read or created
        """
        groups = group_by_domain(metadata)
        logger.info("Metadata grouped by domain", domain_count=len(groups))

        for aggregate in groups.values():
            aggregate.service_id = await self.resolve_service(aggregate)
            self._apply_contacts(aggregate)

        return self._scoring.rank(groups.values())

    async def resolve_service(self, aggregate: DomainAggregate) -> str:
        domain = aggregate.domain
        cached = self._service_ids.get(domain)
        if cached:
            return cached

        try:
            service = await self._catalog.get_service_by_domain(domain)
            if service is None:
                service = await self._catalog.create_service(self._new_service(aggregate))
                logger.info("Created service", domain=domain, service_id=service.id)
        except ServiceResolutionError:
            raise
        except Exception as e:
            logger.error("Service resolution failed", domain=domain, error=str(e))
            raise ServiceResolutionError(
                f"Failed to resolve service for {domain}: {e}", domain=domain
            ) from e

        self._service_ids[domain] = service.id
        return service.id

    def _new_service(self, aggregate: DomainAggregate) -> NewService:
        domain = aggregate.domain
        support, privacy = find_contact_addresses(aggregate.from_addresses)
        first_sender = aggregate.from_addresses[0] if aggregate.from_addresses else ""

        return NewService(
            domain=domain,
            name=extract_display_name(first_sender) or domain,
            category=categorize_service(domain),
            logo_url=get_service_logo_url(domain, self._logo_token),
            default_privacy_email=privacy or support or f"privacy@{domain}",
        )

    @staticmethod
    def _apply_contacts(aggregate: DomainAggregate) -> None:
        support, privacy = find_contact_addresses(aggregate.from_addresses)
        if support or privacy:
            aggregate.support_email = support
            aggregate.privacy_email = privacy
            aggregate.contact_confidence = "high"
        else:
            aggregate.support_email = f"support@{aggregate.domain}"
            aggregate.privacy_email = f"privacy@{aggregate.domain}"
            aggregate.contact_confidence = "low"
