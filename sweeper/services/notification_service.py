"""
Sweep outcome notifications.

Each outcome writes an in-app notification row and sends a templated
transactional e-mail through Resend. Delivery is best-effort: failures are
logged and never change the sweep's terminal state.
"""

from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from sweeper.config import settings
from sweeper.features.sweep.pipeline.scoring.service import generate_account_summary
from sweeper.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
REQUEST_TIMEOUT = 10  # seconds

COMPLETED_TITLE = "Sweep completed"
COMPLETED_MESSAGE = (
    "Your inbox has been scanned and your dashboard has been updated with the "
    "latest accounts and breaches."
)
FAILED_TITLE = "Sweep failed"
FAILED_MESSAGE = (
    "We couldn't complete your latest sweep. This often happens if your Gmail "
    "connection expired. Please reconnect Gmail and try again."
)
FAILED_EMAIL_MESSAGE = (
    "We couldn't complete your latest sweep. This usually happens if your Gmail "
    "connection expired or Google temporarily blocked access. Please reconnect "
    "Gmail from your dashboard and try again."
)


class NotificationStore(Protocol):
    async def insert_notification(
        self, user_id: str, notification_type: str, title: str, message: str, metadata: dict
    ) -> None: ...


class EmailDeliveryError(Exception):
    kind = "email_delivery"

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True, slots=True)
class SweepSummary:
    services_found: int
    breaches_found: int
    plan_label: str
    duration_seconds: float
    gmail_address: str


class NotificationService:
    def __init__(
        self,
        store: NotificationStore,
        resend_api_key: str | None = None,
        from_address: str | None = None,
        completed_template_id: str | None = None,
        failed_template_id: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._store = store
        self.resend_api_key = (
            resend_api_key if resend_api_key is not None else settings.RESEND_API_KEY
        )
        self.from_address = from_address or settings.RESEND_FROM_ADDRESS
        self.completed_template_id = completed_template_id or settings.SWEEP_COMPLETED_TEMPLATE_ID
        self.failed_template_id = failed_template_id or settings.SWEEP_FAILED_TEMPLATE_ID
        self._client = client

    async def notify_completed(
        self, user_id: str, recipient: str | None, summary: SweepSummary
    ) -> None:
        await self._insert_in_app(
            user_id,
            "sweep_completed",
            COMPLETED_TITLE,
            COMPLETED_MESSAGE,
            {
                "services_found": summary.services_found,
                "breaches_found": summary.breaches_found,
                "summary": generate_account_summary(
                    summary.services_found, summary.breaches_found
                ),
            },
        )
        await self._send_email(
            user_id,
            recipient,
            self.completed_template_id,
            {
                "total_accounts": summary.services_found,
                "breaches_found": summary.breaches_found,
                "plan_label": summary.plan_label,
                "scan_duration_seconds": f"{summary.duration_seconds:.3f}",
                "gmail_address": summary.gmail_address,
            },
        )

    async def notify_failed(
        self,
        user_id: str,
        recipient: str | None,
        gmail_address: str | None,
        error: str,
    ) -> None:
        await self._insert_in_app(
            user_id, "sweep_failed", FAILED_TITLE, FAILED_MESSAGE, {"error": error}
        )
        await self._send_email(
            user_id,
            recipient,
            self.failed_template_id,
            {"gmail_address": gmail_address or "", "error_message": FAILED_EMAIL_MESSAGE},
        )

    async def _insert_in_app(
        self, user_id: str, notification_type: str, title: str, message: str, metadata: dict
    ) -> None:
        try:
            await self._store.insert_notification(
                user_id, notification_type, title, message, metadata
            )
        except Exception as e:
            logger.error(
                "Failed to insert in-app notification",
                user_id=user_id,
                notification_type=notification_type,
                error=str(e),
            )

    async def _send_email(
        self, user_id: str, recipient: str | None, template_id: str, variables: dict[str, Any]
    ) -> None:
        if not recipient:
            logger.warning("No recipient for sweep e-mail, skipping", user_id=user_id)
            return
        if not self.resend_api_key:
            logger.warning("RESEND_API_KEY not configured, skipping sweep e-mail", user_id=user_id)
            return

        try:
            await self.send_template_email(recipient, template_id, variables)
            logger.info("Sweep e-mail sent", user_id=user_id, template_id=template_id)
        except EmailDeliveryError as e:
            logger.error(
                "Failed to send sweep e-mail",
                user_id=user_id,
                template_id=template_id,
                status_code=e.status_code,
                error=str(e),
            )

    async def send_template_email(
        self, recipient: str, template_id: str, variables: dict[str, Any]
    ) -> dict:
        """
        POST a templated e-mail to Resend.

        Raises:
            EmailDeliveryError: transport failure or non-2xx response
        """
        payload: dict[str, Any] = {
            "to": recipient,
            "template": {"id": template_id, "variables": variables},
        }
        if self.from_address:
            payload["from"] = self.from_address

        headers = {
            "Authorization": f"Bearer {self.resend_api_key}",
            "Content-Type": "application/json",
        }

        try:
            if self._client:
                response = await self._client.post(RESEND_API_URL, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
                    response = await client.post(RESEND_API_URL, json=payload, headers=headers)
        except httpx.RequestError as e:
            raise EmailDeliveryError(f"Resend transport error: {e}") from e

        if not response.is_success:
            raise EmailDeliveryError(
                f"Resend returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise EmailDeliveryError(
                f"Resend returned an unreadable body: {e}", status_code=response.status_code
            ) from e
