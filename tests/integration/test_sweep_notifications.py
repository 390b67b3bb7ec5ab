import json

import pytest

from sweeper.services.notification_service import (
    RESEND_API_URL,
    EmailDeliveryError,
    NotificationService,
    SweepSummary,
)


def _service(store, api_key="re_test"):
    return NotificationService(
        store,
        resend_api_key=api_key,
        from_address="Sweeper <noreply@sweeper.test>",
        completed_template_id="tpl-completed",
        failed_template_id="tpl-failed",
    )


@pytest.mark.asyncio
async def test_completed_notification_and_email(httpx_mock, fake_repository):
    httpx_mock.add_response(method="POST", url=RESEND_API_URL, json={"id": "email-1"})
    summary = SweepSummary(
        services_found=12,
        breaches_found=2,
        plan_label="free",
        duration_seconds=4.5,
        gmail_address="someone@gmail.com",
    )

    await _service(fake_repository).notify_completed("user-1", "owner@example.com", summary)

    [notification] = fake_repository.notifications
    assert notification["type"] == "sweep_completed"
    assert notification["metadata"] == {
        "services_found": 12,
        "breaches_found": 2,
        "summary": "Found 12 accounts, 2 breaches detected",
    }

    request = httpx_mock.get_requests()[0]
    assert request.headers["Authorization"] == "Bearer re_test"
    payload = json.loads(request.content)
    assert payload["to"] == "owner@example.com"
    assert payload["template"]["id"] == "tpl-completed"
    assert payload["template"]["variables"] == {
        "total_accounts": 12,
        "breaches_found": 2,
        "plan_label": "free",
        "scan_duration_seconds": "4.500",
        "gmail_address": "someone@gmail.com",
    }


@pytest.mark.asyncio
async def test_failed_notification_uses_failure_template(httpx_mock, fake_repository):
    httpx_mock.add_response(method="POST", url=RESEND_API_URL, json={"id": "email-2"})

    await _service(fake_repository).notify_failed(
        "user-1", "owner@example.com", "someone@gmail.com", "Gmail account not found"
    )

    assert fake_repository.notifications[0]["type"] == "sweep_failed"
    payload = json.loads(httpx_mock.get_requests()[0].content)
    assert payload["template"]["id"] == "tpl-failed"
    assert set(payload["template"]["variables"]) == {"gmail_address", "error_message"}


@pytest.mark.asyncio
async def test_delivery_failures_are_swallowed(httpx_mock, fake_repository):
    fake_repository.fail_on["insert_notification"] = RuntimeError("db down")
    httpx_mock.add_response(method="POST", url=RESEND_API_URL, status_code=500, text="boom")

    await _service(fake_repository).notify_failed("user-1", "owner@example.com", None, "boom")

    assert fake_repository.notifications == []


@pytest.mark.asyncio
async def test_email_skipped_without_recipient_or_key(fake_repository):
    await _service(fake_repository).notify_failed("user-1", None, None, "boom")
    await _service(fake_repository, api_key="").notify_failed(
        "user-1", "owner@example.com", None, "boom"
    )

    assert len(fake_repository.notifications) == 2


@pytest.mark.asyncio
async def test_unreadable_success_body_is_a_delivery_error(httpx_mock, fake_repository):
    httpx_mock.add_response(method="POST", url=RESEND_API_URL, status_code=200, text="OK")

    with pytest.raises(EmailDeliveryError):
        await _service(fake_repository).send_template_email(
            "owner@example.com", "tpl-completed", {"total_accounts": 1}
        )
