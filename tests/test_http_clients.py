"""Provider feed and reminder webhook client tests.

HTTP traffic goes through ``httpx.MockTransport`` installed as the shared
class-level client.
"""

import json
from uuid import uuid4

import httpx
import pytest

from licence_admin.exceptions import ExternalSyncError, TransientInfrastructureError
from licence_admin.models.domain.license import ReminderWindow
from licence_admin.providers.external_api import ExternalLicenseApiProvider
from licence_admin.services import notification_service
from licence_admin.services.notification_service import (
    LoggingReminderNotifier,
    WebhookReminderNotifier,
    get_reminder_notifier,
)


def install_transport(cls, handler) -> None:
    cls._http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture(autouse=True)
async def reset_clients():
    yield
    await ExternalLicenseApiProvider.close_client()
    await WebhookReminderNotifier.close_client()


@pytest.fixture
def no_sleep(monkeypatch):
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    monkeypatch.setattr(notification_service.asyncio, "sleep", fake_sleep)
    return delays


class TestExternalLicenseApiProvider:
    """Paginated provider feed."""

    def _provider(self) -> ExternalLicenseApiProvider:
        return ExternalLicenseApiProvider(
            base_url="https://provider.test/api/", api_key="secret-key", page_size=2, timeout=5
        )

    async def test_fetch_page(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={"data": [{"id": "1"}, {"id": "2"}], "meta": {"totalPages": 3}},
            )

        install_transport(ExternalLicenseApiProvider, handler)

        page = await self._provider().fetch_page(2)

        assert [r["id"] for r in page.records] == ["1", "2"]
        assert page.total_pages == 3
        assert page.is_last is False
        request = seen[0]
        assert request.url.path == "/api/api/v1/licenses"
        assert request.url.params["page"] == "2"
        assert request.url.params["limit"] == "2"
        assert request.headers["x-api-key"] == "secret-key"

    async def test_total_pages_from_total(self) -> None:
        install_transport(
            ExternalLicenseApiProvider,
            lambda request: httpx.Response(200, json={"data": [{"id": "1"}], "meta": {"total": 5}}),
        )
        page = await self._provider().fetch_page(1)
        assert page.total_pages == 3

    async def test_empty_page_without_meta_is_last(self) -> None:
        install_transport(
            ExternalLicenseApiProvider, lambda request: httpx.Response(200, json={"data": []})
        )
        page = await self._provider().fetch_page(4)
        assert page.total_pages is None
        assert page.is_last is True

    @pytest.mark.parametrize("status_code", [429, 500, 503])
    async def test_retryable_status_is_transient(self, status_code: int) -> None:
        install_transport(
            ExternalLicenseApiProvider, lambda request: httpx.Response(status_code)
        )
        with pytest.raises(TransientInfrastructureError):
            await self._provider().fetch_page(1)

    @pytest.mark.parametrize("status_code", [400, 401, 404])
    async def test_client_error_is_not_retryable(self, status_code: int) -> None:
        install_transport(
            ExternalLicenseApiProvider, lambda request: httpx.Response(status_code)
        )
        with pytest.raises(ExternalSyncError):
            await self._provider().fetch_page(1)

    async def test_timeout_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        install_transport(ExternalLicenseApiProvider, handler)
        with pytest.raises(TransientInfrastructureError):
            await self._provider().fetch_page(1)

    async def test_invalid_body_rejected(self) -> None:
        install_transport(
            ExternalLicenseApiProvider,
            lambda request: httpx.Response(200, json={"data": {"id": "1"}}),
        )
        with pytest.raises(ExternalSyncError):
            await self._provider().fetch_page(1)

    async def test_connection_check(self) -> None:
        install_transport(
            ExternalLicenseApiProvider, lambda request: httpx.Response(200, json={"data": []})
        )
        assert await self._provider().test_connection() is True

        install_transport(ExternalLicenseApiProvider, lambda request: httpx.Response(401))
        assert await self._provider().test_connection() is False


class TestWebhookReminderNotifier:
    """Reminder webhook delivery."""

    async def test_posts_reminder(self, no_sleep) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(202)

        install_transport(WebhookReminderNotifier, handler)
        license_id = uuid4()

        sent = await WebhookReminderNotifier("https://hooks.test/reminders").send_reminder(
            license_id, ReminderWindow.SEVEN_DAYS
        )

        assert sent is True
        assert bodies == [
            {
                "event": "license.renewal_reminder",
                "license_id": str(license_id),
                "window": "7days",
            }
        ]
        assert no_sleep == []

    async def test_retries_server_errors(self, no_sleep) -> None:
        responses = iter([httpx.Response(502), httpx.Response(503), httpx.Response(200)])
        install_transport(WebhookReminderNotifier, lambda request: next(responses))

        sent = await WebhookReminderNotifier("https://hooks.test/r", max_retries=3).send_reminder(
            uuid4(), ReminderWindow.ONE_DAY
        )

        assert sent is True
        assert no_sleep == [1.0, 2.0]

    async def test_honours_retry_after(self, no_sleep) -> None:
        responses = iter([httpx.Response(429, headers={"Retry-After": "7"}), httpx.Response(200)])
        install_transport(WebhookReminderNotifier, lambda request: next(responses))

        sent = await WebhookReminderNotifier("https://hooks.test/r").send_reminder(
            uuid4(), ReminderWindow.ONE_DAY
        )

        assert sent is True
        assert no_sleep == [7.0]

    async def test_client_error_not_retried(self, no_sleep) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(400)

        install_transport(WebhookReminderNotifier, handler)

        sent = await WebhookReminderNotifier("https://hooks.test/r").send_reminder(
            uuid4(), ReminderWindow.THIRTY_DAYS
        )

        assert sent is False
        assert len(calls) == 1

    async def test_gives_up_after_max_retries(self, no_sleep) -> None:
        install_transport(WebhookReminderNotifier, lambda request: httpx.Response(500))

        sent = await WebhookReminderNotifier("https://hooks.test/r", max_retries=2).send_reminder(
            uuid4(), ReminderWindow.THIRTY_DAYS
        )

        assert sent is False
        assert no_sleep == [1.0]

    async def test_logging_notifier_used_without_url(self) -> None:
        from licence_admin.config import get_settings

        settings = get_settings().model_copy(update={"reminder_webhook_url": None})
        notifier = get_reminder_notifier(settings)
        assert isinstance(notifier, LoggingReminderNotifier)
        assert await notifier.send_reminder(uuid4(), ReminderWindow.ONE_DAY) is True

        settings = settings.model_copy(update={"reminder_webhook_url": "https://hooks.test/r"})
        assert isinstance(get_reminder_notifier(settings), WebhookReminderNotifier)
