"""Renewal reminder delivery."""

import asyncio
import logging
from typing import ClassVar, Protocol
from uuid import UUID

import httpx

from licence_admin.config import Settings, get_settings
from licence_admin.models.domain.license import ReminderWindow

logger = logging.getLogger(__name__)

WEBHOOK_RETRY_DELAY = 1.0  # Base delay in seconds

USER_AGENT = "LicenceAdmin/1.0"


class ReminderNotifier(Protocol):
    """Delivers renewal reminders. Retries, if any, are the notifier's own."""

    async def send_reminder(self, license_id: UUID, window: ReminderWindow) -> bool:
        """Deliver one reminder; return True on success."""
        ...


class LoggingReminderNotifier:
    """Notifier that only writes reminders to the log."""

    async def send_reminder(self, license_id: UUID, window: ReminderWindow) -> bool:
        logger.info(f"Renewal reminder ({window}) for license {license_id}")
        return True


class WebhookReminderNotifier:
    """Posts reminders as JSON to a webhook URL."""

    # Shared HTTP client for connection reuse (class-level)
    _http_client: ClassVar[httpx.AsyncClient | None] = None

    def __init__(self, url: str, timeout: float = 10.0, max_retries: int = 3) -> None:
        self.url = url
        self.timeout = timeout
        self.max_retries = max(1, max_retries)

    @classmethod
    def _get_http_client(cls, timeout: float) -> httpx.AsyncClient:
        """Get or create shared HTTP client with connection pooling."""
        if cls._http_client is None or cls._http_client.is_closed:
            cls._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(timeout),
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
                headers={"User-Agent": USER_AGENT},
            )
        return cls._http_client

    @classmethod
    async def close_client(cls) -> None:
        """Close the shared HTTP client. Call on application shutdown."""
        if cls._http_client and not cls._http_client.is_closed:
            await cls._http_client.aclose()
            cls._http_client = None

    async def send_reminder(self, license_id: UUID, window: ReminderWindow) -> bool:
        """Post a reminder with retry and rate limit handling.

        Retries with exponential backoff on timeouts and 5xx responses and
        honours ``Retry-After`` on 429. Other 4xx responses are final.

        Args:
            license_id: License the reminder is about
            window: Reminder window that fired

        Returns:
            True if the webhook accepted the reminder
        """
        client = self._get_http_client(self.timeout)
        payload = {
            "event": "license.renewal_reminder",
            "license_id": str(license_id),
            "window": window.value,
        }

        for attempt in range(self.max_retries):
            last_attempt = attempt == self.max_retries - 1
            delay = WEBHOOK_RETRY_DELAY * (2**attempt)
            try:
                response = await client.post(self.url, json=payload)
            except httpx.TimeoutException:
                if last_attempt:
                    logger.error("Reminder webhook timeout after max retries")
                    return False
                logger.warning(f"Reminder webhook timeout, retrying in {delay}s")
                await asyncio.sleep(delay)
                continue
            except httpx.HTTPError as e:
                logger.error(f"HTTP error sending reminder webhook: {type(e).__name__}")
                return False

            if response.status_code == 429:
                try:
                    retry_after = float(response.headers.get("Retry-After", delay))
                except ValueError:
                    retry_after = delay
                if last_attempt:
                    break
                logger.warning(f"Reminder webhook rate limited, retrying after {retry_after}s")
                await asyncio.sleep(retry_after)
                continue

            if response.is_success:
                return True

            if response.status_code < 500:
                logger.error(f"Reminder webhook rejected request: HTTP {response.status_code}")
                return False

            if last_attempt:
                break
            logger.warning(
                f"Reminder webhook error HTTP {response.status_code}, retrying in {delay}s"
            )
            await asyncio.sleep(delay)

        logger.error(f"Reminder webhook failed after {self.max_retries} attempts")
        return False


def get_reminder_notifier(settings: Settings | None = None) -> ReminderNotifier:
    """Webhook notifier when a URL is configured, log-only otherwise."""
    settings = settings or get_settings()
    if settings.reminder_webhook_url:
        return WebhookReminderNotifier(
            settings.reminder_webhook_url,
            timeout=settings.reminder_webhook_timeout_seconds,
            max_retries=settings.reminder_webhook_max_retries,
        )
    return LoggingReminderNotifier()
