"""Retry, lock and logging helper tests."""

import asyncio

import pytest

from licence_admin.exceptions import ExternalSyncError, TransientInfrastructureError
from licence_admin.utils import retry
from licence_admin.utils.locks import KeyedLock
from licence_admin.utils.retry import retry_transient
from licence_admin.utils.secure_logging import describe_error, sanitize_exception_message


@pytest.fixture
def no_sleep(monkeypatch):
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    monkeypatch.setattr(retry.asyncio, "sleep", fake_sleep)
    return delays


class TestRetryTransient:
    """Batch-level retry."""

    async def test_succeeds_after_transient_failures(self, no_sleep) -> None:
        attempts = {"count": 0}

        async def operation() -> str:
            attempts["count"] += 1
            if attempts["count"] < 3:
                raise TransientInfrastructureError("connection reset")
            return "ok"

        result = await retry_transient(operation, attempts=3, base_delay=2.0, multiplier=2.0)

        assert result == "ok"
        assert no_sleep == [2.0, 4.0]

    async def test_gives_up(self, no_sleep) -> None:
        async def operation() -> None:
            raise TransientInfrastructureError("connection reset")

        with pytest.raises(TransientInfrastructureError):
            await retry_transient(operation, attempts=2)
        assert len(no_sleep) == 1

    async def test_non_transient_errors_propagate_immediately(self, no_sleep) -> None:
        attempts = {"count": 0}

        async def operation() -> None:
            attempts["count"] += 1
            raise ExternalSyncError("bad request")

        with pytest.raises(ExternalSyncError):
            await retry_transient(operation, attempts=3)
        assert attempts["count"] == 1
        assert no_sleep == []

    async def test_timeout_counts_as_transient(self, no_sleep) -> None:
        async def operation() -> None:
            await asyncio.Event().wait()

        with pytest.raises(TransientInfrastructureError) as exc_info:
            await retry_transient(operation, attempts=2, timeout=0.01, description="Page 1")
        assert "timed out" in exc_info.value.message


class TestKeyedLock:
    """Per-key in-process locks."""

    async def test_try_hold_rejects_second_holder(self) -> None:
        locks = KeyedLock()
        async with locks.try_hold("scope") as first:
            assert first is True
            assert locks.locked("scope")
            async with locks.try_hold("scope") as second:
                assert second is False
            async with locks.try_hold("other") as other:
                assert other is True
        assert not locks.locked("scope")

    async def test_hold_serializes(self) -> None:
        locks = KeyedLock()
        order: list[str] = []

        async def worker(name: str) -> None:
            async with locks.hold("license"):
                order.append(f"{name}-in")
                await asyncio.sleep(0)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert order == ["a-in", "a-out", "b-in", "b-out"]


class TestSecureLogging:
    """Error message redaction."""

    def test_urls_and_emails_redacted(self) -> None:
        error = RuntimeError(
            "connect to postgresql://admin:pw@db.internal/licences failed for ops@example.com"
        )
        message = sanitize_exception_message(error)
        assert "admin:pw" not in message
        assert "ops@example.com" not in message
        assert "[URL]" in message

    def test_describe_error(self) -> None:
        assert describe_error(ValueError("bad value")) == "ValueError: bad value"

    def test_truncated(self) -> None:
        assert len(sanitize_exception_message(ValueError("x " * 500), max_length=50)) == 50
