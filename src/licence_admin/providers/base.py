"""Base provider interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class ProviderPage:
    """One page of raw provider records."""

    records: list[Any] = field(default_factory=list)
    page: int = 1
    total_pages: int | None = None

    @property
    def is_last(self) -> bool:
        if self.total_pages is not None:
            return self.page >= self.total_pages
        return not self.records


class BaseLicenseProvider(ABC):
    """Abstract base class for external license feeds.

    Providers are read-only: nothing is ever written back.
    """

    @abstractmethod
    async def test_connection(self) -> bool:
        """Test the provider connection.

        Returns:
            True if connection is successful
        """

    @abstractmethod
    async def fetch_page(self, page: int) -> ProviderPage:
        """Fetch one page of raw license records.

        Records are returned as received; sanitization happens later. Each
        record is expected to look like::

            {id, countid, appid, licenseType, dba, zip, mid, status,
             activateDate, comingExpired, monthlyFee, smsBalance,
             emailLicense, package, note, sendbatWorkspace, lastActive}

        Raises:
            TransientInfrastructureError: On timeouts or connection loss
            ExternalSyncError: On non-retryable provider errors
        """


class StaticLicenseProvider(BaseLicenseProvider):
    """Provider over an in-memory record list, used for imports and tests."""

    def __init__(self, records: list[Any], page_size: int = 100) -> None:
        self.records = list(records)
        self.page_size = page_size

    async def test_connection(self) -> bool:
        return True

    async def fetch_page(self, page: int) -> ProviderPage:
        start = (page - 1) * self.page_size
        total_pages = max(1, -(-len(self.records) // self.page_size))
        return ProviderPage(
            records=self.records[start : start + self.page_size],
            page=page,
            total_pages=total_pages,
        )
