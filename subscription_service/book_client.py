import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from urllib.parse import quote

import httpx
from prometheus_client import Counter

from .circuit_breaker import CircuitBreaker
from .config import Settings

logger = logging.getLogger(__name__)

BOOK_SERVICE = "book-service"

HTTP_NOT_FOUND = 404
HTTP_CONFLICT = 409

BOOK_SERVICE_FALLBACKS_TOTAL = Counter(
    "subscription_service_book_service_fallbacks_total",
    "Total number of book service calls answered by a fallback",
    ["operation"],
)


class CopiesUpdateStatus(str, enum.Enum):
    UPDATED = "UPDATED"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    DEGRADED = "DEGRADED"


@dataclass(frozen=True)
class CopiesLookup:
    book_id: str
    available_copies: int = 0
    found: bool = True
    degraded: bool = False


@dataclass(frozen=True)
class CopiesUpdate:
    book_id: str
    status: CopiesUpdateStatus
    book: dict | None = None
    detail: str | None = None
    retry_after: int | None = None


class BookClient:
    """Reads and writes available-copies counts on the book service.

    Both calls go through the same breaker. Transport errors, timeouts and
    unexpected statuses are turned into fallback results here, so callers
    only ever see ``CopiesLookup`` / ``CopiesUpdate`` values.
    """

    def __init__(self, client: httpx.Client, breaker: CircuitBreaker, retry_after: int = 30) -> None:
        self.client = client
        self.breaker = breaker
        self.retry_after = retry_after

    @classmethod
    def from_settings(cls, settings: Settings, breaker: CircuitBreaker) -> "BookClient":
        client = httpx.Client(
            base_url=settings.BOOK_SERVICE_URL,
            timeout=httpx.Timeout(
                settings.BOOK_SERVICE_READ_TIMEOUT,
                connect=settings.BOOK_SERVICE_CONNECT_TIMEOUT,
            ),
        )
        return cls(client, breaker, retry_after=settings.RETRY_AFTER_SECONDS)

    def close(self) -> None:
        self.client.close()

    def get_available_copies(self, book_id: str) -> CopiesLookup:
        return self.breaker.call_with_fallback(
            self._fetch_copies,
            self._available_copies_fallback,
            book_id,
        )

    def update_available_copies(
        self,
        book_id: str,
        copies: int,
        expected: int | None = None,
    ) -> CopiesUpdate:
        return self.breaker.call_with_fallback(
            self._put_copies,
            self._update_copies_fallback,
            book_id,
            copies,
            expected=expected,
        )

    def _fetch_copies(self, book_id: str) -> CopiesLookup:
        logger.info("Contacting book service at %s for bookId %s", self.client.base_url, book_id)
        response = self.client.get(_book_path(book_id))
        if response.status_code == HTTP_NOT_FOUND:
            logger.warning("Book service has no book with bookId: %s", book_id)
            return CopiesLookup(book_id, found=False)
        response.raise_for_status()
        return CopiesLookup(book_id, available_copies=int(response.json()["copiesAvailable"]))

    def _put_copies(self, book_id: str, copies: int, expected: int | None = None) -> CopiesUpdate:
        params = {"expected": expected} if expected is not None else None
        response = self.client.put(_book_path(book_id), json=copies, params=params)
        if response.status_code == HTTP_NOT_FOUND:
            logger.warning("Book service has no book with bookId: %s", book_id)
            return CopiesUpdate(book_id, CopiesUpdateStatus.NOT_FOUND, detail=_detail(response))
        if response.status_code == HTTP_CONFLICT:
            logger.warning("Book service rejected stale copies update for bookId: %s", book_id)
            return CopiesUpdate(book_id, CopiesUpdateStatus.CONFLICT, detail=_detail(response))
        response.raise_for_status()
        logger.info("Successfully updated book copies for bookId: %s to %s", book_id, copies)
        return CopiesUpdate(book_id, CopiesUpdateStatus.UPDATED, book=response.json())

    def _available_copies_fallback(self, book_id: str, exc: Exception) -> CopiesLookup:
        logger.error("Book service fallback while reading copies for bookId %s: %s", book_id, exc)
        BOOK_SERVICE_FALLBACKS_TOTAL.labels(operation="read").inc()
        return CopiesLookup(book_id, available_copies=0, degraded=True)

    def _update_copies_fallback(
        self,
        book_id: str,
        copies: int,
        expected: int | None = None,
        exc: Exception | None = None,
    ) -> CopiesUpdate:
        logger.error("Book service fallback while updating copies for bookId %s: %s", book_id, exc)
        BOOK_SERVICE_FALLBACKS_TOTAL.labels(operation="update").inc()
        return CopiesUpdate(
            book_id,
            CopiesUpdateStatus.DEGRADED,
            detail=unavailable_message(),
            retry_after=self.retry_after,
        )


def unavailable_message() -> str:
    timestamp = datetime.now().isoformat(timespec="seconds")
    return f"Book service is temporarily unavailable. Please try again later - {timestamp}"


def _book_path(book_id: str) -> str:
    return f"/books/{quote(book_id, safe='')}"


def _detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    return data.get("detail", response.text) if isinstance(data, dict) else response.text
