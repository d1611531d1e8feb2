"""Subscription decisions that depend on the book service's copies count.

Creating or closing a subscription reads the current count, decides, writes
the new count, and only then touches the local store:

    read copies -> decide -> write copies -> persist subscription

A failed or short-circuited call at either remote step stops the sequence
before the local write, so a subscription is never stored without its
inventory adjustment. The two stores are not updated atomically, though:
concurrent requests for the same book can read the same count and the later
write wins, unless the copies guard is enabled, in which case the book
service rejects writes based on a stale read.
"""

import logging
from datetime import date

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import crud, models, schema
from .book_client import BookClient, CopiesUpdateStatus, unavailable_message
from .errors import (
    InvalidRequest,
    InventoryConflict,
    InventoryUnavailable,
    NotFound,
    RemoteUnavailable,
    StorageFailure,
)

logger = logging.getLogger(__name__)


class SubscriptionCoordinator:
    def __init__(self, db: Session, book_client: BookClient, copies_guard: bool = False) -> None:
        self.db = db
        self.book_client = book_client
        self.copies_guard = copies_guard

    def list_subscriptions(self) -> list[models.Subscription]:
        return crud.get_subscriptions(self.db)

    def get_subscription(self, subscription_id: int) -> models.Subscription | None:
        return crud.get_subscription(self.db, subscription_id)

    def create_subscription(self, request: schema.SubscriptionCreate) -> models.Subscription:
        _validate(request)
        book_id = request.book_id.strip()
        returning = request.date_returned is not None

        available = self._available_copies(book_id)
        if not returning and available <= 0:
            logger.warning("Book copies not available for subscription. BookId: %s", book_id)
            raise InventoryUnavailable("Book copies are not available for subscription")

        new_count = available + 1 if returning else available - 1
        self._update_copies(book_id, new_count, available)

        try:
            return crud.create_subscription(self.db, request)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception(
                "Failed to store subscription for bookId %s after its copies were set to %s; "
                "inventory and subscriptions now disagree",
                book_id,
                new_count,
            )
            raise StorageFailure("Failed to store subscription") from e

    def close_subscription(self, subscription_id: int, date_returned: date | None) -> models.Subscription:
        """Mark a checkout as returned and give its copy back to the book service."""
        db_subscription = crud.get_subscription(self.db, subscription_id)
        if db_subscription is None:
            raise NotFound(f"Subscription not found with ID: {subscription_id}")
        if date_returned is None:
            raise InvalidRequest("Invalid request: dateReturned is required")
        if not db_subscription.is_checkout:
            raise InvalidRequest(f"Subscription {subscription_id} has already been returned")
        if date_returned < db_subscription.date_subscribed:
            raise InvalidRequest("Invalid request: dateReturned cannot precede dateSubscribed")

        available = self._available_copies(db_subscription.book_id)
        self._update_copies(db_subscription.book_id, available + 1, available)

        try:
            return crud.mark_returned(self.db, db_subscription, date_returned)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception(
                "Failed to mark subscription %s returned after bookId %s copies were set to %s",
                subscription_id,
                db_subscription.book_id,
                available + 1,
            )
            raise StorageFailure("Failed to store subscription") from e

    def _available_copies(self, book_id: str) -> int:
        lookup = self.book_client.get_available_copies(book_id)
        if lookup.degraded:
            # The fallback count is not an answer from the book service.
            logger.warning("Degraded copies lookup for bookId %s; refusing to decide", book_id)
            raise RemoteUnavailable(unavailable_message(), retry_after=self.book_client.retry_after)
        if not lookup.found:
            raise NotFound(f"Book not found with ID: {book_id}")
        return lookup.available_copies

    def _update_copies(self, book_id: str, copies: int, read_count: int) -> None:
        expected = read_count if self.copies_guard else None
        update = self.book_client.update_available_copies(book_id, copies, expected=expected)

        if update.status is CopiesUpdateStatus.DEGRADED:
            raise RemoteUnavailable(update.detail, retry_after=update.retry_after)
        if update.status is CopiesUpdateStatus.NOT_FOUND:
            raise NotFound(f"Book not found with ID: {book_id}")
        if update.status is CopiesUpdateStatus.CONFLICT:
            raise InventoryConflict(
                f"Copies for book {book_id} changed while the subscription was processed; retry the request",
            )


def _validate(request: schema.SubscriptionCreate) -> None:
    if request.subscriber_name is None or not request.subscriber_name.strip():
        raise InvalidRequest("Invalid request: subscriberName is required and cannot be empty")
    if request.date_subscribed is None:
        raise InvalidRequest("Invalid request: dateSubscribed is required")
    if request.book_id is None or not request.book_id.strip():
        raise InvalidRequest("Invalid request: bookId is required and cannot be empty")
    if len(request.subscriber_name.strip()) > models.SUBSCRIBER_NAME_MAX_LENGTH:
        raise InvalidRequest(
            f"Invalid request: subscriberName cannot exceed {models.SUBSCRIBER_NAME_MAX_LENGTH} characters",
        )
    if len(request.book_id.strip()) > models.BOOK_ID_MAX_LENGTH:
        raise InvalidRequest(f"Invalid request: bookId cannot exceed {models.BOOK_ID_MAX_LENGTH} characters")
    if request.date_returned is not None and request.date_returned < request.date_subscribed:
        raise InvalidRequest("Invalid request: dateReturned cannot precede dateSubscribed")
