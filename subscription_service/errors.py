from datetime import datetime


class SubscriptionError(Exception):
    """Base class for outcomes the coordinator reports instead of a subscription."""

    status_code = 500

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class InvalidRequest(SubscriptionError):
    status_code = 400


class NotFound(SubscriptionError):
    status_code = 404


class InventoryConflict(SubscriptionError):
    status_code = 409


class InventoryUnavailable(SubscriptionError):
    status_code = 422


class RemoteUnavailable(SubscriptionError):
    status_code = 503

    def __init__(self, detail: str, retry_after: int, timestamp: datetime | None = None) -> None:
        super().__init__(detail)
        self.retry_after = retry_after
        self.timestamp = timestamp or datetime.now()


class StorageFailure(SubscriptionError):
    status_code = 500
