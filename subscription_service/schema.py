from datetime import date

from pydantic import BaseModel, ConfigDict, Field


class SubscriptionCreate(BaseModel):
    """Incoming subscription request.

    Every field is optional at the schema level; presence is checked by the
    coordinator so that a missing field is reported as a 400, not a 422.
    """

    model_config = ConfigDict(populate_by_name=True)

    subscriber_name: str | None = Field(default=None, alias="subscriberName")
    date_subscribed: date | None = Field(default=None, alias="dateSubscribed")
    date_returned: date | None = Field(default=None, alias="dateReturned")
    book_id: str | None = Field(default=None, alias="bookId")


class SubscriptionReturn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date_returned: date | None = Field(default=None, alias="dateReturned")


class Subscription(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    subscriber_name: str = Field(alias="subscriberName")
    date_subscribed: date = Field(alias="dateSubscribed")
    date_returned: date | None = Field(default=None, alias="dateReturned")
    book_id: str = Field(alias="bookId")


class BreakerSnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    state: str
    failure_count: int = Field(alias="failureCount")
    buffered_calls: int = Field(alias="bufferedCalls")
    failure_rate: float = Field(alias="failureRate")
