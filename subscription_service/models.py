from sqlalchemy import Column, Date, Integer, String

from .database import Base

SUBSCRIBER_NAME_MAX_LENGTH = 100
BOOK_ID_MAX_LENGTH = 32


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    subscriber_name = Column(String(SUBSCRIBER_NAME_MAX_LENGTH), nullable=False, index=True)
    date_subscribed = Column(Date, nullable=False)
    date_returned = Column(Date, nullable=True)
    # Lookup-only reference into the book service; no foreign key across services.
    book_id = Column(String(BOOK_ID_MAX_LENGTH), nullable=False, index=True)

    @property
    def is_checkout(self) -> bool:
        return self.date_returned is None

    def __repr__(self):
        return (
            f"<Subscription(id={self.id}, subscriber_name='{self.subscriber_name}', "
            f"book_id='{self.book_id}', date_subscribed={self.date_subscribed}, "
            f"date_returned={self.date_returned})>"
        )
