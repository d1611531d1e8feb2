import logging
from datetime import date

from sqlalchemy.orm import Session

from . import models, schema

logger = logging.getLogger(__name__)

SEED_SUBSCRIPTIONS = [
    {"subscriber_name": "John", "date_subscribed": date(2020, 6, 12), "date_returned": None, "book_id": "B1212"},
    {"subscriber_name": "Mark", "date_subscribed": date(2020, 4, 26), "date_returned": date(2020, 5, 14), "book_id": "B4232"},
    {"subscriber_name": "Peter", "date_subscribed": date(2020, 6, 22), "date_returned": None, "book_id": "B1212"},
]


# --- COMMANDS (Write Operations) ---
def create_subscription(db: Session, subscription: schema.SubscriptionCreate) -> models.Subscription:
    db_subscription = models.Subscription(
        subscriber_name=subscription.subscriber_name.strip(),
        date_subscribed=subscription.date_subscribed,
        date_returned=subscription.date_returned,
        book_id=subscription.book_id.strip(),
    )
    db.add(db_subscription)
    db.commit()
    db.refresh(db_subscription)
    logger.info(
        "Created subscription %s for bookId %s (%s).",
        db_subscription.id,
        db_subscription.book_id,
        "checkout" if db_subscription.is_checkout else "return",
    )
    return db_subscription


def mark_returned(db: Session, db_subscription: models.Subscription, date_returned: date) -> models.Subscription:
    db_subscription.date_returned = date_returned
    db.commit()
    db.refresh(db_subscription)
    logger.info("Marked subscription %s returned on %s.", db_subscription.id, date_returned)
    return db_subscription


def seed_subscriptions(db: Session) -> int:
    if db.query(models.Subscription).first() is not None:
        return 0
    db.add_all(models.Subscription(**data) for data in SEED_SUBSCRIPTIONS)
    db.commit()
    logger.info("Seeded %d subscriptions.", len(SEED_SUBSCRIPTIONS))
    return len(SEED_SUBSCRIPTIONS)


# --- QUERIES (Read Operations) ---
def get_subscription(db: Session, subscription_id: int) -> models.Subscription | None:
    return db.get(models.Subscription, subscription_id)


def get_subscriptions(db: Session) -> list[models.Subscription]:
    return db.query(models.Subscription).order_by(models.Subscription.id).all()
