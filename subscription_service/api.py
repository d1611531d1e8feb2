import logging
from typing import Annotated, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import text
from sqlalchemy.orm import Session

from . import schema
from .book_client import BookClient
from .circuit_breaker import BreakerRegistry
from .config import Settings, get_settings
from .coordinator import SubscriptionCoordinator
from .database import get_db
from .errors import RemoteUnavailable, SubscriptionError

logger = logging.getLogger(__name__)


def get_book_client(request: Request) -> BookClient:
    return request.app.state.book_client


def get_breakers(request: Request) -> BreakerRegistry:
    return request.app.state.breakers


def get_coordinator(
    db: Annotated[Session, Depends(get_db)],
    book_client: Annotated[BookClient, Depends(get_book_client)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> SubscriptionCoordinator:
    return SubscriptionCoordinator(db, book_client, copies_guard=settings.COPIES_GUARD_ENABLED)


def _raise_http(error: SubscriptionError) -> NoReturn:
    headers = None
    if isinstance(error, RemoteUnavailable):
        headers = {"Retry-After": str(error.retry_after)}
    raise HTTPException(status_code=error.status_code, detail=error.detail, headers=headers) from error


subscription_router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])


@subscription_router.get("", response_model=list[schema.Subscription])
def retrieve_subscriptions(
    coordinator: Annotated[SubscriptionCoordinator, Depends(get_coordinator)],
) -> list[schema.Subscription]:
    return coordinator.list_subscriptions()


@subscription_router.get("/{subscription_id}", response_model=schema.Subscription)
def retrieve_subscription(
    subscription_id: int,
    coordinator: Annotated[SubscriptionCoordinator, Depends(get_coordinator)],
) -> schema.Subscription:
    db_subscription = coordinator.get_subscription(subscription_id)
    if db_subscription is None:
        raise HTTPException(status_code=404, detail=f"Subscription not found with ID: {subscription_id}")
    return db_subscription


@subscription_router.post("", response_model=schema.Subscription, status_code=status.HTTP_201_CREATED)
def create_subscription(
    subscription: schema.SubscriptionCreate,
    coordinator: Annotated[SubscriptionCoordinator, Depends(get_coordinator)],
) -> schema.Subscription:
    try:
        return coordinator.create_subscription(subscription)
    except SubscriptionError as e:
        logger.info("Subscription for bookId %s refused: %s", subscription.book_id, e.detail)
        _raise_http(e)


@subscription_router.put("/{subscription_id}/return", response_model=schema.Subscription)
def return_subscription(
    subscription_id: int,
    return_request: schema.SubscriptionReturn,
    coordinator: Annotated[SubscriptionCoordinator, Depends(get_coordinator)],
) -> schema.Subscription:
    try:
        return coordinator.close_subscription(subscription_id, return_request.date_returned)
    except SubscriptionError as e:
        logger.info("Return of subscription %s refused: %s", subscription_id, e.detail)
        _raise_http(e)


monitoring_router = APIRouter(tags=["Monitoring"])


@monitoring_router.get("/health/ping", status_code=status.HTTP_200_OK)
def health_check(db: Annotated[Session, Depends(get_db)]) -> dict:
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.exception("Health check failed: Database connection error")
        raise HTTPException(
            status_code=503,
            detail={"status": "error", "database": "disconnected"},
        ) from e
    else:
        return {"status": "ok", "database": "connected"}


@monitoring_router.get("/health/breakers", response_model=list[schema.BreakerSnapshot])
def breaker_states(
    breakers: Annotated[BreakerRegistry, Depends(get_breakers)],
) -> list[schema.BreakerSnapshot]:
    return breakers.snapshot()
