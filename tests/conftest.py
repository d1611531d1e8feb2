from collections.abc import Callable, Iterator

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from book_service import crud as book_crud
from book_service import database as book_database
from book_service import models as book_models  # noqa: F401
from book_service.main import app as book_app
from subscription_service import database as subscription_database
from subscription_service import models as subscription_models
from subscription_service.book_client import BOOK_SERVICE, BookClient
from subscription_service.circuit_breaker import BreakerConfig, BreakerRegistry
from subscription_service.main import app as subscription_app


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class UnreachableBookService:
    """Transport handler that times out every request and counts attempts."""

    def __init__(self) -> None:
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        raise httpx.ConnectTimeout("timed out", request=request)


def _session_factory(base) -> sessionmaker:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def _get_db_override(sessions: sessionmaker) -> Callable[[], Iterator[Session]]:
    def _get_db() -> Iterator[Session]:
        db = sessions()
        try:
            yield db
        finally:
            db.close()

    return _get_db


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def book_sessions() -> sessionmaker:
    sessions = _session_factory(book_database.Base)
    db = sessions()
    try:
        book_crud.seed_books(db)
    finally:
        db.close()
    return sessions


@pytest.fixture
def book_api(book_sessions) -> Iterator[TestClient]:
    book_app.dependency_overrides[book_database.get_db] = _get_db_override(book_sessions)
    yield TestClient(book_app, base_url="http://book-service")
    book_app.dependency_overrides.clear()


@pytest.fixture
def book_copies(book_sessions) -> Callable[[str], int]:
    def _copies(book_id: str) -> int:
        db = book_sessions()
        try:
            return book_crud.get_book(db, book_id).available_copies
        finally:
            db.close()

    return _copies


@pytest.fixture
def breakers(clock) -> BreakerRegistry:
    config = BreakerConfig(
        failure_rate_threshold=0.5,
        window_size=4,
        minimum_calls=2,
        reset_timeout=30.0,
        half_open_max_calls=1,
    )
    return BreakerRegistry(configs={BOOK_SERVICE: config}, clock=clock)


@pytest.fixture
def book_client(book_api, breakers) -> BookClient:
    return BookClient(book_api, breakers.get(BOOK_SERVICE), retry_after=30)


@pytest.fixture
def unreachable() -> UnreachableBookService:
    return UnreachableBookService()


@pytest.fixture
def unreachable_book_client(unreachable, breakers) -> BookClient:
    client = httpx.Client(base_url="http://book-service", transport=httpx.MockTransport(unreachable))
    return BookClient(client, breakers.get(BOOK_SERVICE), retry_after=30)


@pytest.fixture
def subscription_sessions() -> sessionmaker:
    return _session_factory(subscription_database.Base)


@pytest.fixture
def subscription_db(subscription_sessions) -> Iterator[Session]:
    db = subscription_sessions()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def stored_subscriptions(subscription_sessions) -> Callable[[], list]:
    def _stored() -> list:
        db = subscription_sessions()
        try:
            return db.query(subscription_models.Subscription).order_by(subscription_models.Subscription.id).all()
        finally:
            db.close()

    return _stored


@pytest.fixture
def subscription_api_for(subscription_sessions, breakers) -> Iterator[Callable[[BookClient], TestClient]]:
    subscription_app.dependency_overrides[subscription_database.get_db] = _get_db_override(subscription_sessions)

    def _client(book_client: BookClient) -> TestClient:
        subscription_app.state.book_client = book_client
        subscription_app.state.breakers = breakers
        return TestClient(subscription_app)

    yield _client
    subscription_app.dependency_overrides.clear()


@pytest.fixture
def subscription_api(subscription_api_for, book_client) -> TestClient:
    return subscription_api_for(book_client)
