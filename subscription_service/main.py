import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from . import api, crud, models
from .book_client import BOOK_SERVICE, BookClient
from .circuit_breaker import BreakerRegistry, MonitoringListener, breaker_config_from_settings
from .config import get_settings
from .database import SessionLocal, engine

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.info("Application starting up... Creating database tables.")
    models.Base.metadata.create_all(bind=engine)
    if settings.SEED_DATA:
        db = SessionLocal()
        try:
            crud.seed_subscriptions(db)
        finally:
            db.close()

    breakers = BreakerRegistry(
        configs={BOOK_SERVICE: breaker_config_from_settings(settings, BOOK_SERVICE)},
        listeners=[MonitoringListener()],
    )
    app.state.breakers = breakers
    app.state.book_client = BookClient.from_settings(settings, breakers.get(BOOK_SERVICE))
    logging.info("Startup complete.")
    yield
    logging.info("Application shutting down...")
    app.state.book_client.close()


app = FastAPI(
    title="Subscription Service",
    description="Manages book subscriptions and keeps book copies in step with the book service.",
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


app.include_router(api.subscription_router)
app.include_router(api.monitoring_router)

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)
