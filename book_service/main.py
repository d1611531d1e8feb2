import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from . import api, crud, models
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
            crud.seed_books(db)
        finally:
            db.close()
    logging.info("Startup complete.")
    yield
    logging.info("Application shutting down...")


app = FastAPI(
    title="Book Service",
    description="Owns the book catalog and the available-copies count of each book.",
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


app.include_router(api.book_router)
app.include_router(api.monitoring_router)

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)
