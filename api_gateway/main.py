import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from . import api
from .config import get_settings

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.http_client = httpx.AsyncClient(timeout=settings.UPSTREAM_TIMEOUT)
    logging.info("Gateway routes: %s", settings.routes)
    yield
    await app.state.http_client.aclose()


app = FastAPI(
    title="API Gateway",
    description="Routes /book-service/** and /subscription-service/** to their services.",
    lifespan=lifespan,
)

app.include_router(api.monitoring_router)
app.include_router(api.gateway_router)
