import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from scribe.core.config import settings, validate_config
from scribe.core.logging import configure_logging
from scribe.core.middleware.request_id import RequestIdMiddleware
from scribe.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from scribe.core.database import create_all_tables
from scribe.api import billing, health, usage

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("scribe")
    logger.info("Starting Scribe backend...")
    if settings.ENV != "production":
        create_all_tables()
    try:
        yield
    finally:
        logger.info("Stopping Scribe backend...")


app = FastAPI(title="Scribe - Billing & Usage", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(billing.router, prefix="/api", tags=["billing"])
app.include_router(usage.router, prefix="/api", tags=["usage"])
app.include_router(health.router, tags=["health"])
