import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException

# Load env from the project .env before settings are read
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from diceraja.api import auth, health, rewards  # noqa: E402
from diceraja.core.config import settings, validate_config  # noqa: E402
from diceraja.core.database import create_all_tables, get_database_url  # noqa: E402
from diceraja.core.errors import (  # noqa: E402
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_error_handler,
    unhandled_exception_handler,
)
from diceraja.core.logging import configure_logging  # noqa: E402
from diceraja.core.middleware.metrics import MetricsMiddleware  # noqa: E402
from diceraja.core.middleware.ratelimit import RateLimitMiddleware  # noqa: E402
from diceraja.core.middleware.request_id import RequestIdMiddleware  # noqa: E402
from diceraja.core.ratelimit import RateLimitConfig  # noqa: E402
from diceraja.core.validation import validate_env  # noqa: E402

configure_logging(settings.ENV)
validate_env()
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("diceraja")
    logger.info("Starting Dice Raja backend...")
    if get_database_url():
        create_all_tables()
    else:
        logger.warning("DATABASE_URL not set; skipping schema creation")
    try:
        yield
    finally:
        logging.getLogger("diceraja").info("Stopping Dice Raja backend...")


app = FastAPI(title="Dice Raja - Backend", lifespan=lifespan)

# Middlewares (last added runs first)
app.add_middleware(RateLimitMiddleware, config=RateLimitConfig.from_settings())
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(auth.router, tags=["auth"])
app.include_router(rewards.router, tags=["rewards"])
app.include_router(health.router)


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run("diceraja.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8007")))
