import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError

from imagedeck.core.config import settings
from imagedeck.core.deps import get_generation_service, get_store
from imagedeck.core.exceptions import (
    AppException,
    app_exception_handler,
    validation_exception_handler,
    generic_exception_handler,
)
from imagedeck.api.v1 import decks, entities, health, images, slides
from imagedeck.api.v1 import settings as settings_api

# Configure logging
log_level = logging.DEBUG if settings.ENV == "development" else logging.INFO
logging.basicConfig(
    level=log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

# Suppress verbose logging from third-party libraries
noisy_loggers = [
    "httpx",
    "httpcore",
    "PIL",
    "multipart",
    "python_multipart",
]
for logger_name in noisy_loggers:
    logging.getLogger(logger_name).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = get_store()
    logger.info(f"Storage root: {store.base_dir}")
    if settings.RECONCILE_ON_STARTUP:
        removed = store.reconcile_all()
        total = sum(len(paths) for paths in removed.values())
        logger.info(f"Startup reconciliation removed {total} leftover path(s)")
    yield
    await get_generation_service().shutdown()


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Local slide deck builder with AI-generated 16:9 images",
    version="0.1.0",
    docs_url="/api/docs" if settings.ENV == "development" else None,
    redoc_url="/api/redoc" if settings.ENV == "development" else None,
    lifespan=lifespan,
)

# Register exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# In production, set CORS_ORIGINS (comma separated)
if settings.CORS_ORIGINS:
    origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",")]
else:
    origins = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-Requested-With"],
)

logger.info(f"Starting {settings.PROJECT_NAME} in {settings.ENV} mode")

app.include_router(health.router, prefix=settings.API_V1_PREFIX)
app.include_router(decks.router, prefix=settings.API_V1_PREFIX)
app.include_router(slides.router, prefix=settings.API_V1_PREFIX)
app.include_router(images.router, prefix=settings.API_V1_PREFIX)
app.include_router(entities.router, prefix=settings.API_V1_PREFIX)
app.include_router(settings_api.router, prefix=settings.API_V1_PREFIX)


@app.get("/")
def read_root():
    """Root endpoint - basic API status."""
    return {
        "message": "OK",
        "service": settings.PROJECT_NAME,
        "version": "0.1.0",
    }
