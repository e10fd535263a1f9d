import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from . import config
from .database import Base, engine
from .domain.billing.router import router as billing_router
from .domain.contracts.public_router import router as public_contracts_router
from .domain.contracts.router import router as contracts_router
from .errors import (
    LifecycleError,
    lifecycle_error_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("stripe").setLevel(logging.WARNING)
logging.getLogger("botocore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")

    result = config.validate_environment()
    for warning in result.warnings:
        logger.warning(f"⚠️ {warning}")
    if result.missing:
        logger.warning(f"⚠️ Missing environment variables: {', '.join(result.missing)}")
    if not result.ok and config.ENVIRONMENT == "production":
        raise config.EnvironmentValidationError(
            f"Invalid production configuration (missing: {result.missing}, warnings: {result.warnings})"
        )

    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")

    yield
    logger.info("Application shutting down...")


app = FastAPI(title="Contracts API", version="1.0.0", lifespan=lifespan)

app.add_exception_handler(LifecycleError, lifecycle_error_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    try:
        response = await call_next(request)
        return response
    except Exception as e:
        logger.error(f"{request.method} {request.url.path} - Error: {str(e)}")
        raise


logger.info(f"CORS allowed origins: {config.ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)

# Routes
app.include_router(contracts_router)
app.include_router(public_contracts_router)
app.include_router(billing_router)


@app.get("/")
def root():
    return {"message": "Contracts API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}
