"""
Identity Search - who is "Mandy", and where did we talk about the flight?
FastAPI Application Entry Point

Run with:

    uvicorn api.main:app --host 127.0.0.1 --port 8000

The server reads the local Messages and Contacts databases, so the process
needs Full Disk Access on macOS.
"""
# Load environment variables from .env file first, before any imports
from dotenv import load_dotenv
load_dotenv()

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from api.routes import identity, imessage
from config.settings import settings

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    # Startup: warn early about sources that will be skipped
    if not settings.messages_db_path.expanduser().exists():
        logger.warning(f"Messages database not found at {settings.messages_db_path}")
    if not settings.clay_enabled:
        logger.info("CLAY_API_KEY not set; Clay evidence disabled")
    if not settings.gmail_enabled:
        logger.info(f"No Gmail token at {settings.gmail_token_path}; Gmail evidence disabled")

    yield

    logger.info("Identity Search shutting down")


app = FastAPI(
    title="Identity Search",
    description="Identity resolution and evidence-based search over messages, contacts, CRM notes and mail",
    version="0.1.0",
    lifespan=lifespan
)

# CORS middleware for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(identity.router)
app.include_router(imessage.router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Convert validation errors to 400 with clear messages."""
    errors = exc.errors()

    # Sanitize errors for JSON serialization (convert bytes to string)
    sanitized_errors = []
    for error in errors:
        sanitized = dict(error)
        if "input" in sanitized and isinstance(sanitized["input"], bytes):
            sanitized["input"] = sanitized["input"].decode("utf-8", errors="replace")
        sanitized.pop("ctx", None)
        sanitized_errors.append(sanitized)

    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "detail": sanitized_errors}
    )


@app.get("/health")
async def health_check():
    """Health check endpoint reporting which sources are usable."""
    from api.services.contact_index import get_contact_index

    checks = {
        "messages_db": settings.messages_db_path.expanduser().exists(),
        "address_book": settings.address_book_dir.expanduser().exists(),
        "clay": settings.clay_enabled,
        "gmail": settings.gmail_enabled,
    }

    return {
        "status": "healthy" if checks["messages_db"] else "degraded",
        "service": "identity-search",
        "checks": checks,
        "contact_index": get_contact_index().stats(),
    }


@app.get("/")
async def root():
    return {"message": "Identity Search API", "version": "0.1.0"}
