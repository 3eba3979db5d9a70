"""FastAPI server receiving Telegram webhook updates for the Copperx transfer bot."""

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from typing import Optional
import asyncio

from app.utils.config import settings
from app.utils.logger import get_logger
from app.agents.message_processor import create_message_processor

# Initialize logger first
logger = get_logger("api_server")

# Validate all services on startup
try:
    from app.utils.service_validator import log_service_status
    log_service_status()
except Exception as e:
    logger.warning(f"Could not validate services: {e}")

processor = create_message_processor()
sweeper_task: Optional[asyncio.Task] = None

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Telegram webhook backend for Copperx transfers",
    version=settings.app_version,
    docs_url="/docs" if settings.debug else None,  # Disable docs in production
    redoc_url="/redoc" if settings.debug else None  # Disable redoc in production
)

# Initialize rate limiter
limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "X-Telegram-Bot-Api-Secret-Token"],
)

# General exception handler
@app.exception_handler(Exception)
async def general_exception_handler(request, exc: Exception):
    logger.error(f"Unexpected error: {str(exc)}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "status": False,
            "message": "An unexpected error occurred",
            "data": None
        }
    )


@app.on_event("startup")
async def start_flow_sweeper():
    """Expire idle transfer flows in the background."""
    global sweeper_task
    sweeper_task = asyncio.create_task(processor.transfers.states.run_sweeper())
    if settings.telegram_enabled:
        logger.info("Telegram chat interface enabled; point the bot webhook at https://<your-domain>/telegram/webhook")


@app.on_event("shutdown")
async def stop_processor():
    if sweeper_task is not None:
        sweeper_task.cancel()
    processor.close()


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": settings.app_version,
        "active_flows": len(processor.transfers.states),
    }


# =============================================================================
# TELEGRAM WEBHOOK
# =============================================================================

@app.post("/telegram/webhook")
@limiter.limit("100/minute")
async def telegram_webhook(request: Request):
    """Handle one Telegram update (message or button press)."""
    if not settings.telegram_enabled:
        return Response(status_code=200)

    secret = (settings.telegram_webhook_secret or "").strip()
    if secret and request.headers.get("X-Telegram-Bot-Api-Secret-Token") != secret:
        return Response(status_code=403)

    try:
        body = await request.json()
    except ValueError:
        return Response(status_code=200)

    try:
        await processor.process_update(body)
    except Exception as e:
        # Telegram redelivers non-2xx updates; the user already got a reply or an error message
        logger.exception(f"Telegram webhook error: {e}")
    return Response(status_code=200)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, reload=settings.api_reload)
