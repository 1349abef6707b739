from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import get_settings
from app.dependencies.services import get_rpc_client_cached
from app.schemas.billing import PaymentErrorResponse
from app.services.exceptions import PaymentError

# Import routers directly from submodules
from app.tools.invoice import router as invoice_router
from app.tools.payment import router as payment_router
from app.mcp_server import mcp
from app.health import router as health_router


def configure_logging() -> None:
    """Ensure application logs use the INFO level by default."""
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    else:
        root_logger.setLevel(logging.INFO)

# Configure logging as soon as the module is loaded
configure_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manages application startup and shutdown events.
    """
    # --- Startup Logic ---
    settings = get_settings()

    # Log application settings on startup
    settings_snapshot = settings.model_dump(exclude={"api_keys"})
    logger.info("Application settings on startup: %s", settings_snapshot)

    # Initialize shared resources
    client = get_rpc_client_cached()
    logger.info("Application startup complete.")

    try:
        async with mcp.session_manager.run():
            yield  # The application is now running
    finally:
        # --- Shutdown Logic ---
        logger.info("Closing RPC client connection.")
        await client.close()
        logger.info("Application shutdown complete.")


# --- Application Setup ---

settings = get_settings()
app = FastAPI(
    title=settings.app_name,
    lifespan=lifespan,
    redirect_slashes=False
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError) -> JSONResponse:
    body = PaymentErrorResponse(error=exc.kind, message=str(exc), transient=exc.transient)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


# --- Include Routers and Mounts ---

app.include_router(invoice_router, prefix="/v1/invoices")
app.include_router(payment_router, prefix="/pay")
app.include_router(health_router)

# Mount the MCP Streamable HTTP server at /mcp
app.mount("/mcp", mcp.streamable_http_app())
