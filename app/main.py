from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import asyncio
import uvicorn
import logging
import time
from datetime import datetime
from dotenv import load_dotenv

from app.core.config import settings
from app.core.middleware import RequestTimingMiddleware, SecurityHeadersMiddleware
from app.core.cache import flow_store, reference_cache
from app.api.endpoints import split_shipping
from app.schemas.responses import HealthCheckResponse, ErrorResponse

load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.DEBUG else logging.WARNING,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

START_TIME = time.time()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application startup and shutdown"""
    logger.info("🚀 Starting split-shipping checkout service...")
    logger.info(f"Commerce backend: {settings.COMMERCE_API_BASE}")
    await flow_store.clear()
    await reference_cache.clear()
    cleanup_task = asyncio.create_task(flow_store.run_cleanup(settings.FLOW_CLEANUP_INTERVAL_SEC))
    logger.info("✅ Application started successfully!")

    yield

    logger.info("🛑 Shutting down...")
    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass
    # In-flight submissions are not rolled back; they finish or fail on their own
    pending = await flow_store.keys()
    await flow_store.clear()
    await reference_cache.clear()
    logger.info(f"✅ Dropped {len(pending)} open checkout flow(s); shutdown complete")


app = FastAPI(
    title="Split Shipping Checkout API",
    description="""
    Splits a cart across several shipping destinations and publishes the result
    to the commerce backend.

    ## Flow

    1. **Start**: `POST /split-shipping/flows` - fetch the cart and derive single or multi-address state
    2. **Edit**: `POST /split-shipping/flows/{cartId}/commands` - addresses, item quantities, delivery methods
    3. **Import**: `POST /split-shipping/flows/{cartId}/upload` - optional address CSV
    4. **Submit**: `POST /split-shipping/flows/{cartId}/submit` - write addresses, methods and targets to the cart
    """,
    version="1.0.0",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Split Shipping", "description": "Multi-address allocation flows"},
        {"name": "System", "description": "Health and diagnostics"},
    ],
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json")

# Normalize origins
allowed: list[str] = []
for o in settings.ALLOWED_ORIGINS.split(','):
    o = (o or "").strip()
    if not o:
        continue
    if o.endswith('/'):
        o = o[:-1]
    allowed.append(o)

cors_kwargs = dict(
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    allow_origins=allowed,
)
origin_regex = settings.ALLOWED_ORIGIN_REGEX
# In DEBUG, be permissive to avoid accidental CORS blocks during development
if settings.DEBUG and not origin_regex:
    origin_regex = r".*"
if origin_regex:
    cors_kwargs["allow_origin_regex"] = origin_regex

logger.info(f"[CORS] allowed_origins={allowed} regex={origin_regex}")

app.add_middleware(RequestTimingMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
# Register CORS middleware LAST so it becomes the outermost middleware
app.add_middleware(CORSMiddleware, **cors_kwargs)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for better error responses"""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    body = ErrorResponse(
        error_code="internal_error",
        message=str(exc) if settings.DEBUG else "Something went wrong",
    )
    return JSONResponse(status_code=500, content=body.model_dump(mode="json"))


app.include_router(split_shipping.router)


@app.get("/", tags=["System"])
async def root():
    """Root endpoint with basic API info"""
    return {
        "message": "📦 Split Shipping Checkout API",
        "version": "1.0.0",
        "docs": "/docs",
        "status": "operational"
    }


@app.get("/health", tags=["System"], response_model=HealthCheckResponse)
async def health_check():
    """Health check endpoint for monitoring"""
    return HealthCheckResponse(
        status="healthy",
        timestamp=datetime.utcnow(),
        version="1.0.0",
        open_flows=len(await flow_store.keys()),
        uptime_sec=int(time.time() - START_TIME),
    )


if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host=settings.APP_HOST,
        port=settings.APP_PORT,
        reload=True,
        log_level="info"
    )
