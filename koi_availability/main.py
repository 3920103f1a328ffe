from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from koi_availability.base.config import settings
from koi_availability.base.error_handlers import register_exception_handlers
from koi_availability.base.logging_config import app_logger as logger
from koi_availability.routers import availability

APP_VERSION = "1.0.0"

# --- FastAPI app instance ---
app = FastAPI(
    title="Koi Consultation Availability API",
    version=APP_VERSION,
    debug=settings.DEBUG_MODE,
    docs_url=None if settings.IS_PROD else "/docs",
    redoc_url=None if settings.IS_PROD else "/redoc",
    openapi_url=None if settings.IS_PROD else "/openapi.json"
)

# --- CORS config ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Prometheus metrics ---
if settings.ENABLE_PROMETHEUS:
    Instrumentator().instrument(app).expose(app)

# --- Logging middleware ---
@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.info(f"📥 {request.method} request to {request.url}")
    response = await call_next(request)
    logger.info(f"📤 Response: {response.status_code} for {request.url}")
    return response

# --- Exception handlers ---
register_exception_handlers(app)

# --- API Routers ---
app.include_router(availability.router)

# --- Lifecycle ---
@app.on_event("shutdown")
def cancel_pending_refreshes():
    cancelled = availability.refresh_service.cancel_all()
    if cancelled:
        logger.info(f"Cancelled {cancelled} in-flight schedule refreshes on shutdown")

# --- System endpoints ---
@app.get("/health", tags=["System"])
def health_check():
    return {"status": "ok"}

@app.get("/version", tags=["System"])
def version_check():
    return {
        "version": APP_VERSION,
        "api_version": settings.API_VERSION,
        "environment": settings.ENVIRONMENT,
        "timezone": settings.TIMEZONE,
    }
