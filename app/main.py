# app/main.py
"""
FastAPI application entry point.
Includes security middleware, global error handlers, and all routers.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from app.routers import webhook, throttle, health
from app.database import create_tables
from app.config import settings
from app.services import graph_service, metrics_service
from app.services.background import dispatcher
from app.utils.logger import get_logger
import time
import asyncio

logger = get_logger(__name__)

app = FastAPI(
    title="IREX Webhook Ingestion API",
    description="Receives IREX event webhooks, samples snapshots to Cloudinary, mirrors to Neo4j.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS (IREX and dashboards post cross-origin) ─────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=".*",   # echo any Origin back (credentials allowed)
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


# ── API Key Middleware ───────────────────────────────────────────────────────
class APIKeyMiddleware(BaseHTTPMiddleware):
    """
    Optional lightweight API key auth for the admin endpoints.
    Webhooks (/api/webhook/*) are excluded — IREX doesn't send keys.
    Set API_KEY in .env. Leave empty to disable auth.
    """
    open_paths = {"/api/health", "/docs", "/redoc", "/openapi.json"}

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if (path in self.open_paths or path.startswith("/api/webhook/")
                or request.method == "OPTIONS" or not settings.API_KEY):
            return await call_next(request)

        api_key = request.headers.get("X-API-Key") or request.query_params.get("api_key")
        if api_key != settings.API_KEY:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Invalid or missing API key"},
            )
        return await call_next(request)


if settings.API_KEY:
    app.add_middleware(APIKeyMiddleware)


# ── Request Timing Middleware ────────────────────────────────────────────────
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 2)
    logger.debug(f"{request.method} {request.url.path} → {response.status_code} ({duration}ms)")
    return response


# ── Global Exception Handler ─────────────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"status": "error", "error": "Internal server error"},
    )


# ── Routers ──────────────────────────────────────────────────────────────────
app.include_router(webhook.router,  prefix="/api", tags=["📡 IREX Webhook"])
app.include_router(throttle.router, prefix="/api", tags=["🎚️  Image Throttle"])
app.include_router(health.router,   prefix="/api", tags=["💚 Health"])


# ── Startup ───────────────────────────────────────────────────────────────────
_metrics_task = None


@app.on_event("startup")
async def startup():
    global _metrics_task
    logger.info("🚀 IREX ingestion backend starting up...")
    if settings.DATABASE_CONFIGURED:
        create_tables()
        logger.info("✅ Database tables ready")
    else:
        logger.warning("⚠️  DATABASE_URL not set — webhooks will be accepted but not persisted")

    logger.info(f"☁️  Cloudinary configured: {settings.CLOUDINARY_CONFIGURED}")
    await graph_service.init_schema()

    if settings.INFLUXDB_CONFIGURED and settings.METRICS_INTERVAL_SECONDS > 0:
        _metrics_task = asyncio.create_task(metrics_service.run_periodic_emitter(settings.METRICS_INTERVAL_SECONDS))

    logger.info(f"🌐 Listening on http://{settings.BACKEND_HOST}:{settings.BACKEND_PORT}")
    logger.info("📖 API docs at /docs")


@app.on_event("shutdown")
async def shutdown():
    logger.info("🛑 IREX ingestion backend shutting down...")
    if _metrics_task is not None:
        _metrics_task.cancel()
        await asyncio.gather(_metrics_task, return_exceptions=True)
    await dispatcher.drain()
