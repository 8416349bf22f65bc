# main.py
from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from routes import auth_routes, cart_routes, contact_routes, order_routes, product_routes
from core.config import settings
from core.rate_limit import limiter
from core.responses import envelope, install_exception_handlers
from db.database import engine, SessionLocal
from db.models import Base
from services.users import UserService

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
log = logging.getLogger("uvicorn.error")

app = FastAPI(title=f"{settings.APP_NAME} Storefront API", version="1.0")

# ------------- CORS -------------
def _parse_origins(raw: Optional[str]) -> list[str]:
    if not raw:
        return ["*"]
    # comma-separated string -> list, trimmed & non-empty
    parts = [p.strip() for p in raw.split(",")]
    return [p for p in parts if p]

allow_origins = _parse_origins(settings.CORS_ALLOW_ORIGINS)
# the session cookie needs credentials, which browsers refuse with a wildcard origin
allow_credentials = allow_origins != ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ------------- Request timing / API rate limit -------------
@app.middleware("http")
async def api_rate_limit(request: Request, call_next):
    if request.url.path.startswith("/api/"):
        client = request.client.host if request.client else "unknown"
        if limiter.hit(f"api:{client}", settings.API_RATE_LIMIT, settings.API_RATE_WINDOW_SECONDS):
            log.warning("API rate limit exceeded for %s", client)
            return envelope(request, "Too many requests. Please try again later.", 429)
    return await call_next(request)


# registered last so it runs first and the timer covers the rate limiter too
@app.middleware("http")
async def request_timer(request: Request, call_next):
    request.state.started_at = time.perf_counter()
    return await call_next(request)

install_exception_handlers(app)

# ------------- DB bootstrapping -------------
# NOTE: Prefer Alembic migrations for production.
Base.metadata.create_all(bind=engine)

# ------------- Routers -------------
app.include_router(auth_routes.router, prefix="/api/auth", tags=["Auth"])
app.include_router(product_routes.router, prefix="/api/products", tags=["Products"])
app.include_router(cart_routes.router, prefix="/api/cart", tags=["Cart"])
app.include_router(order_routes.router, prefix="/api/orders", tags=["Orders"])
app.include_router(contact_routes.router, prefix="/api/contact", tags=["Contact"])

# ------------- Health / Diagnostics -------------
@app.get("/")
def root(request: Request):
    return envelope(request, {"status": "ok", "message": f"{settings.APP_NAME} API up"})

@app.get("/health")
def health(request: Request):
    return envelope(request, {"status": "ok", "time": datetime.now(timezone.utc).isoformat()})

# ------------- OTP cleanup task -------------
# Expired or already-used OTP rows are never needed again.
def _purge_otps_once() -> int:
    db = SessionLocal()
    try:
        return UserService(db).purge_stale_otps()
    finally:
        db.close()

async def _purge_stale_otps_loop():
    while True:
        try:
            purged = await asyncio.to_thread(_purge_otps_once)
            if purged:
                log.info("OTP janitor: purged %d rows", purged)
            else:
                log.info("OTP janitor: nothing to purge")
            idle = limiter.sweep()
            if idle:
                log.info("OTP janitor: dropped %d idle rate-limit keys", idle)
        except Exception as e:
            log.exception("OTP janitor error: %s", e)

        await asyncio.sleep(settings.OTP_CLEANUP_INTERVAL_SECONDS)

_bg_task: Optional[asyncio.Task] = None

@app.on_event("startup")
async def on_startup() -> None:
    global _bg_task
    _bg_task = asyncio.create_task(_purge_stale_otps_loop())
    log.info("Startup complete. CORS origins=%s credentials=%s debug=%s",
             allow_origins, allow_credentials, settings.DEBUG)

@app.on_event("shutdown")
async def on_shutdown() -> None:
    global _bg_task
    if _bg_task and not _bg_task.done():
        _bg_task.cancel()
        try:
            await _bg_task
        except asyncio.CancelledError:
            pass
    log.info("Shutdown complete.")
