from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import os

from novelly.core.config import settings
from novelly.container import build_container
from novelly.database import init_db
from novelly.routers import books, catalog, feed, history, library, recommendations
from novelly.scheduler import start_scheduler, stop_scheduler
from novelly.utils.timing import utcnow

# ----------------------------
# Logging
# ----------------------------
logger = logging.getLogger("novelly")
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

# Server fingerprint for debugging
SERVER_BOOT_ID = f"novelly-backend::{os.getpid()}::{utcnow().isoformat()}"

app = FastAPI(debug=settings.DEBUG)


# ----------------------------
# CORS
# ----------------------------
cors_origins = settings.cors_origins_list
logger.info("[CORS] allow_origins=%s", cors_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("[UNHANDLED] %s %s", request.method, request.url.path)

    response = JSONResponse(
        status_code=500,
        content={"detail": "Internal Server Error"}
    )

    # Ensure CORS headers are present in error responses
    origin = request.headers.get("origin")
    if origin and origin in cors_origins:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"

    return response


# ----------------------------
# Routers
# ----------------------------
app.include_router(catalog.router, prefix="/api")
app.include_router(books.router, prefix="/api")
app.include_router(recommendations.router, prefix="/api")
app.include_router(library.router, prefix="/api")
app.include_router(history.router, prefix="/api")
app.include_router(feed.router, prefix="/api")


@app.on_event("startup")
async def on_startup() -> None:
    logger.info("[BOOT] %s", SERVER_BOOT_ID)
    init_db()

    container = build_container()
    app.state.container = container
    await container.enrichment.start()

    if settings.ENABLE_SCHEDULER:
        start_scheduler(container.enrichment)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    stop_scheduler()
    container = getattr(app.state, "container", None)
    if container is not None:
        await container.library.drain()
        await container.enrichment.stop()
    logger.info("[SHUTDOWN] %s", SERVER_BOOT_ID)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/api/health")
def api_health_check():
    return {"status": "ok"}
