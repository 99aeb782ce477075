import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from zta.config import settings
from zta.limiter import limiter
from zta.db import create_db_and_tables, check_database
from zta.errors import register_exception_handlers
from zta.storage import get_blob_store
from zta.api import (
    alerts,
    annotations,
    api_keys,
    auth,
    error_log,
    funnels,
    goals,
    heatmaps,
    imports,
    sites,
    stats,
    teams,
    track,
    users,
    webhooks,
)
from zta.kafka_producer import (
    create_kafka_producer,
    close_kafka_producer,
    set_kafka_producer
)

logging.basicConfig(level=settings.LOG_LEVEL.upper())
logger = logging.getLogger("ZTA.Main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application startup...")

    logger.info("Initializing database...")
    create_db_and_tables()
    logger.info("Database initialization completed.")

    if settings.KAFKA_ENABLED:
        logger.info("Initializing Kafka Producer...")
        set_kafka_producer(create_kafka_producer())
        logger.info("Kafka initialized.")
    else:
        logger.info("Kafka disabled, events are written directly to the database.")

    yield
    logger.info("Application shutdown.")

    if settings.KAFKA_ENABLED:
        logger.info("Closing Kafka Producer...")
        close_kafka_producer()


app = FastAPI(
    title="Zero Trust Analytics API",
    lifespan=lifespan
)

# Initialize the limiter with app
app.state.limiter = limiter
register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials="*" not in settings.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


# Routers
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(sites.router)
app.include_router(track.router)
app.include_router(stats.router)
app.include_router(goals.router)
app.include_router(funnels.router)
app.include_router(alerts.router)
app.include_router(annotations.router)
app.include_router(webhooks.router)
app.include_router(teams.router)
app.include_router(heatmaps.router)
app.include_router(api_keys.router)
app.include_router(error_log.router)
app.include_router(imports.router)


@app.get("/")
def read_root():
    return {"message": "Welcome to the Zero Trust Analytics API"}


@app.get("/api/health")
def health():
    """Database and blob store status. 503 when either is down."""
    checks = {
        "database": "ok" if check_database() else "error",
        "storage": "ok" if get_blob_store().ping() else "error",
    }
    healthy = all(v == "ok" for v in checks.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={"status": "ok" if healthy else "degraded", "checks": checks},
    )
