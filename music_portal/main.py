from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
import time

from .core.config import settings
from .core.database import close_db_connections
from .core.cache import cache
from .core.error_handlers import register_exception_handlers
from .core.logging import setup_logging

# Import all routers
from .routers import (
    attendance, auth, calendar, config, dashboard, families, google_drive, health, hybrid_bookings, invoices,
    lessons, meet_and_greet, notes, parents, resources, schools, students, teachers,
)

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.app_name} ({settings.environment})")

    await cache.connect()
    logger.info("Cache initialized" if cache.enabled else "Cache disabled")

    yield

    logger.info(f"Shutting down {settings.app_name}")
    await cache.disconnect()
    await close_db_connections()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Music School Portal API",
    description="Multi-tenant music school administration: lessons, hybrid bookings, attendance, billing and shared resources",
    version=settings.app_version,
    lifespan=lifespan,
)


@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    logger.info(f"{request.method} {request.url.path} - {response.status_code} - {process_time:.3f}s")
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials="*" not in settings.allowed_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=3600,
)

register_exception_handlers(app)

# Include all routers
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(schools.router)
app.include_router(config.router)
app.include_router(teachers.router)
app.include_router(parents.router)
app.include_router(students.router)
app.include_router(families.router)
app.include_router(lessons.router)
app.include_router(hybrid_bookings.router)
app.include_router(calendar.router)
app.include_router(attendance.router)
app.include_router(notes.router)
app.include_router(invoices.router)
app.include_router(meet_and_greet.router)
app.include_router(google_drive.router)
app.include_router(resources.router)
app.include_router(dashboard.router)


@app.get("/")
async def root():
    return {
        "message": "Music School Portal API",
        "version": settings.app_version,
        "docs": "/docs",
        "status": "active",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
