import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.config import (
    CORS_ALLOW_CREDENTIALS,
    CORS_ALLOW_HEADERS,
    CORS_ALLOW_METHODS,
    CORS_ALLOW_ORIGINS,
)
from backend.container import build_container
from backend.logging_config import configure_logging
from backend.routers import attendance, auth, core, devices, kiosk, students
from database.db import create_tables

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    create_tables()
    container = build_container()
    container.hub.bind_loop(asyncio.get_running_loop())
    app.state.container = container
    logger.info("Rollcall API started")
    try:
        yield
    finally:
        container.hub.bind_loop(None)
        logger.info("Rollcall API stopped")


app = FastAPI(title="Rollcall API", lifespan=lifespan)

# -----------------------------
# CORS (admin dashboard dev server)
# -----------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=CORS_ALLOW_CREDENTIALS,
    allow_methods=CORS_ALLOW_METHODS,
    allow_headers=CORS_ALLOW_HEADERS,
)

app.include_router(core.router)
app.include_router(auth.router)
app.include_router(attendance.router)
app.include_router(students.router)
app.include_router(devices.router)
app.include_router(kiosk.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("backend.main:app", host="0.0.0.0", port=8000)
