"""FastAPI application entry point."""

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.errors import APIError, api_error_handler
from app.config import DATABASE_PATH, LOG_LEVEL
from app.db.database import close_database, init_database

# Configure logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup and shutdown."""
    await init_database(DATABASE_PATH)
    yield
    await close_database()


app = FastAPI(
    title="Sim Workflow Service",
    description="Store, deploy and execute block-based automation workflows",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware - allow any localhost port for local editors
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"^http://localhost(:\d+)?$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(APIError, api_error_handler)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


# Import and include routers after app is created to avoid circular imports
from app.api import environment, execute, files, workflows  # noqa: E402

app.include_router(workflows.router, prefix="/api", tags=["workflows"])
app.include_router(execute.router, prefix="/api", tags=["execute"])
app.include_router(environment.router, prefix="/api", tags=["environment"])
app.include_router(files.router, prefix="/api", tags=["files"])
