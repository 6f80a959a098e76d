"""
Connector Admin API
===================

FastAPI entry point for connector binding administration.

Run:
    python -m app.main
    uvicorn app.main:app --host 0.0.0.0 --port 8000
"""

import logging
from contextlib import asynccontextmanager
from os import getenv

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI

from connadmin import binding_router

load_dotenv(override=False)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and seed connector types on boot, stop workers on shutdown."""
    from connadmin.runtime import get_binding_store, reset_runtime

    get_binding_store().ensure_schema()
    logger.info("Binding store ready")

    yield

    reset_runtime()
    logger.info("Binding runtime stopped")


app = FastAPI(
    title="Connector Admin",
    description="Connector binding administration and credential validation API",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(binding_router)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )
    reload = getenv("RUNTIME_ENV", "prd") == "dev"
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=int(getenv("PORT", "8000")),
        reload=reload,
    )
