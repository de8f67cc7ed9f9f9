from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import aiohttp
from fastapi import FastAPI

from .api import metrics as metrics_api
from .config import get_settings
from .errors import PersistenceError
from .metrics import build_service
from .storage.sqlite import SQLiteSnapshotStore


settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

store = SQLiteSnapshotStore(settings.sqlite_path)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan context manager for startup/shutdown."""
    # Startup: storage, one shared HTTP session, the metric service
    tracked_store: SQLiteSnapshotStore | None = store
    try:
        await store.init()
    except PersistenceError as e:
        # Values are still served; only previous/direction go missing.
        logger.error(f"Snapshot store unavailable, delta tracking disabled: {e.message}")
        tracked_store = None

    session = aiohttp.ClientSession(headers={"User-Agent": "topsignals/0.1"})
    metrics_api.set_service(build_service(settings, session=session, store=tracked_store))

    yield

    # Shutdown
    metrics_api.set_service(None)
    await session.close()


app = FastAPI(
    title="Top Signals Core API",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(metrics_api.router)


@app.get("/health")
async def health() -> dict[str, Any]:
    return {"ok": True, "ts": int(time.time())}
