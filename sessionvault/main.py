"""SessionVault FastAPI application entry point."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sessionvault import __version__, config
from sessionvault.mirror.scheduler import SyncScheduler, run_initial_sync
from sessionvault.mirror.sync_engine import SyncEngine
from sessionvault.observability import initialize as initialize_observability, shutdown as shutdown_observability
from sessionvault.parsers.sessions import SessionParser
from sessionvault.routers.analytics import analytics_router
from sessionvault.routers.api import projects_router, search_router, sessions_router, tasks_router
from sessionvault.routers.sync import settings_router, sync_router, system_router
from sessionvault.scanner import IndexCache

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("sessionvault")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("SessionVault %s starting up", __version__)
    initialize_observability(app)

    runtime = config.resolve_runtime_config()
    app.state.runtime_config = runtime
    logger.info("Sources: %s -> %s", [str(p) for p in runtime.sourceDirs], runtime.dataDir)

    engine = SyncEngine(runtime.sourceDirs, runtime.dataDir)
    index_cache = IndexCache(runtime.dataDir)
    scheduler = SyncScheduler(engine, index_cache, runtime.syncIntervalSeconds)
    app.state.sync_engine = engine
    app.state.index_cache = index_cache
    app.state.sync_scheduler = scheduler
    app.state.session_parser = SessionParser(runtime.sessionCacheSize)

    async def _run_startup_sync() -> None:
        delay = max(0, config.STARTUP_SYNC_DELAY_SECONDS)
        if delay > 0:
            await asyncio.sleep(delay)
        await run_initial_sync(engine, index_cache)

    # Run in the background so startup is not blocked on a large first copy.
    app.state.sync_task = asyncio.create_task(_run_startup_sync())
    scheduler.start()

    yield

    logger.info("SessionVault shutting down")
    app.state.sync_task.cancel()
    try:
        await app.state.sync_task
    except asyncio.CancelledError:
        pass
    await scheduler.stop()
    shutdown_observability(app)


app = FastAPI(
    title="SessionVault API",
    description="Mirror, index and browse assistant conversation logs",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sync_router)
app.include_router(system_router)
app.include_router(settings_router)
app.include_router(projects_router)
app.include_router(sessions_router)
app.include_router(tasks_router)
app.include_router(analytics_router)
app.include_router(search_router)


@app.get("/api/health")
def health():
    scheduler = getattr(app.state, "sync_scheduler", None)
    return {
        "status": "ok",
        "scheduler": "running" if scheduler is not None and scheduler.is_running else "stopped",
    }


def run() -> None:
    import uvicorn

    runtime = config.resolve_runtime_config()
    uvicorn.run("sessionvault.main:app", host=config.HOST, port=runtime.port)


if __name__ == "__main__":
    run()
