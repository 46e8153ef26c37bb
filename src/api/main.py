"""
Main FastAPI Application Entry Point

==============================================================================
FEATURES IMPLEMENTED IN THIS MODULE:
==============================================================================

1. DAILY PLAYGROUND ALLOWANCE RESET (Feature: playground-allowance)
   - reset_play_allowance_task() runs for the lifetime of the server
   - Every ALLOWANCE_RESET_INTERVAL_SECONDS each org gets its plan quota back

2. ORPHAN CLEANUP (Feature: orphan-cleanup)
   - Evaluations left pending/running by a previous process are marked
     failed at startup

3. ERROR MAPPING (Feature: error-middleware)
   - Domain errors raised by services become JSON responses with the
     matching HTTP status

==============================================================================
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
import logging
import asyncio
from .controllers import router
from . import config
from .error_middleware import ErrorHandlerMiddleware
from .sqlite_service import get_db_service
from .evaluator_service import get_evaluator_service
from .playground_service import close_openai_clients

logger = logging.getLogger(__name__)


# ==============================================================================
# BACKGROUND TASKS (Feature: playground-allowance)
# ==============================================================================

async def reset_play_allowance_task(db, interval_seconds: int = config.ALLOWANCE_RESET_INTERVAL_SECONDS):
    """Background task restoring every org's playground allowance once per interval."""
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            reset_count = await db.reset_play_allowances()
            logger.info(f"Reset playground allowance of {reset_count} org(s)")
        except asyncio.CancelledError:
            logger.info("Playground allowance reset task cancelled")
            break
        except Exception as e:
            logger.error(f"Error in allowance reset task: {str(e)}")
            # Continue running despite errors


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting API server...")
    reset_task = None
    try:
        db = get_db_service()
        await db._ensure_initialized()

        orphaned = await get_evaluator_service(db).cleanup_orphaned_evaluations()
        logger.info(f"Orphaned evaluation cleanup completed ({orphaned} marked failed)")

        reset_task = asyncio.create_task(reset_play_allowance_task(db))
        logger.info("Started playground allowance reset task")
    except Exception as e:
        logger.error(f"Error during startup: {str(e)}")

    try:
        yield
    finally:
        if reset_task:
            reset_task.cancel()
            try:
                await reset_task
            except asyncio.CancelledError:
                pass
        await close_openai_clients()

    logger.info("API server shutting down...")


def create_app(with_lifespan: bool = True) -> FastAPI:
    app = FastAPI(title=config.API_TITLE, docs_url="/api/docs", lifespan=lifespan if with_lifespan else None)

    app.add_middleware(ErrorHandlerMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    @app.get("/")
    async def root():
        return {"message": "PromptLab API", "docs": "/api/docs"}

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s: %(message)s")
    uvicorn.run("src.api.main:app", host=config.API_HOST, port=config.API_PORT, reload=config.API_DEBUG)
