"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from attachments.config import settings
from attachments.database import engine, get_db
from attachments.models import Base

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup; settle background work on shutdown."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    if not settings.RAG_API_URL:
        logger.warning("RAG_API_URL not set, semantic indexing disabled")

    yield

    # Cleanup
    from attachments.services.background import background_tasks
    from attachments.services.upload_processor import close_upload_processor
    await background_tasks.shutdown()
    await close_upload_processor()
    await engine.dispose()


app = FastAPI(
    title="Chat Attachments API",
    version="1.0.0",
    description="Upload, routing and processing of chat file attachments.",
    lifespan=lifespan,
)

# CORS
origins = [o.strip() for o in settings.CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api/health")
async def health_check():
    """Verify API and database connectivity."""
    try:
        async for db in get_db():
            await db.execute(text("SELECT 1"))
            return {"status": "ok", "database": "connected"}
    except Exception as e:
        return {"status": "error", "database": str(e)}


# Register routers
from attachments.routes.files import router as files_router
app.include_router(files_router)
