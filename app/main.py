"""
MemorySphere Backend API
Trial / subscription entitlement and data retention for MemorySphere accounts.
"""
from dotenv import load_dotenv
load_dotenv()

import logging
import os
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)],
    force=True  # Override any existing configuration
)

logger = logging.getLogger(__name__)


def run_migrations() -> None:
    """Run Alembic migrations on startup. Uses alembic.ini and DATABASE_URL.
    Fails startup if migrations fail, so the DB is never left out of sync."""
    project_root = Path(__file__).resolve().parent.parent
    alembic_ini = project_root / "alembic.ini"
    if not alembic_ini.exists():
        logger.warning("alembic.ini not found, skipping Alembic migrations")
        return
    if not os.getenv("DATABASE_URL"):
        logger.warning("DATABASE_URL is not set. Alembic migrations will not run.")
        return
    try:
        alembic_cfg = Config(str(alembic_ini))
        alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
        command.upgrade(alembic_cfg, "head")
        logger.info("Alembic migrations completed successfully")
    except Exception as e:
        logger.exception("Alembic migration failed: %s", e)
        raise


from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.api.routes import auth, users, subscription, webhooks, data_deletion, memories, tasks
from app.core.config import settings
from app.db.session import engine
from app.db.base import Base
# Import all models to ensure they're registered with Base
from app.models import User, Subscription, UserDeletionSchedule, Memory, Task, JobLock  # noqa: F401

app = FastAPI(title=f"{settings.APP_NAME} API")


@app.on_event("startup")
async def startup_event():
    """Run Alembic migrations, then make sure every table exists."""
    run_migrations()
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables verified")
    except Exception as e:
        logger.error("Error creating tables: %s", e)
        raise


app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",
        settings.FRONTEND_URL,
    ],
    allow_origin_regex=r"https://.*\.(onrender\.com|vercel\.app)",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(auth.router, prefix="/auth", tags=["Auth"])
app.include_router(users.router, prefix="/users", tags=["Users"])
app.include_router(subscription.router, prefix="/subscription", tags=["Subscription"])
app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])
app.include_router(data_deletion.router, prefix="/data-deletion", tags=["Data Deletion"])
app.include_router(memories.router, prefix="/memories", tags=["Memories"])
app.include_router(tasks.router, prefix="/tasks", tags=["Tasks"])


@app.get("/health")
def health():
    return {"status": "ok"}
