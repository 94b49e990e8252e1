
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .. import __version__
from ..config import Settings, get_settings
from ..index import RulesetIndex
from ..storage.database import DatabaseManager
from ..updates import RulesetUpdater, UpdateScheduler

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting RuleKeeper...")
    
    settings: Settings = app.state.settings
    
    db_manager = DatabaseManager(
        db_path=str(settings.resolve_path(settings.database.path)),
        echo=settings.database.echo,
    )
    db_manager.init_db_sync()
    app.state.db_manager = db_manager
    
    app.state.index = RulesetIndex(db_manager)
    app.state.index.reload()
    
    app.state.updater = RulesetUpdater.from_settings(settings, db_manager, app.state.index)
    app.state.scheduler = UpdateScheduler(
        app.state.updater,
        interval_seconds=settings.updates.check_interval_seconds,
        initial_delay_seconds=settings.updates.initial_delay_seconds,
    )
    if settings.updates.enabled:
        await app.state.scheduler.start()
    else:
        logger.info("Scheduled ruleset updates are disabled")
    
    logger.info("RuleKeeper started successfully")
    
    yield
    
    logger.info("Shutting down RuleKeeper...")
    await app.state.scheduler.stop()
    await app.state.updater.aclose()
    db_manager.close()

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    app = FastAPI(
        title="RuleKeeper",
        description="Secure ruleset database updater",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings or get_settings()
    
    from .routes import rules, updates
    
    app.include_router(updates.router, prefix="/api/updates", tags=["Updates"])
    app.include_router(rules.router, prefix="/api/rules", tags=["Rules"])
    
    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "service": "rulekeeper"}
    
    return app

app = create_app()
