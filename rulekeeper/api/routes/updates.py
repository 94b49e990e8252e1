"""
RuleKeeper Update API Routes
"""

from fastapi import APIRouter, Request

from ...updates.swapper import RULESET_VERSION_KEY

router = APIRouter()


@router.get("/status")
async def get_update_status(request: Request):
    """Get updater and scheduler status."""
    updater = request.app.state.updater
    db_manager = request.app.state.db_manager
    settings = request.app.state.settings
    
    return {
        "installed_version": db_manager.get_state(
            RULESET_VERSION_KEY, settings.updates.ruleset_version
        ),
        "extension_version": settings.updates.extension_version,
        "branch": settings.updates.branch,
        "updater": updater.get_status(),
        "scheduler": request.app.state.scheduler.get_stats(),
    }


@router.get("/history")
async def get_update_history(request: Request):
    """Get results of recent update attempts."""
    return {"history": request.app.state.updater.get_update_history()}


@router.post("/check")
async def check_for_update(request: Request):
    """Run an update attempt now."""
    result = await request.app.state.updater.fetch_update()
    return result.to_dict()
