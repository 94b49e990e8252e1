"""
RuleKeeper Ruleset API Routes
"""

import asyncio

from fastapi import APIRouter, HTTPException, Query, Request

router = APIRouter()


@router.get("/lookup")
async def lookup_host(request: Request, host: str = Query(..., min_length=1)):
    """Get rulesets that apply to a host."""
    index = request.app.state.index
    ruleset_ids = index.rulesets_for_host(host)
    
    rulesets = []
    for ruleset_id in ruleset_ids:
        ruleset = index.get_ruleset(ruleset_id)
        if ruleset:
            rulesets.append(ruleset)
    
    return {"host": host, "rulesets": rulesets}


@router.get("/stats")
async def get_rule_stats(request: Request):
    """Get ruleset index statistics."""
    return request.app.state.index.stats()


@router.post("/reload")
async def reload_rules(request: Request):
    """Reload the ruleset index from the live database."""
    updater = request.app.state.updater
    if updater.running:
        raise HTTPException(409, "A ruleset update is in progress")
    
    index = request.app.state.index
    await asyncio.to_thread(index.reload)
    return {"success": True, **index.stats()}
