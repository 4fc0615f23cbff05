"""
API v1 Router
"""

from fastapi import APIRouter
from . import accounts, events

router = APIRouter()

router.include_router(events.router, prefix="/events", tags=["Events"])
router.include_router(accounts.router, prefix="/accounts", tags=["Accounts"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/events",
            "/events/jobs",
            "/accounts/sample",
            "/accounts/{accountId}/summary",
        ],
    }
