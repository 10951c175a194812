"""
api/routes/activity.py -- The caller's own activity log.

Routes:
  GET    /api/activity?page=1&limit=20  -- paginated entries, newest first
  GET    /api/activity/summary          -- recent entries, 30-day counts, last login
  DELETE /api/activity/cleanup?days=90  -- drop own entries older than N days

Users only ever see and prune their own entries; there is no user_id
parameter to tamper with.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from activity.store import ActivityStore
from api.models import ActivityPage, ActivityRow, ActivitySummary, CleanupResponse, Pagination
from auth.dependencies import get_current_user
from auth.models import User

# Auth policy: every route requires authentication (get_current_user).
router = APIRouter()


@router.get("/activity", response_model=ActivityPage)
async def list_activity(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
) -> ActivityPage:
    store: ActivityStore = request.app.state.activity_store
    entries, pagination = store.list_for_user(current_user.id, page=page, limit=limit)
    return ActivityPage(
        activities=[ActivityRow.from_entry(e) for e in entries],
        pagination=Pagination(**pagination),
    )


@router.get("/activity/summary", response_model=ActivitySummary)
async def activity_summary(request: Request, current_user: User = Depends(get_current_user)) -> ActivitySummary:
    store: ActivityStore = request.app.state.activity_store
    summary = store.summary_for_user(current_user.id)
    return ActivitySummary(
        recent_activities=[ActivityRow.from_entry(e) for e in summary["recent_activities"]],
        activity_counts=summary["activity_counts"],
        last_login=summary["last_login"],
    )


@router.delete("/activity/cleanup", response_model=CleanupResponse)
async def cleanup_activity(
    request: Request,
    days: int = Query(default=90, ge=1, le=3650),
    current_user: User = Depends(get_current_user),
) -> CleanupResponse:
    store: ActivityStore = request.app.state.activity_store
    deleted = store.cleanup_for_user(current_user.id, days_to_keep=days)
    return CleanupResponse(message=f"Removed activity older than {days} days", deleted_count=deleted)
