"""API routes for reading sessions and the leaderboard."""

from fastapi import APIRouter, HTTPException, Query

from readboost.api.deps import Caller, Reconciler, Tracker
from readboost.models.progress import LeaderboardEntry
from readboost.models.session import (
    ReadingSessionRecord,
    SessionActivity,
    SessionEnd,
    SessionStart,
    SessionStarted,
)

router = APIRouter()


# ========== Reading Sessions ==========

@router.post("/sessions", response_model=SessionStarted)
async def start_session(body: SessionStart, tracker: Tracker, caller: Caller):
    """Start tracking a reading session."""
    session_id = await tracker.start(caller, body.article_id)
    return SessionStarted(session_id=session_id, article_id=body.article_id)


@router.get("/sessions/{session_id}", response_model=ReadingSessionRecord)
async def get_session(session_id: str, tracker: Tracker):
    """Get a reading session."""
    record = await tracker.get(session_id)
    if not record:
        raise HTTPException(status_code=404, detail="Session not found")
    return record


@router.post("/sessions/{session_id}/activity", response_model=ReadingSessionRecord)
async def add_activity(session_id: str, body: SessionActivity, tracker: Tracker):
    """Add active reading time to a session."""
    record = await tracker.accumulate(session_id, body.increment_ms)
    if not record:
        raise HTTPException(status_code=503, detail="Session could not be updated")
    return record


@router.post("/sessions/{session_id}/end", response_model=ReadingSessionRecord)
async def end_session(session_id: str, body: SessionEnd, tracker: Tracker):
    """Close a reading session."""
    record = await tracker.end(session_id, body.xp_earned)
    if not record:
        raise HTTPException(status_code=503, detail="Session could not be updated")
    return record


# ========== Leaderboard ==========

@router.get("/leaderboard", response_model=list[LeaderboardEntry])
async def get_leaderboard(reconciler: Reconciler, caller: Caller, limit: int | None = Query(None, ge=1, le=100)):
    """Top readers by total XP."""
    return await reconciler.get_leaderboard(limit, viewer=caller)


@router.get("/leaderboard/me", response_model=LeaderboardEntry)
async def get_my_rank(reconciler: Reconciler, caller: Caller, limit: int | None = Query(None, ge=1, le=100)):
    """The caller's leaderboard entry."""
    entry = await reconciler.get_user_rank(caller, limit)
    if not entry:
        raise HTTPException(status_code=404, detail="Not on the leaderboard")
    return entry
