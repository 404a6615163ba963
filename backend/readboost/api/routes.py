"""API routes for progress, admin operations and health checks."""

from fastapi import APIRouter, Request

from readboost.api.deps import Caller, Reconciler, Tracker
from readboost.core.errors import SessionClosed
from readboost.core.logging import get_logger
from readboost.models.progress import (
    AdminXPGrant,
    CompletionRequest,
    CompletionResponse,
    DailyTargetUpdate,
    ProgressState,
    ProgressView,
)
from readboost.services.accrual import calculate_xp
from readboost.services.results import attempt

logger = get_logger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    state = request.app.state
    timeout = state.settings.store_timeout_seconds

    remote = await attempt("remote.ping", "health", state.remote.ping, timeout)
    local = await attempt("local.ping", "health", state.local.ping, timeout)

    return {
        "status": "healthy" if local.ok else "degraded",
        "service": "readboost-backend",
        "version": "0.1.0",
        "dependencies": {
            "remote": "connected" if remote.ok else "disconnected",
            "remote_backend": state.settings.remote_backend.value,
            "local": "connected" if local.ok else "disconnected",
        },
    }


# ========== Progress ==========

@router.get("/progress", response_model=ProgressView)
async def get_progress(reconciler: Reconciler, caller: Caller):
    """Get the caller's progress (remote first, local fallback)."""
    state = await reconciler.get_progress(caller)
    return ProgressView.of(state)


@router.post("/progress/completions", response_model=CompletionResponse)
async def complete_article(body: CompletionRequest, reconciler: Reconciler, tracker: Tracker, caller: Caller):
    """Award XP for a finished article and return the updated progress."""
    xp_earned = calculate_xp(body.base_xp, body.category, body.active_time_ms / 60000)
    state = await reconciler.apply_completion(caller, body.article_id, xp_earned, body.active_time_ms)

    if body.session_id:
        try:
            await tracker.end(body.session_id, xp_earned)
        except SessionClosed as exc:
            logger.warning(f"Completion for a closed session: {exc}", extra={"user_id": caller.user_id})

    return CompletionResponse(xp_earned=xp_earned, progress=ProgressView.of(state))


@router.put("/progress/daily-target", response_model=ProgressView)
async def update_daily_target(body: DailyTargetUpdate, reconciler: Reconciler, caller: Caller):
    """Change the caller's daily reading goal (minutes)."""
    await reconciler.update_daily_target(caller, body.minutes)
    state = await reconciler.get_progress(caller)
    return ProgressView.of(state)


@router.post("/progress/reset", response_model=ProgressView)
async def reset_progress(reconciler: Reconciler, caller: Caller):
    """Reset the caller's progress to defaults."""
    state = await reconciler.reset_progress(caller)
    return ProgressView.of(state)


# ========== Admin ==========

@router.post("/admin/users/{user_id}/xp", response_model=ProgressState)
async def admin_add_xp(user_id: str, body: AdminXPGrant, reconciler: Reconciler):
    """Grant 1-500 XP to a user."""
    return await reconciler.admin_add_xp(user_id, body.amount, body.display_name)
