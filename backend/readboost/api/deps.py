"""FastAPI dependencies resolving services and the caller's identity."""

from typing import Annotated

from fastapi import Depends, Header, Request

from readboost.core.config import Settings
from readboost.models.progress import Identity
from readboost.services.identity import resolve_identity
from readboost.services.reconciliation import ProgressReconciler
from readboost.services.sessions import SessionTracker


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_reconciler(request: Request) -> ProgressReconciler:
    return request.app.state.reconciler


def get_session_tracker(request: Request) -> SessionTracker:
    return request.app.state.sessions


def get_identity(
    settings: Annotated[Settings, Depends(get_app_settings)],
    x_user_id: Annotated[str | None, Header()] = None,
    x_display_name: Annotated[str | None, Header()] = None,
) -> Identity:
    """Identity from the X-User-Id / X-Display-Name headers, placeholder if absent."""
    return resolve_identity(x_user_id, x_display_name, settings)


Reconciler = Annotated[ProgressReconciler, Depends(get_reconciler)]
Tracker = Annotated[SessionTracker, Depends(get_session_tracker)]
Caller = Annotated[Identity, Depends(get_identity)]
