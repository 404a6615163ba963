"""Identity resolution for callers of the progress services."""

from readboost.core.config import Settings
from readboost.models.progress import Identity


def placeholder_identity(settings: Settings) -> Identity:
    """Fixed identity used when nobody is signed in."""
    return Identity(
        user_id=settings.placeholder_user_id,
        display_name=settings.placeholder_display_name,
    )


def resolve_identity(
    user_id: str | None,
    display_name: str | None,
    settings: Settings,
) -> Identity:
    """
    Build the identity a call is made for.

    @param user_id - Authenticated user id, if any
    @param display_name - Display name, if known
    @param settings - Supplies the placeholder identity
    @returns Identity; the placeholder when user_id is missing or blank
    """
    if not user_id or not user_id.strip():
        return placeholder_identity(settings)

    user_id = user_id.strip()
    name = (display_name or "").strip() or user_id
    return Identity(user_id=user_id, display_name=name)
