"""Reading session data models."""

from datetime import datetime

from pydantic import Field, field_validator

from readboost.models.progress import DocumentModel, ensure_aware


class ReadingSessionRecord(DocumentModel):
    """One reading attempt. Active time only ever grows; closing is terminal."""

    session_id: str
    user_id: str
    article_id: int
    start_time: datetime
    last_active_time: datetime
    end_time: datetime | None = None
    total_active_time: int = Field(default=0, ge=0)  # milliseconds
    xp_earned: int = Field(default=0, ge=0)
    is_active: bool = True

    @field_validator("start_time", "last_active_time", "end_time")
    @classmethod
    def _aware(cls, value: datetime | None) -> datetime | None:
        return ensure_aware(value)


class SessionStart(DocumentModel):
    """Request body for starting a reading session."""

    article_id: int


class SessionStarted(DocumentModel):
    """Response for a started session."""

    session_id: str
    article_id: int


class SessionActivity(DocumentModel):
    """Request body for adding active reading time."""

    increment_ms: int


class SessionEnd(DocumentModel):
    """Request body for closing a reading session."""

    xp_earned: int = Field(ge=0)
