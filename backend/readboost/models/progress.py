"""Progress, leaderboard and identity data models."""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# lastReadDate / lastStreakDate of a user who has never read anything
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def ensure_aware(value: datetime | None) -> datetime | None:
    """Treat naive timestamps as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DocumentModel(BaseModel):
    """Immutable model stored as a camelCase document in the remote store."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, document: dict[str, Any]):
        return cls.model_validate(document)


class ProgressState(DocumentModel):
    """Reading progress for one user. Never mutated in place; see services.accrual."""

    user_id: str
    total_xp: int = Field(default=0, ge=0, alias="totalXP")
    streak_days: int = Field(default=0, ge=0)
    daily_target: int = Field(default=5, gt=0)  # minutes
    daily_xp_earned: int = Field(default=0, ge=0, alias="dailyXPEarned")
    daily_reading_minutes: int = Field(default=0, ge=0)
    last_read_date: datetime = EPOCH
    last_streak_date: datetime = EPOCH

    @field_validator("last_read_date", "last_streak_date")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    @classmethod
    def default(cls, user_id: str, daily_target: int = 5) -> "ProgressState":
        """Fresh progress: all counters zero."""
        return cls(user_id=user_id, daily_target=daily_target)

    @property
    def daily_goal_met(self) -> bool:
        return self.daily_reading_minutes >= self.daily_target

    @property
    def daily_progress_ratio(self) -> float:
        return min(self.daily_reading_minutes / self.daily_target, 1.0)


class CompletionEvent(BaseModel):
    """Input to the accrual engine for one finished article."""

    model_config = ConfigDict(frozen=True)

    xp_earned: int = Field(ge=0)
    active_time_ms: int = Field(default=0, ge=0)


class Identity(BaseModel):
    """Who a call is made on behalf of."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    display_name: str


class LeaderboardEntry(DocumentModel):
    """Entry for the XP leaderboard."""

    user_id: str
    display_name: str
    total_xp: int = Field(alias="totalXP")
    rank: int


# ========== API Schemas ==========


class ProgressView(DocumentModel):
    """Progress plus derived daily-goal fields, as returned by the API."""

    progress: ProgressState
    daily_goal_met: bool
    daily_progress_ratio: float

    @classmethod
    def of(cls, state: ProgressState) -> "ProgressView":
        return cls(
            progress=state,
            daily_goal_met=state.daily_goal_met,
            daily_progress_ratio=round(state.daily_progress_ratio, 3),
        )


class CompletionRequest(DocumentModel):
    """Request body for recording a finished article."""

    article_id: int
    base_xp: int = Field(ge=0, alias="baseXP")
    category: str = ""
    active_time_ms: int = Field(default=0, ge=0)
    session_id: str | None = None


class CompletionResponse(DocumentModel):
    """Optimistic progress after a completion."""

    xp_earned: int
    progress: ProgressView


class DailyTargetUpdate(DocumentModel):
    """Request body for changing the daily reading goal."""

    minutes: int


class AdminXPGrant(DocumentModel):
    """Request body for an admin XP grant."""

    amount: int
    display_name: str | None = None
