"""
Progress accrual: pure functions from (progress, completion, time) to progress.

Nothing here performs I/O; the reconciliation manager feeds in whatever it
resolved from the stores and persists the result.
"""

from datetime import datetime, timedelta, timezone, tzinfo

from readboost.models.progress import CompletionEvent, ProgressState

ONE_DAY = timedelta(days=1)

MIN_XP = 5
MAX_XP = 500

# Category names are matched case-insensitively; the catalogue uses both
# English and Indonesian names.
COMPLEX_CATEGORIES = frozenset({
    "technology", "science", "programming", "math",
    "teknologi", "sains", "programmer", "matematika",
})
MODERATE_CATEGORIES = frozenset({
    "business", "economy", "politics", "health",
    "bisnis", "ekonomi", "politik", "kesehatan",
})


def day_start(moment: datetime, tz: tzinfo = timezone.utc) -> datetime:
    """Truncate a timestamp to midnight of its calendar day in ``tz``."""
    local = moment.astimezone(tz)
    return local.replace(hour=0, minute=0, second=0, microsecond=0)


def minutes_from_ms(active_time_ms: int) -> int:
    """Whole minutes of reading; partial minutes are dropped."""
    return active_time_ms // 1000 // 60


def time_bonus(minutes: float) -> int:
    if minutes >= 10:
        return 20
    if minutes >= 5:
        return 10
    if minutes >= 2:
        return 5
    return 0


def complexity_bonus(category: str) -> int:
    normalized = (category or "").strip().lower()
    if normalized in COMPLEX_CATEGORIES:
        return 15
    if normalized in MODERATE_CATEGORIES:
        return 10
    return 5


def calculate_xp(base_xp: int, category: str, reading_minutes: float) -> int:
    """
    XP for finishing an article.

    @param base_xp - Article's own XP value
    @param category - Article category
    @param reading_minutes - Measured active reading time in minutes
    @returns XP clamped to [MIN_XP, MAX_XP]
    """
    raw = base_xp + time_bonus(reading_minutes) + complexity_bonus(category)
    return max(MIN_XP, min(raw, MAX_XP))


def compute_next_state(
    current: ProgressState,
    event: CompletionEvent,
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> ProgressState:
    """
    Apply one completion to the current progress.

    Streak: resets to 1 when more than one full day passed since the last
    read, otherwise grows by one the first time it is touched on a new
    calendar day. Daily counters restart on a new calendar day and
    accumulate within the same one.

    @param current - Progress before the completion
    @param event - XP earned and active reading time
    @param now - Time of the completion
    @param tz - Timezone that defines calendar days
    @returns New ProgressState with last_read_date = now
    """
    today = day_start(now, tz)
    last_read_day = day_start(current.last_read_date, tz)
    last_streak_day = day_start(current.last_streak_date, tz)

    days_since_last_read = (now - current.last_read_date) // ONE_DAY
    increments_today = today > last_streak_day

    if days_since_last_read > 1:
        streak = 1
    elif increments_today:
        streak = current.streak_days + 1
    else:
        streak = current.streak_days
    # lastStreakDate moves to today on a reset as well
    streak_date = today if increments_today else current.last_streak_date

    minutes = minutes_from_ms(event.active_time_ms)
    # Calendar-day rollover, not elapsed time: 23:00 then 01:00 is a new day
    if today > last_read_day:
        daily_xp = event.xp_earned
        daily_minutes = minutes
    else:
        daily_xp = current.daily_xp_earned + event.xp_earned
        daily_minutes = current.daily_reading_minutes + minutes

    return current.model_copy(update={
        "total_xp": current.total_xp + event.xp_earned,
        "streak_days": streak,
        "last_streak_date": streak_date,
        "daily_xp_earned": daily_xp,
        "daily_reading_minutes": daily_minutes,
        "last_read_date": now,
    })


def add_xp(current: ProgressState, amount: int) -> ProgressState:
    """Credit XP without touching streak or daily counters."""
    return current.model_copy(update={"total_xp": current.total_xp + amount})
