"""Local relational store: one progress row per device."""

import asyncio
from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy import Column, DateTime, Integer, String, create_engine, text
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from readboost.core.errors import InvalidArgument
from readboost.core.logging import get_logger
from readboost.models.progress import ProgressState

logger = get_logger(__name__)

Base = declarative_base()

# Fields that may be changed one at a time through update_field
UPDATABLE_FIELDS = frozenset(ProgressState.model_fields) - {"user_id"}


class LocalStore(Protocol):
    """Offline copy of progress, keyed by a fixed per-device key."""

    async def ping(self) -> bool: ...

    async def get_progress(self, key: str) -> ProgressState | None: ...

    async def put_progress(self, key: str, state: ProgressState) -> None: ...

    async def update_field(self, key: str, field: str, value: Any) -> None: ...


class ProgressRow(Base):
    """user_progress table."""

    __tablename__ = "user_progress"

    key = Column(String(64), primary_key=True)
    user_id = Column(String(128), nullable=False)
    total_xp = Column(Integer, nullable=False, default=0)
    streak_days = Column(Integer, nullable=False, default=0)
    daily_target = Column(Integer, nullable=False, default=5)
    daily_xp_earned = Column(Integer, nullable=False, default=0)
    daily_reading_minutes = Column(Integer, nullable=False, default=0)
    last_read_date = Column(DateTime(timezone=True), nullable=False)
    last_streak_date = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    def to_state(self) -> ProgressState:
        return ProgressState(
            user_id=self.user_id,
            total_xp=self.total_xp,
            streak_days=self.streak_days,
            daily_target=self.daily_target,
            daily_xp_earned=self.daily_xp_earned,
            daily_reading_minutes=self.daily_reading_minutes,
            last_read_date=self.last_read_date,
            last_streak_date=self.last_streak_date,
        )

    def assign(self, state: ProgressState) -> None:
        self.user_id = state.user_id
        self.total_xp = state.total_xp
        self.streak_days = state.streak_days
        self.daily_target = state.daily_target
        self.daily_xp_earned = state.daily_xp_earned
        self.daily_reading_minutes = state.daily_reading_minutes
        # SQLite drops offsets, so everything is stored as UTC
        self.last_read_date = state.last_read_date.astimezone(timezone.utc)
        self.last_streak_date = state.last_streak_date.astimezone(timezone.utc)
        self.updated_at = datetime.now(timezone.utc)


def _build_engine(database_url: str):
    connect_args = {}
    engine_kwargs = {}
    if database_url.startswith("sqlite"):
        # Calls run on worker threads via asyncio.to_thread
        connect_args = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            engine_kwargs["poolclass"] = StaticPool
    return create_engine(database_url, connect_args=connect_args, future=True, **engine_kwargs)


class SqlLocalStore:
    """
    SQLAlchemy implementation of LocalStore.

    Uses synchronous sessions; each public call runs in a worker thread so it
    can be awaited alongside the remote store.
    """

    def __init__(self, database_url: str):
        self.database_url = database_url
        self.engine = _build_engine(database_url)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def init(self) -> None:
        """Create the schema if it does not exist."""
        Base.metadata.create_all(self.engine)
        url_safe = self.engine.url.render_as_string(hide_password=True)
        logger.info(f"Local store ready: {url_safe}")

    def dispose(self) -> None:
        self.engine.dispose()

    async def ping(self) -> bool:
        return await asyncio.to_thread(self._ping)

    async def get_progress(self, key: str) -> ProgressState | None:
        return await asyncio.to_thread(self._get, key)

    async def put_progress(self, key: str, state: ProgressState) -> None:
        await asyncio.to_thread(self._put, key, state)

    async def update_field(self, key: str, field: str, value: Any) -> None:
        """
        Change a single progress field.

        @param key - Device key
        @param field - ProgressState field name (snake_case)
        @param value - New value, validated against ProgressState
        @raises InvalidArgument - When the field is unknown or the value invalid
        """
        if field not in UPDATABLE_FIELDS:
            raise InvalidArgument(f"Unknown progress field: {field}")
        await asyncio.to_thread(self._update, key, field, value)

    # ========== Sync helpers ==========

    def _ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def _get(self, key: str) -> ProgressState | None:
        with self.SessionLocal() as db:
            row = db.get(ProgressRow, key)
            return row.to_state() if row else None

    def _put(self, key: str, state: ProgressState) -> None:
        with self.SessionLocal() as db:
            row = db.get(ProgressRow, key)
            if row is None:
                row = ProgressRow(key=key)
                db.add(row)
            row.assign(state)
            db.commit()

    def _update(self, key: str, field: str, value: Any) -> None:
        with self.SessionLocal() as db:
            row = db.get(ProgressRow, key)
            if row is None:
                logger.debug(f"No local progress under {key}; skipping {field} update")
                return
            updated = self._validated(row, field, value)
            row.assign(updated)
            db.commit()

    @staticmethod
    def _validated(row: ProgressRow, field: str, value: Any) -> ProgressState:
        data = row.to_state().model_dump()
        data[field] = value
        try:
            return ProgressState.model_validate(data)
        except ValueError as exc:
            raise InvalidArgument(f"Invalid value for {field}: {value!r}") from exc

