"""Reading session tracking in the remote store."""

from datetime import datetime

from readboost.core.clock import Clock, utc_now
from readboost.core.config import Settings
from readboost.core.errors import InvalidArgument, SessionClosed, SessionExists
from readboost.core.logging import get_logger
from readboost.models.progress import Identity
from readboost.models.session import ReadingSessionRecord
from readboost.services.results import best_effort
from readboost.stores.remote import SESSIONS, Document, DocumentMissing, RemoteStore

logger = get_logger(__name__)


def make_session_id(user_id: str, article_id: int, started_ms: int) -> str:
    return f"{user_id}|{article_id}|{started_ms}"


class SessionTracker:
    """
    Records start, active-time ticks and end of a reading session.

    Session documents are append-only: active time is only ever added to, and
    once a session is ended any further accumulate() or end() raises
    SessionClosed. Store failures are logged and swallowed.
    """

    def __init__(self, remote: RemoteStore, settings: Settings, clock: Clock = utc_now):
        self.remote = remote
        self.timeout = settings.store_timeout_seconds
        self.clock = clock

    async def start(self, identity: Identity, article_id: int) -> str:
        """
        Open a session for an article.

        @param identity - Reader
        @param article_id - Article being read
        @returns Session id; returned even if the remote write failed
        """
        now = self.clock()
        started_ms = int(now.timestamp() * 1000)
        while True:
            session_id = make_session_id(identity.user_id, article_id, started_ms)
            try:
                created = await self._create(identity, article_id, session_id, now)
            except SessionExists:
                # Same reader, article and millisecond; take the next free id
                started_ms += 1
                continue
            if created:
                logger.info(f"Session started: {session_id}", extra={"session_id": session_id})
            return session_id

    async def get(self, session_id: str) -> ReadingSessionRecord | None:
        result = await best_effort(
            "remote.get_session",
            session_id,
            lambda: self._fetch(session_id),
            self.timeout,
        )
        return result.value if result.ok else None

    async def accumulate(self, session_id: str, increment_ms: int) -> ReadingSessionRecord | None:
        """
        Add active reading time to an open session.

        @param session_id - Session to update
        @param increment_ms - Milliseconds of active reading since the last tick
        @returns Updated record, or None when the store could not be updated
        @raises InvalidArgument - When increment_ms is negative
        @raises SessionClosed - When the session was already ended
        """
        if increment_ms < 0:
            raise InvalidArgument(f"Active time increment must not be negative: {increment_ms}")

        now = self.clock()

        def apply(doc: Document) -> Document:
            record = self._open_record(session_id, doc)
            return record.model_copy(update={
                "total_active_time": record.total_active_time + increment_ms,
                "last_active_time": now,
            }).to_document()

        return await self._transact("remote.accumulate_session", session_id, apply)

    async def end(self, session_id: str, xp_earned: int) -> ReadingSessionRecord | None:
        """
        Close a session. Terminal: the session accepts no further writes.

        @param session_id - Session to close
        @param xp_earned - XP awarded for the reading
        @returns Closed record, or None when the store could not be updated
        @raises SessionClosed - When the session was already ended
        """
        if xp_earned < 0:
            raise InvalidArgument(f"XP must not be negative: {xp_earned}")

        now = self.clock()

        def apply(doc: Document) -> Document:
            record = self._open_record(session_id, doc)
            return record.model_copy(update={
                "is_active": False,
                "end_time": now,
                "last_active_time": now,
                "xp_earned": xp_earned,
            }).to_document()

        record = await self._transact("remote.end_session", session_id, apply)
        if record is not None:
            logger.info(
                f"Session ended: {session_id}, active {record.total_active_time}ms, {xp_earned} XP",
                extra={"session_id": session_id},
            )
        return record

    async def record_completion(self, identity: Identity, article_id: int, xp_earned: int) -> str:
        """Open and immediately close a session for a finished article."""
        session_id = await self.start(identity, article_id)
        await self.end(session_id, xp_earned)
        return session_id

    # ========== Helpers ==========

    async def _create(self, identity: Identity, article_id: int, session_id: str, now: datetime) -> bool:
        record = ReadingSessionRecord(
            session_id=session_id,
            user_id=identity.user_id,
            article_id=article_id,
            start_time=now,
            last_active_time=now,
        )

        def apply(doc: Document) -> Document:
            if doc:
                raise SessionExists(session_id)
            return record.to_document()

        result = await best_effort(
            "remote.start_session",
            session_id,
            lambda: self.remote.run_transaction(SESSIONS, session_id, apply),
            self.timeout,
            user_id=identity.user_id,
        )
        return result.ok

    async def _fetch(self, session_id: str) -> ReadingSessionRecord | None:
        doc = await self.remote.get_document(SESSIONS, session_id)
        return ReadingSessionRecord.from_document(doc) if doc else None

    async def _transact(self, operation: str, session_id: str, apply) -> ReadingSessionRecord | None:
        result = await best_effort(
            operation,
            session_id,
            lambda: self.remote.run_transaction(SESSIONS, session_id, apply),
            self.timeout,
        )
        if not result.ok:
            return None
        return ReadingSessionRecord.from_document(result.value)

    @staticmethod
    def _open_record(session_id: str, doc: Document) -> ReadingSessionRecord:
        if not doc:
            raise DocumentMissing(f"session {session_id} does not exist")
        record = ReadingSessionRecord.from_document(doc)
        if not record.is_active:
            raise SessionClosed(session_id)
        return record
