"""
Hybrid progress reconciliation across the remote and local stores.

The remote store is authoritative whenever it answers. When it does not,
the local copy is used and pushed back up; when neither has anything, a
default progress is synthesized and written to both. Writes fan out to
both stores independently: a failing branch is logged and skipped, never
raised to the caller.
"""

from dataclasses import dataclass
from datetime import timezone
from enum import Enum

from pydantic import ValidationError

from readboost.core.clock import Clock, utc_now
from readboost.core.config import Settings
from readboost.core.errors import InvalidArgument, SessionClosed, UserNotFound
from readboost.core.logging import get_logger
from readboost.models.progress import CompletionEvent, Identity, LeaderboardEntry, ProgressState
from readboost.services.accrual import MAX_XP, add_xp, compute_next_state
from readboost.services.results import best_effort
from readboost.services.sessions import SessionTracker
from readboost.stores.local import LocalStore
from readboost.stores.remote import LEADERBOARD, PROGRESS, Document, RemoteStore

logger = get_logger(__name__)


class ResolutionStage(str, Enum):
    """Where progress is looked for, in order."""

    TRY_REMOTE = "try_remote"
    FALLBACK_LOCAL = "fallback_local"
    SYNTHESIZE = "synthesize"


# Stage to move to when the current one fails or comes back empty
NEXT_STAGE = {
    ResolutionStage.TRY_REMOTE: ResolutionStage.FALLBACK_LOCAL,
    ResolutionStage.FALLBACK_LOCAL: ResolutionStage.SYNTHESIZE,
}


@dataclass(frozen=True)
class Resolution:
    """Progress found by a resolution run and the stage that produced it."""

    state: ProgressState | None
    stage: ResolutionStage


class ProgressReconciler:
    """
    Single entry point for reading and changing a user's progress.

    Every call takes the caller's identity explicitly. Calls for one user
    must not overlap; the caller serializes them.
    """

    def __init__(
        self,
        remote: RemoteStore,
        local: LocalStore,
        settings: Settings,
        sessions: SessionTracker | None = None,
        clock: Clock = utc_now,
    ):
        self.remote = remote
        self.local = local
        self.sessions = sessions
        self.clock = clock
        self.device_key = settings.device_key
        self.timeout = settings.store_timeout_seconds
        self.tz = settings.tz
        self.default_daily_target = settings.default_daily_target
        self.leaderboard_limit = settings.leaderboard_limit

    # ========== Reads ==========

    async def get_progress(self, identity: Identity) -> ProgressState:
        """
        Current progress, remote first, local second, default last.

        Whatever was found is propagated to the store(s) that lacked it.
        Never raises for store failures.
        """
        resolution = await self._resolve(identity.user_id, synthesize=True)
        state = resolution.state

        if resolution.stage == ResolutionStage.TRY_REMOTE:
            await self._write_local(state)
        elif resolution.stage == ResolutionStage.FALLBACK_LOCAL:
            await self._write_remote_progress(state)
            await self._sync_leaderboard(identity, state)
        else:
            logger.info(
                f"Created default progress for {identity.user_id}",
                extra={"user_id": identity.user_id},
            )
            await self._write_remote_progress(state)
            await self._sync_leaderboard(identity, state)
            await self._write_local(state)

        return state

    async def _resolve(self, user_id: str, synthesize: bool) -> Resolution:
        stage = ResolutionStage.TRY_REMOTE
        while True:
            if stage == ResolutionStage.SYNTHESIZE:
                if not synthesize:
                    return Resolution(None, stage)
                return Resolution(
                    ProgressState.default(user_id, self.default_daily_target),
                    stage,
                )

            if stage == ResolutionStage.TRY_REMOTE:
                operation, read = "remote.get_progress", self._read_remote
            else:
                operation, read = "local.get_progress", self._read_local

            result = await best_effort(
                operation,
                user_id,
                lambda: read(user_id),
                self.timeout,
                user_id=user_id,
            )
            if result.ok and result.value is not None:
                logger.debug(f"Progress for {user_id} resolved at {stage.value}")
                return Resolution(result.value, stage)

            stage = NEXT_STAGE[stage]

    async def _read_remote(self, user_id: str) -> ProgressState | None:
        doc = await self.remote.get_document(PROGRESS, user_id)
        if not doc:
            return None
        return ProgressState.from_document({**doc, "userId": user_id})

    async def _read_local(self, user_id: str) -> ProgressState | None:
        state = await self.local.get_progress(self.device_key)
        # The device row belongs to whoever used the device last
        if state is None or state.user_id != user_id:
            return None
        return state

    # ========== Writes ==========

    async def apply_completion(
        self,
        identity: Identity,
        article_id: int,
        xp_earned: int,
        active_time_ms: int,
    ) -> ProgressState:
        """
        Record a finished article.

        @param identity - Reader
        @param article_id - Finished article
        @param xp_earned - XP for the article (see accrual.calculate_xp)
        @param active_time_ms - Active reading time in milliseconds
        @returns The new progress, whether or not every store accepted it
        @raises InvalidArgument - When xp_earned or active_time_ms is negative
        """
        try:
            event = CompletionEvent(xp_earned=xp_earned, active_time_ms=active_time_ms)
        except ValidationError as exc:
            raise InvalidArgument(f"Invalid completion for article {article_id}") from exc

        current = await self.get_progress(identity)
        updated = compute_next_state(current, event, self.clock(), self.tz)

        logger.info(
            f"Article {article_id} completed: +{xp_earned} XP, total {updated.total_xp}, "
            f"daily {updated.daily_reading_minutes}/{updated.daily_target} min, "
            f"streak {updated.streak_days}",
            extra={"user_id": identity.user_id},
        )

        await self._increment_leaderboard(identity.user_id, identity.display_name, xp_earned)
        await self._write_remote_progress(updated)
        await self._write_local(updated)

        if self.sessions is not None:
            try:
                await self.sessions.record_completion(identity, article_id, xp_earned)
            except SessionClosed as exc:
                logger.warning(f"Could not record session: {exc}", extra={"user_id": identity.user_id})

        return updated

    async def update_daily_target(self, identity: Identity, minutes: int) -> None:
        """
        Change the daily reading goal in both stores.

        @raises InvalidArgument - When minutes is not positive
        """
        if minutes <= 0:
            raise InvalidArgument(f"Daily target must be positive: {minutes}")

        user_id = identity.user_id
        await best_effort(
            "remote.update_daily_target",
            user_id,
            lambda: self.remote.update_fields(PROGRESS, user_id, {"dailyTarget": minutes}),
            self.timeout,
            user_id=user_id,
        )
        await best_effort(
            "local.update_daily_target",
            self.device_key,
            lambda: self._update_local_target(user_id, minutes),
            self.timeout,
            user_id=user_id,
        )

    async def admin_add_xp(
        self,
        user_id: str,
        amount: int,
        display_name: str | None = None,
    ) -> ProgressState:
        """
        Credit XP to any user. Streak and daily counters are left alone.

        @param user_id - User receiving the XP
        @param amount - XP to add, 1..500
        @param display_name - Name for a user not yet on the leaderboard
        @returns The user's progress after the grant
        @raises InvalidArgument - When amount is outside 1..500 (nothing is written)
        @raises UserNotFound - When neither store has progress for the user
        """
        if not 1 <= amount <= MAX_XP:
            raise InvalidArgument(f"XP must be between 1 and {MAX_XP}, got {amount}")

        resolution = await self._resolve(user_id, synthesize=False)
        if resolution.state is None:
            raise UserNotFound(user_id)

        updated = add_xp(resolution.state, amount)

        await self._increment_leaderboard(user_id, display_name, amount)
        await self._write_remote_progress(updated)
        await self._write_local(updated, replace_other_user=False)

        logger.info(f"Admin added {amount} XP to {user_id}", extra={"user_id": user_id})
        return updated

    async def reset_progress(self, identity: Identity) -> ProgressState:
        """Overwrite the user's progress in both stores with a fresh default."""
        state = ProgressState.default(identity.user_id, self.default_daily_target)

        await self._write_remote_progress(state)
        await self._set_leaderboard(identity, 0)
        await self._write_local(state)

        logger.info(f"Progress reset for {identity.user_id}", extra={"user_id": identity.user_id})
        return state

    # ========== Leaderboard ==========

    async def get_leaderboard(
        self,
        limit: int | None = None,
        viewer: Identity | None = None,
    ) -> list[LeaderboardEntry]:
        """
        Top users by total XP.

        Falls back to the device's own progress as a one-entry board when
        the remote store is unreachable, or to an empty list.
        """
        limit = limit or self.leaderboard_limit
        result = await best_effort(
            "remote.query_leaderboard",
            LEADERBOARD,
            lambda: self._query_leaderboard(limit),
            self.timeout,
        )
        if result.ok:
            return result.value

        local = await best_effort(
            "local.get_progress",
            self.device_key,
            lambda: self.local.get_progress(self.device_key),
            self.timeout,
        )
        if not local.ok or local.value is None:
            return []

        state = local.value
        name = viewer.display_name if viewer and viewer.user_id == state.user_id else state.user_id
        return [LeaderboardEntry(user_id=state.user_id, display_name=name, total_xp=state.total_xp, rank=1)]

    async def get_user_rank(self, identity: Identity, limit: int | None = None) -> LeaderboardEntry | None:
        """The caller's leaderboard entry, if it is within the board."""
        for entry in await self.get_leaderboard(limit, viewer=identity):
            if entry.user_id == identity.user_id:
                return entry
        return None

    async def _query_leaderboard(self, limit: int) -> list[LeaderboardEntry]:
        docs = await self.remote.query(LEADERBOARD, "totalXP", limit)
        return [
            LeaderboardEntry(
                user_id=doc.get("userId") or "unknown",
                display_name=doc.get("displayName") or "Unknown",
                total_xp=int(doc.get("totalXP") or 0),
                rank=rank,
            )
            for rank, doc in enumerate(docs, start=1)
        ]

    # ========== Store helpers ==========

    async def _write_remote_progress(self, state: ProgressState) -> None:
        doc = {**state.to_document(), "lastUpdated": self._stamp()}
        await best_effort(
            "remote.save_progress",
            state.user_id,
            lambda: self.remote.set_document(PROGRESS, state.user_id, doc),
            self.timeout,
            user_id=state.user_id,
        )

    async def _write_local(self, state: ProgressState, replace_other_user: bool = True) -> None:
        async def write():
            if not replace_other_user:
                existing = await self.local.get_progress(self.device_key)
                if existing is not None and existing.user_id != state.user_id:
                    return
            await self.local.put_progress(self.device_key, state)

        await best_effort(
            "local.save_progress",
            self.device_key,
            write,
            self.timeout,
            user_id=state.user_id,
        )

    async def _update_local_target(self, user_id: str, minutes: int) -> None:
        state = await self._read_local(user_id)
        if state is not None:
            await self.local.update_field(self.device_key, "daily_target", minutes)

    async def _increment_leaderboard(self, user_id: str, display_name: str | None, amount: int) -> None:
        """Add XP to the leaderboard entry inside a transaction so concurrent devices don't lose updates."""
        stamp = self._stamp()

        def apply(doc: Document) -> Document:
            return {
                "userId": user_id,
                "displayName": display_name or doc.get("displayName") or user_id,
                "totalXP": int(doc.get("totalXP") or 0) + amount,
                "lastUpdated": stamp,
            }

        await self._transact_leaderboard("remote.increment_xp", user_id, apply)

    async def _sync_leaderboard(self, identity: Identity, state: ProgressState) -> None:
        """Make sure the leaderboard shows at least the XP the progress holds."""
        stamp = self._stamp()

        def apply(doc: Document) -> Document:
            return {
                "userId": identity.user_id,
                "displayName": identity.display_name,
                "totalXP": max(int(doc.get("totalXP") or 0), state.total_xp),
                "lastUpdated": stamp,
            }

        await self._transact_leaderboard("remote.sync_xp", identity.user_id, apply)

    async def _set_leaderboard(self, identity: Identity, total_xp: int) -> None:
        stamp = self._stamp()

        def apply(doc: Document) -> Document:
            return {
                "userId": identity.user_id,
                "displayName": identity.display_name,
                "totalXP": total_xp,
                "lastUpdated": stamp,
            }

        await self._transact_leaderboard("remote.set_xp", identity.user_id, apply)

    async def _transact_leaderboard(self, operation: str, user_id: str, apply) -> None:
        await best_effort(
            operation,
            user_id,
            lambda: self.remote.run_transaction(LEADERBOARD, user_id, apply),
            self.timeout,
            user_id=user_id,
        )

    def _stamp(self) -> str:
        return self.clock().astimezone(timezone.utc).isoformat()
