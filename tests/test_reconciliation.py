from datetime import timedelta

import pytest

from conftest import DAY0, LOCAL_WRITES, REMOTE_WRITES
from readboost.core.errors import InvalidArgument, UserNotFound
from readboost.models.progress import ProgressState
from readboost.services.reconciliation import ProgressReconciler, ResolutionStage
from readboost.stores.remote import LEADERBOARD, PROGRESS, SESSIONS


def seeded(user_id="alice", **kwargs) -> ProgressState:
    defaults = dict(
        total_xp=120,
        streak_days=3,
        daily_target=10,
        daily_xp_earned=15,
        daily_reading_minutes=6,
        last_read_date=DAY0 + timedelta(hours=8),
        last_streak_date=DAY0,
    )
    defaults.update(kwargs)
    return ProgressState(user_id=user_id, **defaults)


# ========== getProgress ==========

def test_default_synthesis_is_idempotent_when_both_stores_are_down(run, reconciler, remote, local, alice):
    remote.fail()
    local.fail()

    first = run(reconciler.get_progress(alice))
    second = run(reconciler.get_progress(alice))

    assert first == second
    assert first == ProgressState.default("alice", daily_target=5)


def test_default_progress_is_written_to_both_stores(run, reconciler, memory_remote, sql_store, alice):
    state = run(reconciler.get_progress(alice))

    assert state.total_xp == 0
    assert state.daily_target == 5
    assert run(sql_store.get_progress("device")) == state
    doc = run(memory_remote.get_document(PROGRESS, "alice"))
    assert ProgressState.from_document(doc) == state
    board = run(memory_remote.get_document(LEADERBOARD, "alice"))
    assert board["totalXP"] == 0
    assert board["displayName"] == "Alice"


def test_remote_value_wins_and_is_copied_to_local(run, reconciler, memory_remote, sql_store, alice):
    remote_state = seeded(total_xp=500)
    run(memory_remote.set_document(PROGRESS, "alice", remote_state.to_document()))
    run(sql_store.put_progress("device", seeded(total_xp=80)))

    state = run(reconciler.get_progress(alice))

    assert state == remote_state
    assert run(sql_store.get_progress("device")) == remote_state


def test_remote_failure_falls_back_to_local_unchanged(run, reconciler, remote, sql_store, alice):
    local_state = seeded()
    run(sql_store.put_progress("device", local_state))
    remote.fail()

    state = run(reconciler.get_progress(alice))

    assert state == local_state
    # propagation back to the remote store was attempted
    assert remote.called("set_document")[0][1:3] == (PROGRESS, "alice")


def test_empty_remote_is_filled_from_local(run, reconciler, memory_remote, sql_store, alice):
    local_state = seeded(total_xp=240)
    run(sql_store.put_progress("device", local_state))

    state = run(reconciler.get_progress(alice))

    assert state == local_state
    assert ProgressState.from_document(run(memory_remote.get_document(PROGRESS, "alice"))) == local_state
    assert run(memory_remote.get_document(LEADERBOARD, "alice"))["totalXP"] == 240


def test_local_sync_never_lowers_leaderboard_xp(run, reconciler, memory_remote, sql_store, alice):
    run(memory_remote.set_document(LEADERBOARD, "alice", {"userId": "alice", "totalXP": 900}))
    run(sql_store.put_progress("device", seeded(total_xp=240)))

    run(reconciler.get_progress(alice))

    assert run(memory_remote.get_document(LEADERBOARD, "alice"))["totalXP"] == 900


def test_local_row_of_another_user_is_ignored(run, reconciler, remote, sql_store, alice):
    run(sql_store.put_progress("device", seeded(user_id="bob", total_xp=999)))
    remote.fail()

    state = run(reconciler.get_progress(alice))

    assert state == ProgressState.default("alice")


def test_slow_remote_counts_as_failure(run, reconciler, remote, sql_store, alice):
    local_state = seeded()
    run(sql_store.put_progress("device", local_state))
    remote.delay = 2.0  # longer than store_timeout_seconds

    assert run(reconciler.get_progress(alice)) == local_state


def test_resolution_order(run, reconciler, remote, local, sql_store):
    run(sql_store.put_progress("device", seeded()))
    remote.fail()

    resolution = run(reconciler._resolve("alice", synthesize=False))
    assert resolution.stage == ResolutionStage.FALLBACK_LOCAL

    local.fail()
    resolution = run(reconciler._resolve("alice", synthesize=False))
    assert resolution.stage == ResolutionStage.SYNTHESIZE
    assert resolution.state is None


# ========== applyCompletion ==========

def test_completion_updates_both_stores(run, reconciler, memory_remote, sql_store, clock, alice):
    run(reconciler.get_progress(alice))

    updated = run(reconciler.apply_completion(alice, 7, 35, 15 * 60_000))

    assert updated.total_xp == 35
    assert updated.streak_days == 1
    assert updated.daily_xp_earned == 35
    assert updated.daily_reading_minutes == 15
    assert updated.last_read_date == clock()
    assert run(sql_store.get_progress("device")) == updated
    assert ProgressState.from_document(run(memory_remote.get_document(PROGRESS, "alice"))) == updated
    assert run(memory_remote.get_document(LEADERBOARD, "alice"))["totalXP"] == 35


def test_completion_records_a_closed_session(run, reconciler, memory_remote, clock, alice):
    run(reconciler.apply_completion(alice, 7, 20, 60_000))

    sessions = run(memory_remote.query(SESSIONS, "xpEarned", 10))
    assert len(sessions) == 1
    assert sessions[0]["articleId"] == 7
    assert sessions[0]["isActive"] is False
    assert sessions[0]["xpEarned"] == 20


def test_leaderboard_xp_is_incremented_not_overwritten(run, reconciler, memory_remote, alice):
    run(memory_remote.set_document(PROGRESS, "alice", seeded(total_xp=30).to_document()))
    # another device already pushed the leaderboard further
    run(memory_remote.set_document(LEADERBOARD, "alice", {"userId": "alice", "displayName": "Alice", "totalXP": 100}))

    run(reconciler.apply_completion(alice, 1, 10, 0))

    assert run(memory_remote.get_document(LEADERBOARD, "alice"))["totalXP"] == 110


def test_completion_survives_remote_outage(run, reconciler, remote, sql_store, alice):
    run(sql_store.put_progress("device", seeded(total_xp=100)))
    remote.fail()

    updated = run(reconciler.apply_completion(alice, 3, 25, 5 * 60_000))

    assert updated.total_xp == 125
    assert run(sql_store.get_progress("device")) == updated
    assert remote.called("run_transaction", "set_document")


def test_completion_survives_local_outage(run, reconciler, local, memory_remote, alice):
    run(memory_remote.set_document(PROGRESS, "alice", seeded(total_xp=100).to_document()))
    local.fail()

    updated = run(reconciler.apply_completion(alice, 3, 25, 0))

    assert updated.total_xp == 125
    assert ProgressState.from_document(run(memory_remote.get_document(PROGRESS, "alice"))) == updated


def test_total_xp_grows_by_sum_of_completions(run, reconciler, clock, alice):
    before = run(reconciler.get_progress(alice)).total_xp
    earned = [5, 35, 70, 500]

    for article_id, xp in enumerate(earned):
        clock.advance(hours=6)
        run(reconciler.apply_completion(alice, article_id, xp, 60_000))

    assert run(reconciler.get_progress(alice)).total_xp == before + sum(earned)


def test_streak_carries_across_days(run, reconciler, clock, alice):
    run(reconciler.apply_completion(alice, 1, 10, 0))
    clock.advance(days=1)
    run(reconciler.apply_completion(alice, 2, 10, 0))
    clock.advance(days=1)
    state = run(reconciler.apply_completion(alice, 3, 10, 0))

    assert state.streak_days == 3

    clock.advance(days=4)
    state = run(reconciler.apply_completion(alice, 4, 10, 0))
    assert state.streak_days == 1


def test_negative_completion_is_rejected(run, reconciler, remote, local, alice):
    with pytest.raises(InvalidArgument):
        run(reconciler.apply_completion(alice, 1, -5, 0))

    assert remote.calls == []
    assert local.calls == []


# ========== updateDailyTarget ==========

def test_daily_target_is_updated_in_both_stores(run, reconciler, memory_remote, sql_store, alice):
    run(reconciler.get_progress(alice))

    run(reconciler.update_daily_target(alice, 15))

    assert run(memory_remote.get_document(PROGRESS, "alice"))["dailyTarget"] == 15
    assert run(sql_store.get_progress("device")).daily_target == 15


def test_daily_target_tolerates_remote_failure(run, reconciler, remote, sql_store, alice):
    run(reconciler.get_progress(alice))
    remote.fail()

    run(reconciler.update_daily_target(alice, 2))

    assert run(sql_store.get_progress("device")).daily_target == 2


def test_daily_target_must_be_positive(run, reconciler, remote, local, alice):
    with pytest.raises(InvalidArgument):
        run(reconciler.update_daily_target(alice, 0))

    assert remote.calls == []
    assert local.calls == []


# ========== adminAddXP ==========

@pytest.mark.parametrize("amount", [0, 501, -10])
def test_admin_xp_out_of_range_writes_nothing(run, reconciler, remote, local, amount):
    with pytest.raises(InvalidArgument):
        run(reconciler.admin_add_xp("alice", amount))

    assert remote.called(*REMOTE_WRITES) == []
    assert local.called(*LOCAL_WRITES) == []


def test_admin_xp_for_unknown_user(run, reconciler):
    with pytest.raises(UserNotFound):
        run(reconciler.admin_add_xp("nobody", 50))


def test_admin_xp_only_changes_total(run, reconciler, memory_remote):
    original = seeded(user_id="bob", total_xp=200)
    run(memory_remote.set_document(PROGRESS, "bob", original.to_document()))
    run(memory_remote.set_document(LEADERBOARD, "bob", {"userId": "bob", "displayName": "Bob", "totalXP": 200}))

    updated = run(reconciler.admin_add_xp("bob", 500))

    assert updated.total_xp == 700
    assert updated.streak_days == original.streak_days
    assert updated.daily_xp_earned == original.daily_xp_earned
    board = run(memory_remote.get_document(LEADERBOARD, "bob"))
    assert board["totalXP"] == 700
    assert board["displayName"] == "Bob"


def test_admin_xp_does_not_replace_device_owner(run, reconciler, memory_remote, sql_store, alice):
    run(reconciler.get_progress(alice))
    run(memory_remote.set_document(PROGRESS, "bob", seeded(user_id="bob").to_document()))

    run(reconciler.admin_add_xp("bob", 10))

    assert run(sql_store.get_progress("device")).user_id == "alice"


# ========== reset / leaderboard ==========

def test_reset_progress(run, reconciler, memory_remote, sql_store, alice):
    run(reconciler.apply_completion(alice, 1, 80, 0))

    state = run(reconciler.reset_progress(alice))

    assert state == ProgressState.default("alice")
    assert run(sql_store.get_progress("device")) == state
    assert run(memory_remote.get_document(LEADERBOARD, "alice"))["totalXP"] == 0


def test_leaderboard_is_ranked_by_xp(run, reconciler, memory_remote, alice):
    for user_id, xp in [("carol", 40), ("dave", 300), ("erin", 120), ("frank", 120)]:
        run(memory_remote.set_document(
            LEADERBOARD, user_id, {"userId": user_id, "displayName": user_id.title(), "totalXP": xp},
        ))

    board = run(reconciler.get_leaderboard(limit=3))

    assert [(e.user_id, e.rank) for e in board] == [("dave", 1), ("erin", 2), ("frank", 3)]
    assert board[0].display_name == "Dave"


def test_leaderboard_falls_back_to_local_progress(run, reconciler, remote, sql_store, alice):
    run(sql_store.put_progress("device", seeded(total_xp=75)))
    remote.fail()

    board = run(reconciler.get_leaderboard(viewer=alice))

    assert len(board) == 1
    assert board[0].user_id == "alice"
    assert board[0].display_name == "Alice"
    assert board[0].total_xp == 75
    assert board[0].rank == 1


def test_leaderboard_is_empty_when_nothing_is_reachable(run, reconciler, remote, local):
    remote.fail()
    local.fail()

    assert run(reconciler.get_leaderboard()) == []


def test_user_rank(run, reconciler, clock, alice, bob):
    run(reconciler.apply_completion(alice, 1, 50, 0))
    run(reconciler.apply_completion(bob, 1, 90, 0))

    assert run(reconciler.get_user_rank(alice)).rank == 2
    assert run(reconciler.get_user_rank(bob)).rank == 1


def test_reconciler_without_session_tracker(run, remote, local, settings, clock, memory_remote, alice):
    reconciler = ProgressReconciler(remote, local, settings, clock=clock)

    run(reconciler.apply_completion(alice, 1, 10, 0))

    assert run(memory_remote.query(SESSIONS, "xpEarned", 10)) == []
