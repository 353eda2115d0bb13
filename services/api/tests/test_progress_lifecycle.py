import pytest
from datetime import datetime, timezone
from sqlalchemy import select, func

from progress_api.errors import Conflict, InvalidItem, NotFound, NotStarted
from progress_api.models import PlanProgress, RewardLedgerEntry
from progress_api.services import lifecycle
from progress_api.services.progress_store import ProgressStore
from progress_api.settings import settings


USER = "user-1"
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _start(db, content, content_id="keto-5", content_type="diet", user=USER):
    return lifecycle.start_progress(
        db, content, user_id=user, content_type=content_type, content_id=content_id, now=NOW
    )


def _toggle(db, item_id, content_id="keto-5", content_type="diet", user=USER):
    return lifecycle.toggle_progress_item(
        db, user_id=user, content_type=content_type, content_id=content_id, item_id=item_id, now=NOW
    )


def _ledger_count(db, action_type=None):
    stmt = select(func.count()).select_from(RewardLedgerEntry)
    if action_type:
        stmt = stmt.where(RewardLedgerEntry.action_type == action_type)
    return db.scalar(stmt)


# --- Start ---

def test_start_is_idempotent(db_session, content):
    first = _start(db_session, content)
    assert first.already_started is False
    assert first.progress.status == "in_progress"
    assert first.progress.total_item_count == 5
    assert first.reward.points_earned == 10
    started_at = first.progress.started_at

    for _ in range(3):
        again = _start(db_session, content)
        assert again.already_started is True
        assert again.reward is None
        assert again.progress.started_at == started_at

    assert db_session.scalar(select(func.count()).select_from(PlanProgress)) == 1
    assert _ledger_count(db_session, "diet_started") == 1


def test_start_snapshots_items_and_skips_content_lookup_once_started(db_session, content):
    _start(db_session, content)
    assert content.calls == 1

    # Content edited after start: the stored snapshot keeps the percentage stable
    content.catalog[("diet", "keto-5")] = ["m1", "m2", "m3", "m4", "m5", "m6", "m7"]
    again = _start(db_session, content)
    assert content.calls == 1
    assert again.progress.total_item_count == 5
    assert again.progress.item_ids == ["m1", "m2", "m3", "m4", "m5"]


def test_start_unknown_content_raises_not_found(db_session, content):
    with pytest.raises(NotFound):
        _start(db_session, content, content_id="missing")
    assert lifecycle.get_progress(db_session, USER, "diet", "missing") is None


def test_start_content_without_items_is_rejected(db_session, content):
    with pytest.raises(InvalidItem):
        _start(db_session, content, content_id="empty")


def test_start_snapshot_keeps_only_toggleable_items(db_session, content):
    content.catalog[("diet", "odd")] = ["ok-1", "bad/slash", "bad|pipe", "z" * 65, "ok-2", "ok-1"]
    result = _start(db_session, content, content_id="odd")

    assert result.progress.item_ids == ["ok-1", "ok-2"]
    assert result.progress.total_item_count == 2
    _toggle(db_session, "ok-1", content_id="odd")
    done = _toggle(db_session, "ok-2", content_id="odd")
    assert done.completed_now is True


def test_start_with_only_unaddressable_items_is_rejected(db_session, content):
    content.catalog[("diet", "all-bad")] = ["a/b", "c|d"]
    with pytest.raises(InvalidItem):
        _start(db_session, content, content_id="all-bad")


# --- Toggle ---

def test_toggle_before_start_is_rejected_without_side_effects(db_session, content):
    with pytest.raises(NotStarted) as exc:
        _toggle(db_session, "m1")

    assert exc.value.extra["status"] == "not_started"
    assert lifecycle.get_progress(db_session, USER, "diet", "keto-5") is None
    assert _ledger_count(db_session) == 0


def test_toggle_membership_and_percentage(db_session, content):
    _start(db_session, content)
    for item in ("m1", "m2", "m3"):
        assert _toggle(db_session, item).checked is True
    result = _toggle(db_session, "m2")

    assert result.checked is False
    assert result.progress.completed_item_ids == ["m1", "m3"]
    assert result.progress.progress_percent == 40.0
    assert result.progress.status == "in_progress"
    assert result.completed_now is False


def test_toggle_unknown_item_is_invalid(db_session, content):
    _start(db_session, content)
    with pytest.raises(InvalidItem):
        _toggle(db_session, "not-an-item")


def test_checking_all_items_completes_and_rewards_once(db_session, content):
    _start(db_session, content)
    results = [_toggle(db_session, item) for item in ("m1", "m2", "m3", "m4", "m5")]

    final = results[-1]
    assert final.completed_now is True
    assert final.progress.status == "completed"
    assert final.progress.reward_claimed is True
    assert final.progress.completed_at is not None
    assert final.reward.points_earned == 50
    assert final.reward.already_earned is False
    assert [r.completed_now for r in results].count(True) == 1
    assert _ledger_count(db_session, "diet_completed") == 1


def test_unchecking_after_completion_keeps_completion_and_reward(db_session, content):
    _start(db_session, content)
    for item in ("m1", "m2", "m3", "m4", "m5"):
        _toggle(db_session, item)

    undone = _toggle(db_session, "m5")
    assert undone.checked is False
    assert undone.progress.status == "completed"
    assert undone.progress.reward_claimed is True
    assert undone.progress.completed_item_ids == ["m1", "m2", "m3", "m4"]
    assert undone.reward is None

    redone = _toggle(db_session, "m5")
    assert redone.completed_now is False
    assert redone.reward is None
    assert redone.daily_reward is None
    assert _ledger_count(db_session, "diet_completed") == 1


def test_first_check_of_the_day_earns_daily_progress_once(db_session, content):
    _start(db_session, content)
    first = _toggle(db_session, "m1")
    second = _toggle(db_session, "m2")

    assert first.daily_reward.points_earned == 5
    assert first.daily_reward.already_earned is False
    assert second.daily_reward.already_earned is True
    assert _ledger_count(db_session, "daily_progress") == 1


def test_progress_is_scoped_per_user(db_session, content):
    _start(db_session, content)
    _toggle(db_session, "m1")

    with pytest.raises(NotStarted):
        _toggle(db_session, "m1", user="user-2")
    assert lifecycle.get_progress(db_session, "user-2", "diet", "keto-5") is None


# --- Completion ---

def test_complete_force_completes_remaining_items(db_session, content):
    _start(db_session, content)
    _toggle(db_session, "m1")

    result = lifecycle.complete_progress(
        db_session, user_id=USER, content_type="diet", content_id="keto-5", now=NOW
    )
    assert result.already_completed is False
    assert result.progress.status == "completed"
    assert result.progress.completed_item_ids == ["m1", "m2", "m3", "m4", "m5"]
    assert result.progress.progress_percent == 100.0
    assert result.reward.points_earned == 50


def test_complete_after_implicit_completion_is_noop(db_session, content):
    _start(db_session, content, content_id="detox-2")
    _toggle(db_session, "d1", content_id="detox-2")
    _toggle(db_session, "d2", content_id="detox-2")

    result = lifecycle.complete_progress(
        db_session, user_id=USER, content_type="diet", content_id="detox-2", now=NOW
    )
    assert result.already_completed is True
    assert result.reward is None
    assert _ledger_count(db_session, "diet_completed") == 1


def test_complete_before_start_is_rejected(db_session, content):
    with pytest.raises(NotStarted):
        lifecycle.complete_progress(db_session, user_id=USER, content_type="diet", content_id="keto-5")


def test_complete_repairs_unclaimed_reward(db_session, content):
    started = _start(db_session, content, content_id="detox-2")
    progress = started.progress
    progress.status = "completed"
    progress.completed_item_ids = ["d1", "d2"]
    db_session.commit()
    assert progress.reward_claimed is False

    result = lifecycle.complete_progress(
        db_session, user_id=USER, content_type="diet", content_id="detox-2", now=NOW
    )
    assert result.already_completed is True
    assert result.reward.points_earned == 50
    assert result.progress.reward_claimed is True


# --- Optimistic concurrency ---

def test_concurrent_toggles_of_different_items_both_survive(db_session, content, session_factory, monkeypatch):
    _start(db_session, content)
    original_get = ProgressStore.get
    raced = {"done": False}

    def racing_get(self, *args):
        progress = original_get(self, *args)
        if self.db is db_session and not raced["done"]:
            raced["done"] = True
            # Another request toggles m2 between our read and our write
            other = session_factory()
            try:
                _toggle(other, "m2")
            finally:
                other.close()
        return progress

    monkeypatch.setattr(ProgressStore, "get", racing_get)
    result = _toggle(db_session, "m1")

    assert raced["done"] is True
    assert result.progress.completed_item_ids == ["m1", "m2"]
    assert result.progress.version == 3  # start, m2, m1


def test_conflict_surfaces_after_retry_budget(db_session, content, session_factory, monkeypatch):
    _start(db_session, content)
    monkeypatch.setattr(settings, "progress_write_retries", 2)
    original_get = ProgressStore.get
    calls = {"n": 0}

    def always_racing_get(self, *args):
        progress = original_get(self, *args)
        if self.db is db_session:
            calls["n"] += 1
            other = session_factory()
            try:
                _toggle(other, "m5")
            finally:
                other.close()
        return progress

    monkeypatch.setattr(ProgressStore, "get", always_racing_get)
    with pytest.raises(Conflict):
        _toggle(db_session, "m1")
    assert calls["n"] == 2


def test_list_progress_filters_by_status(db_session, content):
    _start(db_session, content)
    _start(db_session, content, content_id="detox-2")
    lifecycle.complete_progress(db_session, user_id=USER, content_type="diet", content_id="detox-2", now=NOW)

    assert len(lifecycle.list_progress(db_session, USER)) == 2
    completed = lifecycle.list_progress(db_session, USER, "completed")
    assert [p.content_id for p in completed] == ["detox-2"]
