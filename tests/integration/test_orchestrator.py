"""
Integration tests for the ScheduleOrchestrator.

Exercises generation, completion, rescheduling and streaks end to end
against a temporary SQLite database.

2024-01-10 is a Wednesday.
"""

import threading
from dataclasses import replace
from datetime import date, datetime, timedelta

import pytest

from studyblocks.core.models import BlockStatus, RescheduleOption, SchedulePreferences
from studyblocks.db.store import SqlStudyStore
from studyblocks.exceptions import (
    CannotRescheduleCompleted,
    ConcurrencyConflict,
    InvalidTransition,
    NoSubjects,
    NotFound,
    StorageError,
    ValidationError,
)
from studyblocks.orchestrator import ScheduleOrchestrator

pytestmark = pytest.mark.integration

TODAY = date(2024, 1, 10)
EVENING = datetime(2024, 1, 10, 18, 0)


@pytest.fixture
def store(tmp_path):
    store = SqlStudyStore(database_url=f"sqlite:///{tmp_path / 'orchestrator.db'}")
    yield store
    store.close()


@pytest.fixture
def orchestrator(store):
    return ScheduleOrchestrator(store)


@pytest.fixture
def prefs():
    """Seven days, weekdays only: 15 slots."""
    return SchedulePreferences(
        user_id="alice",
        schedule_horizon_days=7,
        blocks_per_weekday=3,
        blocks_per_weekend=0,
    )


@pytest.fixture
def subjects(store, make_subject):
    math = make_subject("Math", 2)
    history = make_subject("History", 9)
    store.save_subject(math)
    store.save_subject(history)
    return math, history


@pytest.fixture
def scheduled(orchestrator, subjects, prefs):
    orchestrator.generate_schedule("alice", prefs, TODAY)
    return orchestrator


def first_block_on(orchestrator, day, subject_name=None):
    blocks = orchestrator.blocks_for_date("alice", day)
    if subject_name:
        blocks = [b for b in blocks if b.subject_name == subject_name]
    return blocks[0]


class TestGenerate:
    def test_persists_schedule_and_preferences(self, orchestrator, store, subjects, prefs):
        result = orchestrator.generate_schedule("alice", prefs, TODAY)

        assert result.total_blocks == 15
        assert result.subject_distribution == {"Math": 12, "History": 3}
        assert len(store.load_blocks("alice")) == 15
        assert store.load_preferences("alice") == prefs

    def test_uses_stored_preferences(self, orchestrator, store, subjects, prefs):
        store.save_preferences(prefs)
        assert orchestrator.generate_schedule("alice", today=TODAY).total_blocks == 15

    def test_defaults_without_preferences(self, orchestrator, subjects):
        """21 days from a Wednesday: 15 weekdays x 3 + 6 weekend days x 2."""
        assert orchestrator.generate_schedule("alice", today=TODAY).total_blocks == 57

    def test_no_subjects_leaves_state_untouched(self, orchestrator, store, prefs):
        with pytest.raises(NoSubjects):
            orchestrator.generate_schedule("alice", prefs, TODAY)

        assert store.load_blocks("alice") == []
        assert store.load_preferences("alice") is None

    def test_preferences_for_other_user_rejected(self, orchestrator, subjects, prefs):
        with pytest.raises(ValidationError):
            orchestrator.generate_schedule("bob", prefs, TODAY)

    def test_regenerate_keeps_completed_and_custom(self, scheduled, store, subjects, prefs):
        math, _ = subjects
        done = first_block_on(scheduled, TODAY)
        scheduled.complete_block(done.id, EVENING)
        custom = scheduled.add_custom_block("alice", math.id, TODAY + timedelta(days=2))

        scheduled.generate_schedule("alice", prefs, TODAY)

        blocks = {b.id: b for b in store.load_blocks("alice")}
        assert blocks[done.id].is_completed
        assert custom.id in blocks
        assert len(blocks) == 15 + 2

    def test_regenerate_keeps_overdue(self, scheduled, store, prefs):
        later = TODAY + timedelta(days=2)
        scheduled.generate_schedule("alice", prefs, later)

        overdue = [b for b in store.load_blocks("alice") if b.scheduled_date < later]
        assert len(overdue) == 6
        assert all(scheduled.status_of(b.id, later) is BlockStatus.OVERDUE for b in overdue)

    def test_failed_generation_keeps_previous_schedule(self, store, subjects, prefs):
        class BrokenStore(SqlStudyStore):
            def replace_future_incomplete_blocks(self, user_id, blocks, today, preferences=None):
                # Duplicate ids make the insert fail after the delete
                return super().replace_future_incomplete_blocks(user_id, blocks + blocks[:1], today, preferences)

        ScheduleOrchestrator(store).generate_schedule("alice", prefs, TODAY)
        before = store.load_blocks("alice")

        broken = BrokenStore(database_url=store.database_url)
        with pytest.raises(StorageError):
            ScheduleOrchestrator(broken).generate_schedule("alice", prefs, TODAY)
        broken.close()

        assert store.load_blocks("alice") == before


class TestCompletion:
    def test_complete_grants_xp(self, scheduled, store):
        block = first_block_on(scheduled, TODAY, "Math")

        xp = scheduled.complete_block(block.id, EVENING)

        assert xp == 140
        math = store.load_subject(block.subject_id)
        assert math.xp == 140
        assert store.load_block(block.id).xp_awarded == 140
        assert scheduled.status_of(block.id, TODAY) is BlockStatus.COMPLETED

    def test_complete_twice_grants_once(self, scheduled, store):
        block = first_block_on(scheduled, TODAY, "Math")
        scheduled.complete_block(block.id, EVENING)

        with pytest.raises(InvalidTransition):
            scheduled.complete_block(block.id, EVENING)

        assert store.load_subject(block.subject_id).xp == 140

    def test_complete_pending_rejected(self, scheduled, store):
        block = first_block_on(scheduled, TODAY + timedelta(days=1))
        with pytest.raises(InvalidTransition):
            scheduled.complete_block(block.id, EVENING)
        assert not store.load_block(block.id).is_completed

    def test_complete_overdue(self, scheduled):
        block = first_block_on(scheduled, TODAY)
        assert scheduled.complete_block(block.id, EVENING + timedelta(days=3)) > 0

    def test_uncomplete_restores_xp_and_level(self, scheduled, store):
        block = first_block_on(scheduled, TODAY, "Math")
        before = store.load_subject(block.subject_id)

        granted = scheduled.complete_block(block.id, EVENING)
        delta = scheduled.uncomplete_block(block.id)

        after = store.load_subject(block.subject_id)
        assert delta == -granted
        assert (after.xp, after.level) == (before.xp, before.level)
        assert scheduled.status_of(block.id, TODAY) is BlockStatus.AVAILABLE

    def test_uncomplete_reverses_recorded_grant_after_rerate(self, scheduled, store, subjects):
        math, _ = subjects
        block = first_block_on(scheduled, TODAY, "Math")
        granted = scheduled.complete_block(block.id, EVENING)

        scheduled.update_confidences("alice", {math.id: 10})

        assert scheduled.uncomplete_block(block.id) == -granted
        assert store.load_subject(math.id).xp == 0

    def test_uncomplete_incomplete_rejected(self, scheduled):
        block = first_block_on(scheduled, TODAY)
        with pytest.raises(InvalidTransition):
            scheduled.uncomplete_block(block.id)


class TestReschedule:
    def test_tomorrow_goes_last(self, scheduled):
        block = first_block_on(scheduled, TODAY)

        moved = scheduled.reschedule_block(block.id, RescheduleOption.TOMORROW, today=TODAY)

        assert moved.scheduled_date == TODAY + timedelta(days=1)
        tomorrow = scheduled.blocks_for_date("alice", TODAY + timedelta(days=1))
        assert tomorrow[-1].id == block.id
        assert len(tomorrow) == 4
        assert len(scheduled.blocks_for_date("alice", TODAY)) == 2

    def test_later_today(self, scheduled):
        block = first_block_on(scheduled, TODAY)
        moved = scheduled.reschedule_block(block.id, RescheduleOption.LATER_TODAY, today=TODAY)

        assert moved.scheduled_date == TODAY
        assert scheduled.blocks_for_date("alice", TODAY)[-1].id == block.id

    def test_only_the_block_moves(self, scheduled, store):
        block = first_block_on(scheduled, TODAY)
        others_before = [b for b in store.load_blocks("alice") if b.id != block.id]

        scheduled.reschedule_block(block.id, RescheduleOption.CUSTOM_TIME, TODAY + timedelta(days=20), today=TODAY)

        assert [b for b in store.load_blocks("alice") if b.id != block.id] == others_before

    def test_completed_block_rejected(self, scheduled):
        block = first_block_on(scheduled, TODAY)
        scheduled.complete_block(block.id, EVENING)
        with pytest.raises(CannotRescheduleCompleted):
            scheduled.reschedule_block(block.id, RescheduleOption.CUSTOM_TIME, today=TODAY)

    def test_custom_time_in_past_rejected(self, scheduled, store):
        block = first_block_on(scheduled, TODAY)
        with pytest.raises(ValidationError):
            scheduled.reschedule_block(block.id, RescheduleOption.CUSTOM_TIME, TODAY - timedelta(days=1), today=TODAY)
        assert store.load_block(block.id) == block

    def test_undo_last_reschedule(self, scheduled, store):
        block = first_block_on(scheduled, TODAY)
        scheduled.reschedule_block(block.id, RescheduleOption.TOMORROW, today=TODAY)

        restored = scheduled.undo_last_reschedule("alice")

        assert restored.scheduled_date == TODAY
        assert restored.sort_order == block.sort_order
        assert store.load_block(block.id) == block
        assert scheduled.undo_last_reschedule("alice") is None


class TestMissedBlocks:
    """Schedule generated on Wednesday, caught up on Friday 2024-01-12."""

    FRIDAY = TODAY + timedelta(days=2)

    def test_overdue_blocks_pulled_forward(self, scheduled, store):
        done = first_block_on(scheduled, TODAY, "Math")
        scheduled.complete_block(done.id, EVENING)
        before = {b.id: b for b in store.load_blocks("alice")}

        result = scheduled.reschedule_missed_blocks("alice", self.FRIDAY)

        after = {b.id: b for b in store.load_blocks("alice")}
        assert result.total_blocks == 14
        assert result.subject_distribution == {"Math": 11, "History": 3}
        assert set(after) == set(before)
        assert after[done.id] == before[done.id]
        open_blocks = [b for b in after.values() if not b.is_completed]
        assert min(b.scheduled_date for b in open_blocks) == self.FRIDAY
        assert all(b.block_number == before[b.id].block_number for b in open_blocks)

    def test_capacity_respected(self, scheduled, store):
        scheduled.reschedule_missed_blocks("alice", self.FRIDAY)

        per_day = {}
        for block in store.load_blocks("alice"):
            per_day[block.scheduled_date] = per_day.get(block.scheduled_date, 0) + 1
        assert all(count <= 3 for count in per_day.values())
        assert all(day.weekday() < 5 for day in per_day)
        # 15 blocks from a Friday: Fri, Mon-Thu, each full
        assert max(per_day) == TODAY + timedelta(days=8)

    def test_nothing_overdue_leaves_schedule(self, scheduled, store):
        before = store.load_blocks("alice")
        result = scheduled.reschedule_missed_blocks("alice", TODAY)
        assert result.total_blocks == 0
        assert store.load_blocks("alice") == before

    def test_failed_write_keeps_schedule(self, scheduled, store):
        class BrokenStore(SqlStudyStore):
            def update_blocks(self, blocks):
                ghost = replace(blocks[-1], id="ghost")
                return super().update_blocks(blocks + [ghost])

        before = store.load_blocks("alice")
        broken = BrokenStore(database_url=store.database_url)
        with pytest.raises(NotFound):
            ScheduleOrchestrator(broken).reschedule_missed_blocks("alice", self.FRIDAY)
        broken.close()

        assert store.load_blocks("alice") == before


class TestCustomBlocks:
    def test_zero_duration_rejected(self, scheduled, store, subjects):
        math, _ = subjects
        before = len(store.load_blocks("alice"))

        with pytest.raises(ValidationError):
            scheduled.add_custom_block("alice", math.id, TODAY, duration_minutes=0)

        assert len(store.load_blocks("alice")) == before

    def test_default_duration_from_subject(self, scheduled, subjects):
        math, _ = subjects
        assert scheduled.add_custom_block("alice", math.id, TODAY).duration_minutes == 60
        assert scheduled.add_custom_block("alice", math.id, TODAY, duration_minutes=25).duration_minutes == 25


class TestProgress:
    def test_streak_from_completions(self, scheduled):
        scheduled.complete_block(first_block_on(scheduled, TODAY).id, EVENING)
        tomorrow = TODAY + timedelta(days=1)
        scheduled.complete_block(first_block_on(scheduled, tomorrow).id, EVENING + timedelta(days=1))

        summary = scheduled.compute_streak("alice", EVENING + timedelta(days=1))
        assert summary.current == 2
        assert summary.longest == 2
        assert scheduled.compute_streak("alice", EVENING + timedelta(days=4)).current == 0

    def test_needs_reevaluation_after_horizon(self, scheduled):
        assert not scheduled.needs_reevaluation("alice", TODAY)
        assert not scheduled.needs_reevaluation("alice", TODAY + timedelta(days=6))
        assert scheduled.needs_reevaluation("alice", TODAY + timedelta(days=7))

    def test_no_schedule_needs_no_reevaluation(self, orchestrator):
        assert not orchestrator.needs_reevaluation("alice", TODAY)

    def test_update_confidences_validates_all_first(self, orchestrator, store, subjects):
        math, history = subjects
        with pytest.raises(ValidationError):
            orchestrator.update_confidences("alice", {math.id: 5, history.id: 11})
        assert store.load_subject(math.id).confidence == 2

        orchestrator.update_confidences("alice", {math.id: 5, history.id: 7})
        assert [s.confidence for s in store.load_subjects("alice")] == [5, 7]

    def test_analytics(self, scheduled):
        scheduled.complete_block(first_block_on(scheduled, TODAY).id, EVENING)
        stats = scheduled.analytics("alice", TODAY)

        assert stats.total_blocks == 15
        assert stats.completed_blocks == 1
        assert stats.due_blocks == 3
        assert stats.global_xp > 0
        assert len(stats.versions) == 1
        assert set(stats.level_predictions) == {b.subject_id for b in scheduled.store.load_blocks("alice")}

    def test_generation_predicts_levels(self, orchestrator, subjects, prefs):
        math, history = subjects
        predictions = orchestrator.generate_schedule("alice", prefs, TODAY).level_predictions

        # 12 Math blocks at 140 XP, 3 History blocks at 105 XP
        assert predictions[math.id].xp_gain == 1680
        assert predictions[history.id].xp_gain == 315
        assert predictions[math.id].current_level == 1
        assert predictions[math.id].predicted_level > 1

    def test_delete_subject_removes_its_blocks(self, scheduled, store, subjects):
        _, history = subjects
        assert scheduled.delete_subject("alice", history.id) == 3
        assert {b.subject_name for b in store.load_blocks("alice")} == {"Math"}


class TestConcurrency:
    def test_concurrent_generations_leave_one_schedule(self, orchestrator, store, subjects, prefs):
        errors = []

        def worker():
            try:
                orchestrator.generate_schedule("alice", prefs, TODAY)
            except Exception as e:  # collected and asserted below
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(store.load_blocks("alice")) == 15

    def test_busy_lock_surfaces_conflict(self, store, subjects, prefs):
        orchestrator = ScheduleOrchestrator(store, lock_timeout=0.05)
        lock = orchestrator._user_lock("alice")
        lock.acquire()
        try:
            with pytest.raises(ConcurrencyConflict):
                orchestrator.generate_schedule("alice", prefs, TODAY)
        finally:
            lock.release()

        assert store.load_blocks("alice") == []

    def test_store_conflict_retried_once(self, store, subjects, prefs):
        calls = []

        class FlakyStore(SqlStudyStore):
            def replace_future_incomplete_blocks(self, user_id, blocks, today, preferences=None):
                calls.append(user_id)
                if len(calls) == 1:
                    raise ConcurrencyConflict("database is locked")
                return super().replace_future_incomplete_blocks(user_id, blocks, today, preferences)

        flaky = FlakyStore(database_url=store.database_url)
        try:
            result = ScheduleOrchestrator(flaky).generate_schedule("alice", prefs, TODAY)
        finally:
            flaky.close()

        assert result.total_blocks == 15
        assert len(calls) == 2

    def test_on_change_called_after_writes(self, store, subjects, prefs):
        changed = []
        orchestrator = ScheduleOrchestrator(store, on_change=changed.append)

        orchestrator.generate_schedule("alice", prefs, TODAY)
        with pytest.raises(InvalidTransition):
            orchestrator.uncomplete_block(first_block_on(orchestrator, TODAY).id)

        assert changed == ["alice"]
