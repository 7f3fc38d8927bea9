"""
Schedule orchestration.

The one entry point the rest of the system calls. Composes the generator,
lifecycle, reschedule and progression engines with the block store, and
serialises every write for a user behind a per-user lock so that a schedule
replacement never interleaves with a completion or a reschedule.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Callable, Generator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import TypeVar

from loguru import logger

from studyblocks.config import get_settings
from studyblocks.core.models import (
    MAX_CONFIDENCE,
    MIN_CONFIDENCE,
    BlockStatus,
    RescheduleOption,
    SchedulePreferences,
    SchedulingResult,
    StreakSummary,
    StudyBlock,
    Subject,
)
from studyblocks.db.store import StudyStore
from studyblocks.exceptions import (
    CannotRescheduleCompleted,
    ConcurrencyConflict,
    NoSubjects,
    NotFound,
    ValidationError,
)
from studyblocks.progression.analytics import CompletionAnalytics, StudyStats
from studyblocks.progression.streaks import StreakCalculator
from studyblocks.progression.xp import ProgressionConfig, ProgressionEngine
from studyblocks.scheduling.generator import ScheduleGenerator
from studyblocks.scheduling.lifecycle import CompletionStateMachine
from studyblocks.scheduling.reschedule import RescheduleEngine

T = TypeVar("T")


@dataclass
class RescheduleRecord:
    """Enough to undo the most recent reschedule of a user."""

    block_id: str
    previous_date: date
    previous_sort_order: int
    new_date: date
    option: RescheduleOption


class ScheduleOrchestrator:
    """
    Coordinates schedule generation, completion and rescheduling.

    Usage:
        orchestrator = ScheduleOrchestrator(SqlStudyStore())
        result = orchestrator.generate_schedule("alice")
        xp = orchestrator.complete_block(block_id, datetime.now())
    """

    def __init__(
        self,
        store: StudyStore,
        generator: ScheduleGenerator | None = None,
        progression: ProgressionEngine | None = None,
        rescheduler: RescheduleEngine | None = None,
        lock_timeout: float | None = None,
        on_change: Callable[[str], None] | None = None,
    ):
        """
        Args:
            store: Storage collaborator
            generator: Schedule generator (default instance if None)
            progression: XP engine (configured from settings if None)
            rescheduler: Reschedule engine (default instance if None)
            lock_timeout: Seconds to wait for a user's write lock (settings if None)
            on_change: Called with the user id after every committed write
        """
        settings = get_settings()
        self.store = store
        self.generator = generator or ScheduleGenerator()
        self.progression = progression or ProgressionEngine(ProgressionConfig.from_settings(settings))
        self.rescheduler = rescheduler or RescheduleEngine()
        self.lifecycle = CompletionStateMachine()
        self.analytics_engine = CompletionAnalytics(self.progression)
        self.lock_timeout = settings.lock_timeout_seconds if lock_timeout is None else lock_timeout
        self.on_change = on_change

        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._last_reschedule: dict[str, RescheduleRecord] = {}

    # =========================================================================
    # Serialisation
    # =========================================================================

    def _user_lock(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(user_id, threading.Lock())

    @contextmanager
    def _exclusive(self, user_id: str) -> Generator[None, None, None]:
        lock = self._user_lock(user_id)
        acquired = lock.acquire(timeout=self.lock_timeout)
        if not acquired:
            logger.warning(f"Write lock for {user_id} busy, retrying once")
            acquired = lock.acquire(timeout=self.lock_timeout)
        if not acquired:
            raise ConcurrencyConflict(f"Another write for user {user_id} is still running")
        try:
            yield
        finally:
            lock.release()

    def _write(self, user_id: str, operation: Callable[[], T]) -> T:
        """Run ``operation`` under the user's lock, retrying a store conflict once."""
        with self._exclusive(user_id):
            try:
                outcome = operation()
            except ConcurrencyConflict as e:
                logger.warning(f"Store conflict for {user_id} ({e}), retrying once")
                outcome = operation()
        if self.on_change is not None:
            self.on_change(user_id)
        return outcome

    # =========================================================================
    # Generation
    # =========================================================================

    def preferences_for(self, user_id: str) -> SchedulePreferences:
        """Stored preferences, or the configured defaults."""
        prefs = self.store.load_preferences(user_id)
        if prefs is not None:
            return prefs
        settings = get_settings()
        return SchedulePreferences(
            user_id=user_id,
            schedule_horizon_days=settings.default_horizon_days,
            blocks_per_weekday=settings.default_blocks_per_weekday,
            blocks_per_weekend=settings.default_blocks_per_weekend,
            default_block_duration_minutes=settings.default_block_duration_minutes,
        )

    def generate_schedule(
        self,
        user_id: str,
        prefs: SchedulePreferences | None = None,
        today: date | None = None,
    ) -> SchedulingResult:
        """
        Generate and persist a new schedule.

        Future incomplete generated blocks are replaced; completed, overdue
        and custom blocks are kept. ``prefs``, when given, are saved in the
        same transaction.

        Raises:
            NoSubjects: The user has no subjects (nothing is written)
            ValidationError: ``prefs`` belong to another user
        """
        today = today or date.today()
        if prefs is not None and prefs.user_id != user_id:
            raise ValidationError(f"Preferences for {prefs.user_id} cannot be used for {user_id}")

        def run() -> SchedulingResult:
            subjects = self.store.load_subjects(user_id)
            if not subjects:
                raise NoSubjects(user_id)
            effective = prefs or self.preferences_for(user_id)

            blocks, result = self.generator.generate(
                subjects,
                effective,
                today,
                generation_id=uuid.uuid4().hex,
                created_at=datetime.now(),
            )
            removed = self.store.replace_future_incomplete_blocks(user_id, blocks, today, preferences=prefs)
            result.level_predictions = self.analytics_engine.level_predictions(
                subjects, self.store.load_blocks(user_id)
            )
            logger.info(
                f"Schedule for {user_id}: {result.total_blocks} blocks from {today}, "
                f"{removed} previous blocks replaced"
            )
            return result

        return self._write(user_id, run)

    # =========================================================================
    # Completion
    # =========================================================================

    def _require_block(self, block_id: str) -> StudyBlock:
        block = self.store.load_block(block_id)
        if block is None:
            raise NotFound("block", block_id)
        return block

    def _require_subject(self, subject_id: str) -> Subject:
        subject = self.store.load_subject(subject_id)
        if subject is None:
            raise NotFound("subject", subject_id)
        return subject

    def complete_block(self, block_id: str, now: datetime | None = None) -> int:
        """
        Complete an AVAILABLE or OVERDUE block and grant its XP.

        Returns:
            XP granted

        Raises:
            InvalidTransition: The block is PENDING or already completed
        """
        now = now or datetime.now()
        user_id = self._require_block(block_id).user_id

        def run() -> int:
            block = self._require_block(block_id)
            subject = self._require_subject(block.subject_id)
            grant = self.progression.on_complete(subject, block)
            completed = self.lifecycle.complete(block, now, xp_awarded=grant)
            _, updated = self.store.set_block_completion(
                block_id,
                True,
                completed_at=completed.completed_at,
                xp_awarded=grant,
                xp_delta=grant,
                level_of=self.progression.subject_level,
            )
            logger.info(
                f"Completed block {block_id} ({subject.name} #{block.block_number}): "
                f"+{grant} XP, level {subject.level} -> {updated.level}"
            )
            return grant

        return self._write(user_id, run)

    def uncomplete_block(self, block_id: str) -> int:
        """
        Reverse a completion and take back exactly the XP it granted.

        Returns:
            XP delta (negative, or zero for a block completed without XP)
        """
        user_id = self._require_block(block_id).user_id

        def run() -> int:
            block = self._require_block(block_id)
            self.lifecycle.uncomplete(block)
            delta = self.progression.on_uncomplete(block)
            _, updated = self.store.set_block_completion(
                block_id,
                False,
                xp_delta=delta,
                level_of=self.progression.subject_level,
            )
            logger.info(f"Uncompleted block {block_id} ({updated.name}): {delta} XP")
            return delta

        return self._write(user_id, run)

    # =========================================================================
    # Rescheduling
    # =========================================================================

    def reschedule_block(
        self,
        block_id: str,
        option: RescheduleOption,
        target_date: date | None = None,
        today: date | None = None,
    ) -> StudyBlock:
        """
        Move one block. Nothing else is regenerated.

        Raises:
            CannotRescheduleCompleted: The block is completed
            ValidationError: CUSTOM_TIME without a usable date
        """
        today = today or date.today()
        option = RescheduleOption(option)
        user_id = self._require_block(block_id).user_id

        def run() -> StudyBlock:
            block = self._require_block(block_id)
            if not self.lifecycle.can_reschedule(block):
                raise CannotRescheduleCompleted(block.id)
            new_date = self.rescheduler.resolve_target_date(block, option, today, target_date)
            day_blocks = self.store.load_blocks(user_id, new_date, new_date)
            moved = self.rescheduler.reschedule(block, option, today, target_date, day_blocks)
            self.store.update_block(moved)
            self._last_reschedule[user_id] = RescheduleRecord(
                block_id=block.id,
                previous_date=block.scheduled_date,
                previous_sort_order=block.sort_order,
                new_date=moved.scheduled_date,
                option=option,
            )
            logger.info(f"Rescheduled block {block_id} to {moved.scheduled_date} ({option.value})")
            return moved

        return self._write(user_id, run)

    def undo_last_reschedule(self, user_id: str) -> StudyBlock | None:
        """
        Put the user's most recently rescheduled block back where it was.

        Returns:
            The restored block, or None when there is nothing to undo or the
            block has since been completed or deleted
        """

        def run() -> StudyBlock | None:
            record = self._last_reschedule.pop(user_id, None)
            if record is None:
                return None
            block = self.store.load_block(record.block_id)
            if block is None or block.is_completed:
                return None
            restored = replace(
                block,
                scheduled_date=record.previous_date,
                sort_order=record.previous_sort_order,
            )
            self.store.update_block(restored)
            logger.info(f"Undid reschedule of block {block.id} back to {record.previous_date}")
            return restored

        return self._write(user_id, run)

    def reschedule_missed_blocks(self, user_id: str, today: date | None = None) -> SchedulingResult:
        """
        Pull overdue blocks forward and spread them, with everything still
        to do, over the days from today.

        Completed blocks stay where they are. Day capacities come from the
        user's preferences; blocks that don't fit the horizon run past it.
        Every move is written in one transaction. With nothing overdue the
        schedule is left as is and the result is empty.
        """
        today = today or date.today()

        def run() -> SchedulingResult:
            prefs = self.preferences_for(user_id)
            moved = self.rescheduler.redistribute_missed(self.store.load_blocks(user_id), prefs, today)
            if moved:
                self.store.update_blocks(moved)
                self._last_reschedule.pop(user_id, None)
            distribution: dict[str, int] = {}
            for block in moved:
                distribution[block.subject_name] = distribution.get(block.subject_name, 0) + 1
            logger.info(f"Redistributed {len(moved)} incomplete blocks for {user_id} from {today}")
            return SchedulingResult(
                total_blocks=len(moved),
                schedule_horizon=prefs.schedule_horizon_days,
                subject_distribution=distribution,
            )

        return self._write(user_id, run)

    # =========================================================================
    # Custom blocks & subjects
    # =========================================================================

    def add_custom_block(
        self,
        user_id: str,
        subject_id: str,
        scheduled_date: date,
        duration_minutes: int | None = None,
    ) -> StudyBlock:
        """Add a user-made block. Regeneration never deletes it."""
        subject = self._require_subject(subject_id)
        if subject.user_id != user_id:
            raise ValidationError(f"Subject {subject_id} does not belong to {user_id}")

        def run() -> StudyBlock:
            same_day = self.store.load_blocks(user_id, scheduled_date, scheduled_date)
            custom_count = sum(
                1 for b in self.store.load_blocks(user_id) if b.subject_id == subject_id and b.is_custom_block
            )
            block = StudyBlock(
                id=str(uuid.uuid4()),
                subject_id=subject.id,
                subject_name=subject.name,
                subject_icon=subject.icon,
                block_number=custom_count + 1,
                total_blocks_for_subject=custom_count + 1,
                spaced_repetition_interval=1,
                duration_minutes=subject.block_duration_minutes if duration_minutes is None else duration_minutes,
                scheduled_date=scheduled_date,
                user_id=user_id,
                is_custom_block=True,
                sort_order=max((b.sort_order for b in same_day), default=-1) + 1,
            )
            self.store.insert_block(block)
            logger.info(f"Added custom {subject.name} block on {scheduled_date}")
            return block

        return self._write(user_id, run)

    def update_confidences(self, user_id: str, confidences: dict[str, int]) -> list[Subject]:
        """
        Apply re-rated confidences (e.g. after a schedule horizon ends).

        All ratings are validated before any is saved.
        """
        for subject_id, confidence in confidences.items():
            if not MIN_CONFIDENCE <= confidence <= MAX_CONFIDENCE:
                raise ValidationError(f"Confidence for {subject_id} must be between 1 and 10")

        def run() -> list[Subject]:
            subjects = {s.id: s for s in self.store.load_subjects(user_id)}
            missing = [sid for sid in confidences if sid not in subjects]
            if missing:
                raise NotFound("subject", missing[0])
            updated = []
            for subject_id, confidence in confidences.items():
                subject = replace(subjects[subject_id], confidence=confidence)
                self.store.save_subject(subject)
                updated.append(subject)
            return updated

        return self._write(user_id, run)

    def delete_subject(self, user_id: str, subject_id: str) -> int:
        """Delete a subject together with all of its blocks."""
        return self._write(user_id, lambda: self.store.delete_subject(subject_id))

    # =========================================================================
    # Reads
    # =========================================================================

    def blocks_for_date(self, user_id: str, day: date) -> list[StudyBlock]:
        return self.store.load_blocks(user_id, day, day)

    def status_of(self, block_id: str, today: date | None = None) -> BlockStatus:
        return self.lifecycle.status(self._require_block(block_id), today or date.today())

    def compute_streak(self, user_id: str, now: datetime | date | None = None) -> StreakSummary:
        if now is None:
            today = date.today()
        elif isinstance(now, datetime):
            today = now.date()
        else:
            today = now
        return StreakCalculator.streak(self.store.load_completion_history(user_id), today)

    def needs_reevaluation(self, user_id: str, today: date | None = None) -> bool:
        """
        True once the latest generated schedule has run out.

        That is the moment the learner is asked to re-rate their confidence
        before the next schedule is generated.
        """
        today = today or date.today()
        generated = [b for b in self.store.load_blocks(user_id) if not b.is_custom_block]
        if not generated:
            return False
        latest = max(generated, key=lambda b: b.created_at).generation_id
        return all(b.scheduled_date < today for b in generated if b.generation_id == latest)

    def analytics(self, user_id: str, today: date | None = None) -> StudyStats:
        today = today or date.today()
        return self.analytics_engine.summarize(
            self.store.load_subjects(user_id),
            self.store.load_blocks(user_id),
            today,
        )
