"""
Completion analytics.

Derived entirely from block history; nothing here is stored. Provides:
- Per-subject progress (blocks, minutes, XP earned)
- Schedule versions (one per generation batch)
- Daily XP series
- Level predictions for the blocks still to do
- A combined summary for dashboards and the CLI ``stats`` command
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime

from studyblocks.core.models import BlockStatus, LevelPrediction, StreakSummary, StudyBlock, Subject
from studyblocks.progression.streaks import StreakCalculator
from studyblocks.progression.xp import ProgressionEngine
from studyblocks.scheduling.lifecycle import CompletionStateMachine


@dataclass
class SubjectProgress:
    subject_id: str
    subject_name: str
    confidence: int
    level: int
    xp: int
    total_blocks: int = 0
    completed_blocks: int = 0
    minutes_studied: int = 0
    xp_earned: int = 0

    @property
    def completion_rate(self) -> float:
        if self.total_blocks == 0:
            return 0.0
        return self.completed_blocks / self.total_blocks


@dataclass
class ScheduleVersion:
    """One generation batch and how much of it has been done."""

    generation_id: str
    start_date: date
    end_date: date
    created_at: datetime
    total_blocks: int
    completed_blocks: int
    xp_earned: int

    @property
    def completion_rate(self) -> float:
        if self.total_blocks == 0:
            return 0.0
        return self.completed_blocks / self.total_blocks


@dataclass
class XPDataPoint:
    date: date
    xp_earned: int
    blocks_completed: int


@dataclass
class StudyStats:
    """Everything the stats view shows."""

    total_blocks: int = 0
    completed_blocks: int = 0
    overdue_blocks: int = 0
    pending_blocks: int = 0
    due_blocks: int = 0
    minutes_studied: int = 0
    global_xp: int = 0
    global_level: int = 1
    global_level_progress: float = 0.0
    streak: StreakSummary = field(default_factory=StreakSummary)
    subjects: list[SubjectProgress] = field(default_factory=list)
    versions: list[ScheduleVersion] = field(default_factory=list)
    daily_xp: list[XPDataPoint] = field(default_factory=list)
    level_predictions: dict[str, LevelPrediction] = field(default_factory=dict)

    @property
    def completion_rate(self) -> float:
        """Completed share of the blocks that were due by today."""
        if self.due_blocks == 0:
            return 0.0
        return self.completed_blocks / self.due_blocks


class CompletionAnalytics:
    """Aggregates block history into progress figures."""

    def __init__(self, progression: ProgressionEngine | None = None):
        self.progression = progression or ProgressionEngine()

    @staticmethod
    def subject_progress(subjects: list[Subject], blocks: list[StudyBlock]) -> list[SubjectProgress]:
        progress = {
            subject.id: SubjectProgress(
                subject_id=subject.id,
                subject_name=subject.name,
                confidence=subject.confidence,
                level=subject.level,
                xp=subject.xp,
            )
            for subject in subjects
        }
        for block in blocks:
            entry = progress.get(block.subject_id)
            if entry is None:
                continue
            entry.total_blocks += 1
            if block.is_completed:
                entry.completed_blocks += 1
                entry.minutes_studied += block.duration_minutes
                entry.xp_earned += block.xp_awarded
        return list(progress.values())

    @staticmethod
    def schedule_versions(blocks: list[StudyBlock]) -> list[ScheduleVersion]:
        """Generation batches, newest first. Custom blocks belong to none."""
        batches: dict[str, list[StudyBlock]] = defaultdict(list)
        for block in blocks:
            if block.generation_id and not block.is_custom_block:
                batches[block.generation_id].append(block)

        versions = [
            ScheduleVersion(
                generation_id=generation_id,
                start_date=min(b.scheduled_date for b in batch),
                end_date=max(b.scheduled_date for b in batch),
                created_at=min(b.created_at for b in batch),
                total_blocks=len(batch),
                completed_blocks=sum(1 for b in batch if b.is_completed),
                xp_earned=sum(b.xp_awarded for b in batch if b.is_completed),
            )
            for generation_id, batch in batches.items()
        ]
        versions.sort(key=lambda v: (v.created_at, v.generation_id), reverse=True)
        return versions

    @staticmethod
    def daily_xp(blocks: list[StudyBlock]) -> list[XPDataPoint]:
        """XP earned per completion date, oldest first."""
        per_day: dict[date, XPDataPoint] = {}
        for block in blocks:
            if not block.is_completed or block.completed_at is None:
                continue
            day = block.completed_at.date()
            point = per_day.setdefault(day, XPDataPoint(date=day, xp_earned=0, blocks_completed=0))
            point.xp_earned += block.xp_awarded
            point.blocks_completed += 1
        return [per_day[day] for day in sorted(per_day)]

    def level_predictions(
        self, subjects: list[Subject], blocks: list[StudyBlock]
    ) -> dict[str, LevelPrediction]:
        """
        Predicted XP and level per subject, keyed by subject id.

        Only incomplete blocks count toward the gain; completed ones are
        already part of the subject's XP. Each block is valued the way a
        completion would value it today.
        """
        curve = self.progression.config.subject_curve
        gains = {subject.id: 0 for subject in subjects}
        by_id = {subject.id: subject for subject in subjects}
        for block in blocks:
            subject = by_id.get(block.subject_id)
            if subject is None or block.is_completed:
                continue
            gains[subject.id] += self.progression.xp_for_block(subject, block)

        predictions = {}
        for subject in subjects:
            predicted_xp = subject.xp + gains[subject.id]
            predictions[subject.id] = LevelPrediction(
                subject_id=subject.id,
                subject_name=subject.name,
                current_xp=subject.xp,
                current_level=subject.level,
                xp_gain=gains[subject.id],
                predicted_xp=predicted_xp,
                predicted_level=curve.level(predicted_xp),
                predicted_level_progress=curve.level_progress(predicted_xp),
            )
        return predictions

    def summarize(self, subjects: list[Subject], blocks: list[StudyBlock], today: date) -> StudyStats:
        stats = StudyStats(total_blocks=len(blocks))
        for block in blocks:
            status = CompletionStateMachine.status(block, today)
            if status is BlockStatus.COMPLETED:
                stats.completed_blocks += 1
                stats.minutes_studied += block.duration_minutes
            elif status is BlockStatus.OVERDUE:
                stats.overdue_blocks += 1
            elif status is BlockStatus.PENDING:
                stats.pending_blocks += 1
            if status is not BlockStatus.PENDING:
                stats.due_blocks += 1

        completion_dates = {
            block.completed_at.date()
            for block in blocks
            if block.is_completed and block.completed_at is not None
        }
        curve = self.progression.config.global_curve
        stats.global_xp = self.progression.global_xp(subjects)
        stats.global_level = curve.level(stats.global_xp)
        stats.global_level_progress = curve.level_progress(stats.global_xp)
        stats.streak = StreakCalculator.streak(completion_dates, today)
        stats.subjects = self.subject_progress(subjects, blocks)
        stats.versions = self.schedule_versions(blocks)
        stats.daily_xp = self.daily_xp(blocks)
        stats.level_predictions = self.level_predictions(subjects, blocks)
        return stats
