"""
Domain model for the scheduling core.

Plain dataclasses with validation in ``__post_init__``. Engines never mutate
an instance in place; they hand back copies made with ``dataclasses.replace``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum

from studyblocks.exceptions import ValidationError

MIN_CONFIDENCE = 1
MAX_CONFIDENCE = 10
MIN_HORIZON_DAYS = 7
MAX_HORIZON_DAYS = 28


# =============================================================================
# Enums
# =============================================================================


class SubjectGrouping(str, Enum):
    """How same-subject blocks cluster within a day."""

    MOST_GROUPED = "most_grouped"
    BALANCED = "balanced"
    LEAST_GROUPED = "least_grouped"


class BlockStatus(str, Enum):
    """Date-driven status of a block."""

    PENDING = "pending"
    AVAILABLE = "available"
    OVERDUE = "overdue"
    COMPLETED = "completed"


class RescheduleOption(str, Enum):
    """Where a block is being moved to."""

    LATER_TODAY = "later_today"
    TODAY = "today"
    TOMORROW = "tomorrow"
    CUSTOM_TIME = "custom_time"


# =============================================================================
# Records
# =============================================================================


@dataclass
class Subject:
    """A subject the learner studies."""

    id: str
    name: str
    confidence: int
    block_duration_minutes: int
    user_id: str
    icon: str = "book"
    xp: int = 0
    level: int = 1
    created_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValidationError("Subject name cannot be blank")
        if not MIN_CONFIDENCE <= self.confidence <= MAX_CONFIDENCE:
            raise ValidationError(
                f"Confidence must be between {MIN_CONFIDENCE} and {MAX_CONFIDENCE}, got {self.confidence}"
            )
        if self.block_duration_minutes <= 0:
            raise ValidationError("Block duration must be positive")
        if self.xp < 0:
            raise ValidationError("XP cannot be negative")
        if self.level < 1:
            raise ValidationError("Level must be at least 1")

    @property
    def weight(self) -> int:
        """Inverse-confidence allocation weight (10 for confidence 1, 1 for confidence 10)."""
        return (MAX_CONFIDENCE + 1) - self.confidence


@dataclass
class StudyBlock:
    """A single scheduled study session for one subject on one date."""

    id: str
    subject_id: str
    subject_name: str
    block_number: int
    duration_minutes: int
    scheduled_date: date
    user_id: str
    subject_icon: str = "book"
    total_blocks_for_subject: int = 1
    spaced_repetition_interval: int = 1
    is_completed: bool = False
    is_custom_block: bool = False
    completed_at: datetime | None = None
    xp_awarded: int = 0
    sort_order: int = 0
    generation_id: str | None = None
    created_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        if self.duration_minutes <= 0:
            raise ValidationError("Block duration must be positive")


@dataclass
class SchedulePreferences:
    """How many blocks to plan and how to arrange them."""

    user_id: str
    schedule_horizon_days: int = 21
    blocks_per_weekday: int = 3
    blocks_per_weekend: int = 2
    default_block_duration_minutes: int = 60
    subject_grouping: SubjectGrouping = SubjectGrouping.BALANCED

    def __post_init__(self) -> None:
        self.subject_grouping = SubjectGrouping(self.subject_grouping)
        if not MIN_HORIZON_DAYS <= self.schedule_horizon_days <= MAX_HORIZON_DAYS:
            raise ValidationError(
                f"Schedule horizon must be between {MIN_HORIZON_DAYS} and {MAX_HORIZON_DAYS} days"
            )
        if self.blocks_per_weekday < 1:
            raise ValidationError("Blocks per weekday must be at least 1")
        if self.blocks_per_weekend < 0:
            raise ValidationError("Blocks per weekend cannot be negative")
        if self.default_block_duration_minutes <= 0:
            raise ValidationError("Block duration must be positive")

    @classmethod
    def from_weeks(
        cls,
        user_id: str,
        schedule_horizon_weeks: int,
        blocks_per_weekday: int,
        blocks_per_weekend: int,
        default_block_duration_minutes: int,
        subject_grouping: SubjectGrouping = SubjectGrouping.BALANCED,
    ) -> SchedulePreferences:
        return cls(
            user_id=user_id,
            schedule_horizon_days=schedule_horizon_weeks * 7,
            blocks_per_weekday=blocks_per_weekday,
            blocks_per_weekend=blocks_per_weekend,
            default_block_duration_minutes=default_block_duration_minutes,
            subject_grouping=subject_grouping,
        )

    @property
    def schedule_horizon_weeks(self) -> int:
        return (self.schedule_horizon_days + 6) // 7

    @property
    def weekday_minutes(self) -> int:
        return self.blocks_per_weekday * self.default_block_duration_minutes

    @property
    def weekend_minutes(self) -> int:
        return self.blocks_per_weekend * self.default_block_duration_minutes


@dataclass
class LevelPrediction:
    """Where a subject's level lands if every scheduled block is completed."""

    subject_id: str
    subject_name: str
    current_xp: int
    current_level: int
    xp_gain: int
    predicted_xp: int
    predicted_level: int
    predicted_level_progress: float = 0.0

    @property
    def levels_gained(self) -> int:
        return self.predicted_level - self.current_level


@dataclass
class SchedulingResult:
    """Summary of one generation run."""

    total_blocks: int
    schedule_horizon: int
    subject_distribution: dict[str, int] = field(default_factory=dict)
    generation_id: str | None = None
    level_predictions: dict[str, LevelPrediction] = field(default_factory=dict)

    @property
    def average_blocks_per_day(self) -> float:
        if self.schedule_horizon <= 0:
            return 0.0
        return self.total_blocks / self.schedule_horizon


@dataclass
class StreakSummary:
    """Current and longest run of study days."""

    current: int = 0
    longest: int = 0
    last_study_date: date | None = None


def is_weekend(day: date) -> bool:
    """Saturday and Sunday are weekend days."""
    return day.weekday() >= 5
