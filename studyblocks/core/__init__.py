from .models import (
    BlockStatus,
    RescheduleOption,
    SchedulePreferences,
    SchedulingResult,
    StreakSummary,
    StudyBlock,
    Subject,
    SubjectGrouping,
    is_weekend,
)

__all__ = [
    "BlockStatus",
    "RescheduleOption",
    "SchedulePreferences",
    "SchedulingResult",
    "StreakSummary",
    "StudyBlock",
    "Subject",
    "SubjectGrouping",
    "is_weekend",
]
