"""
Progression for StudyBlocks.

Components:
- ProgressionEngine / LevelCurve: XP grants and level thresholds
- StreakCalculator: current and longest study streaks
- CompletionAnalytics: completion, XP and schedule-version summaries
"""

from .analytics import CompletionAnalytics, ScheduleVersion, StudyStats, SubjectProgress, XPDataPoint
from .streaks import StreakCalculator
from .xp import GLOBAL_CURVE, SUBJECT_CURVE, LevelCurve, LevelInfo, ProgressionConfig, ProgressionEngine

__all__ = [
    "CompletionAnalytics",
    "ScheduleVersion",
    "StudyStats",
    "SubjectProgress",
    "XPDataPoint",
    "StreakCalculator",
    "GLOBAL_CURVE",
    "SUBJECT_CURVE",
    "LevelCurve",
    "LevelInfo",
    "ProgressionConfig",
    "ProgressionEngine",
]
