"""
Scheduling for StudyBlocks.

Components:
- ScheduleGenerator: confidence-weighted allocation over the horizon
- Grouping policies: within-day ordering (most grouped, balanced, least grouped)
- CompletionStateMachine: date-driven block status and completion rules
- RescheduleEngine: moving a single block
"""

from .generator import ScheduleGenerator, allocate_blocks, enumerate_horizon
from .grouping import Occurrence, order_day
from .lifecycle import CompletionStateMachine
from .reschedule import RescheduleEngine

__all__ = [
    "ScheduleGenerator",
    "allocate_blocks",
    "enumerate_horizon",
    "Occurrence",
    "order_day",
    "CompletionStateMachine",
    "RescheduleEngine",
]
