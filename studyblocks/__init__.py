"""
StudyBlocks: confidence-weighted study scheduling with XP progression.

Entry point for callers is ScheduleOrchestrator; the engines it composes
are importable on their own and are pure.
"""

from studyblocks.orchestrator import ScheduleOrchestrator

__version__ = "0.1.0"

__all__ = ["ScheduleOrchestrator", "__version__"]
