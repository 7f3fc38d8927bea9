"""
Block lifecycle.

Status is never stored; it is derived from ``is_completed`` and
``scheduled_date`` against the current date:

    PENDING    scheduled in the future
    AVAILABLE  scheduled today, not completed
    OVERDUE    scheduled in the past, not completed
    COMPLETED  completed (terminal unless explicitly reversed)
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime

from studyblocks.core.models import BlockStatus, StudyBlock
from studyblocks.exceptions import InvalidTransition

COMPLETABLE = frozenset({BlockStatus.AVAILABLE, BlockStatus.OVERDUE})


class CompletionStateMachine:
    """Pure transition rules for a single block."""

    @staticmethod
    def status(block: StudyBlock, today: date) -> BlockStatus:
        if block.is_completed:
            return BlockStatus.COMPLETED
        if block.scheduled_date > today:
            return BlockStatus.PENDING
        if block.scheduled_date == today:
            return BlockStatus.AVAILABLE
        return BlockStatus.OVERDUE

    @classmethod
    def can_complete(cls, block: StudyBlock, today: date) -> bool:
        return cls.status(block, today) in COMPLETABLE

    @staticmethod
    def can_reschedule(block: StudyBlock) -> bool:
        return not block.is_completed

    @classmethod
    def complete(cls, block: StudyBlock, now: datetime, xp_awarded: int = 0) -> StudyBlock:
        """
        Mark a block completed.

        Args:
            block: Block to complete
            now: Completion time (its date decides AVAILABLE vs PENDING)
            xp_awarded: Grant recorded on the block so it can be reversed exactly

        Raises:
            InvalidTransition: If the block is PENDING or already COMPLETED
        """
        status = cls.status(block, now.date())
        if status not in COMPLETABLE:
            raise InvalidTransition(block.id, status.name, "complete")
        return replace(block, is_completed=True, completed_at=now, xp_awarded=xp_awarded)

    @staticmethod
    def uncomplete(block: StudyBlock) -> StudyBlock:
        """
        Reverse a completion.

        Raises:
            InvalidTransition: If the block is not completed
        """
        if not block.is_completed:
            raise InvalidTransition(block.id, "not completed", "uncomplete")
        return replace(block, is_completed=False, completed_at=None, xp_awarded=0)
