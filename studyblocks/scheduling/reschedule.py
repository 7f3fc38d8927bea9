"""
Rescheduling.

Moves one block to another day (or to the end of its own day) without
touching its spacing metadata and without regenerating anything else, and
redistributes missed blocks forward from today on request.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, timedelta
from typing import Iterable

from loguru import logger

from studyblocks.core.models import RescheduleOption, SchedulePreferences, StudyBlock, is_weekend
from studyblocks.exceptions import CannotRescheduleCompleted, ValidationError


class RescheduleEngine:
    """Resolves reschedule options to a date and in-day position."""

    @staticmethod
    def available_options(block: StudyBlock, today: date) -> list[RescheduleOption]:
        """Options that make sense for a block, as offered by the reschedule dialog."""
        if block.is_completed:
            return []
        if block.scheduled_date == today:
            return [RescheduleOption.LATER_TODAY, RescheduleOption.TOMORROW, RescheduleOption.CUSTOM_TIME]
        return [RescheduleOption.TODAY, RescheduleOption.CUSTOM_TIME]

    @staticmethod
    def resolve_target_date(
        block: StudyBlock,
        option: RescheduleOption,
        today: date,
        target_date: date | None = None,
    ) -> date:
        """
        Date a block lands on for ``option``.

        Raises:
            ValidationError: CUSTOM_TIME without a date, or with a date before today
        """
        option = RescheduleOption(option)
        if option is RescheduleOption.LATER_TODAY:
            return block.scheduled_date
        if option is RescheduleOption.TODAY:
            return today
        if option is RescheduleOption.TOMORROW:
            return today + timedelta(days=1)
        if target_date is None:
            raise ValidationError("A custom reschedule needs a target date")
        if target_date < today:
            raise ValidationError(f"Cannot reschedule into the past ({target_date.isoformat()})")
        return target_date

    def reschedule(
        self,
        block: StudyBlock,
        option: RescheduleOption,
        today: date,
        target_date: date | None = None,
        day_blocks: Iterable[StudyBlock] = (),
    ) -> StudyBlock:
        """
        Move a block.

        Only ``scheduled_date`` and ``sort_order`` change. The block is put
        after every other block of its destination day.

        Args:
            block: Block to move
            option: Where to move it
            today: Current date
            target_date: Destination for CUSTOM_TIME
            day_blocks: Blocks already on the destination day

        Raises:
            CannotRescheduleCompleted: If the block is completed
            ValidationError: For an unusable CUSTOM_TIME date
        """
        if block.is_completed:
            raise CannotRescheduleCompleted(block.id)

        new_date = self.resolve_target_date(block, option, today, target_date)
        others = [b.sort_order for b in day_blocks if b.id != block.id]
        new_order = max(others) + 1 if others else 0

        moved = replace(block, scheduled_date=new_date, sort_order=new_order)

        logger.debug(
            f"Rescheduled block {block.id} ({RescheduleOption(option).value}): "
            f"{block.scheduled_date} -> {new_date}, order {block.sort_order} -> {new_order}"
        )

        return moved

    @staticmethod
    def redistribute_missed(
        blocks: Iterable[StudyBlock],
        prefs: SchedulePreferences,
        today: date,
    ) -> list[StudyBlock]:
        """
        Spread overdue and upcoming incomplete blocks forward from ``today``.

        Blocks keep their relative order (date, then in-day order) and fill
        each day up to its weekday/weekend capacity, running past the
        horizon when they don't fit. Completed blocks are never moved, and
        ids and spacing metadata are kept.

        Returns:
            The moved blocks, or an empty list when nothing is overdue
        """
        pending = sorted(
            (b for b in blocks if not b.is_completed),
            key=lambda b: (b.scheduled_date, b.sort_order, b.id),
        )
        if not any(b.scheduled_date < today for b in pending):
            return []

        moved: list[StudyBlock] = []
        day = today
        queue = iter(pending)
        remaining = len(pending)
        while remaining:
            capacity = prefs.blocks_per_weekend if is_weekend(day) else prefs.blocks_per_weekday
            for position in range(min(capacity, remaining)):
                block = next(queue)
                moved.append(replace(block, scheduled_date=day, sort_order=position))
                remaining -= 1
            day += timedelta(days=1)

        horizon_end = today + timedelta(days=prefs.schedule_horizon_days - 1)
        logger.debug(
            f"Redistributed {len(moved)} blocks from {today} to {moved[-1].scheduled_date}"
            + (" (past the horizon)" if moved[-1].scheduled_date > horizon_end else "")
        )
        return moved
