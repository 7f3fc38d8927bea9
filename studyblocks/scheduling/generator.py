"""
Confidence-weighted schedule generation.

Builds a day-by-day plan of study blocks over the schedule horizon:

1. Count the horizon's slots (weekday vs weekend capacity)
2. Split the slots across subjects by inverse confidence (weight = 11 - confidence)
3. Spread each subject's blocks evenly over the horizon
4. Order each day's blocks with the learner's grouping policy

The generator is pure: the same subjects, preferences, date and generation
id always produce the same blocks, ids included.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from loguru import logger

from studyblocks.core.models import (
    SchedulePreferences,
    SchedulingResult,
    StudyBlock,
    Subject,
    is_weekend,
)
from studyblocks.exceptions import NoSubjects, ValidationError
from studyblocks.scheduling.grouping import Occurrence, order_day

BLOCK_ID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "studyblocks/study-block")


@dataclass(frozen=True)
class HorizonDay:
    """One calendar day of the horizon and how many blocks it holds."""

    day: date
    slots: int

    @property
    def is_weekend(self) -> bool:
        return is_weekend(self.day)


def enumerate_horizon(prefs: SchedulePreferences, today: date) -> list[HorizonDay]:
    """List ``[today, today + horizon)`` with each day's slot count."""
    days = []
    for offset in range(prefs.schedule_horizon_days):
        day = today + timedelta(days=offset)
        slots = prefs.blocks_per_weekend if is_weekend(day) else prefs.blocks_per_weekday
        days.append(HorizonDay(day=day, slots=slots))
    return days


def priority_order(subjects: list[Subject]) -> list[int]:
    """
    Indices of ``subjects`` from highest to lowest scheduling priority.

    Lowest confidence first; ties keep creation order, which is the order
    the subjects are passed in.
    """
    return sorted(range(len(subjects)), key=lambda i: (subjects[i].confidence, i))


def allocate_blocks(subjects: list[Subject], total_slots: int) -> list[int]:
    """
    Split ``total_slots`` across subjects by inverse confidence.

    Each share is ``round(total_slots * weight / sum(weights))`` with halves
    rounded up. Any shortfall goes to the lowest-confidence subjects first,
    any excess comes off the highest-confidence subjects first, so the
    counts always sum to ``total_slots``. Afterwards every subject left at
    zero borrows one block from the lowest-priority subject that still has
    more than one.

    Returns:
        Block counts aligned with ``subjects``
    """
    if total_slots <= 0:
        return [0] * len(subjects)

    weights = [subject.weight for subject in subjects]
    total_weight = sum(weights)
    counts = [(2 * total_slots * w + total_weight) // (2 * total_weight) for w in weights]

    order = priority_order(subjects)
    difference = total_slots - sum(counts)
    position = 0
    while difference > 0:
        counts[order[position % len(order)]] += 1
        difference -= 1
        position += 1

    reverse = list(reversed(order))
    position = 0
    while difference < 0:
        index = reverse[position % len(reverse)]
        if counts[index] > 0:
            counts[index] -= 1
            difference += 1
        position += 1

    for index in order:
        if counts[index] > 0:
            continue
        donor = next(
            (candidate for candidate in reverse if candidate != index and counts[candidate] > 1),
            None,
        )
        if donor is None:
            break
        counts[donor] -= 1
        counts[index] += 1

    return counts


def spread_occurrences(counts: list[int], ranks: list[int], total_slots: int) -> list[Occurrence]:
    """
    Place each subject's occurrences evenly along the horizon's slots.

    Occurrence ``i`` of a subject with ``n`` blocks targets slot
    ``floor(i * total_slots / n)``. The result is sorted by target slot and
    then by subject rank, which is the order the slots are filled in.
    """
    targeted: list[tuple[int, int, int]] = []
    for index, count in enumerate(counts):
        for i in range(count):
            targeted.append(((i * total_slots) // count, ranks[index], i + 1))
    targeted.sort()
    return [Occurrence(rank=rank, ordinal=ordinal) for _, rank, ordinal in targeted]


def make_block_id(generation_id: str, subject_id: str, ordinal: int) -> str:
    """Stable block id for one subject occurrence within a generation."""
    return str(uuid.uuid5(BLOCK_ID_NAMESPACE, f"{generation_id}:{subject_id}:{ordinal}"))


class ScheduleGenerator:
    """
    Allocates a horizon of daily study slots across subjects.

    Key principles:
    1. Less confident subjects get more blocks
    2. Every day gets exactly its slot count
    3. A subject's blocks are spaced out, not bunched
    4. Same inputs, same schedule
    """

    def generate(
        self,
        subjects: list[Subject],
        prefs: SchedulePreferences,
        today: date,
        generation_id: str | None = None,
        created_at: datetime | None = None,
    ) -> tuple[list[StudyBlock], SchedulingResult]:
        """
        Build the blocks for a new schedule.

        Args:
            subjects: The learner's subjects in creation order
            prefs: Horizon, capacity and grouping preferences
            today: First day of the horizon
            generation_id: Batch id stamped on every block (derived from user and date if None)
            created_at: Creation timestamp stamped on every block (midnight of ``today`` if None)

        Returns:
            (blocks sorted by date and in-day order, SchedulingResult)
        """
        if not subjects:
            raise NoSubjects(prefs.user_id)
        if prefs.blocks_per_weekday < 1:
            raise ValidationError("Blocks per weekday must be at least 1")
        if prefs.blocks_per_weekend < 0:
            raise ValidationError("Blocks per weekend cannot be negative")

        generation_id = generation_id or f"{prefs.user_id}:{today.isoformat()}"
        created_at = created_at or datetime.combine(today, time())

        horizon = enumerate_horizon(prefs, today)
        total_slots = sum(day.slots for day in horizon)

        counts = allocate_blocks(subjects, total_slots)
        order = priority_order(subjects)
        ranks = [0] * len(subjects)
        for rank, index in enumerate(order):
            ranks[index] = rank

        for index in order:
            subject = subjects[index]
            logger.debug(
                f"Allocated {counts[index]} blocks to {subject.name} "
                f"(confidence={subject.confidence}, weight={subject.weight})"
            )

        queue = spread_occurrences(counts, ranks, total_slots)
        by_rank = {ranks[index]: subjects[index] for index in range(len(subjects))}
        totals = {ranks[index]: counts[index] for index in range(len(subjects))}

        blocks: list[StudyBlock] = []
        cursor = 0
        for horizon_day in horizon:
            todays = queue[cursor : cursor + horizon_day.slots]
            cursor += horizon_day.slots
            for position, occ in enumerate(order_day(todays, prefs.subject_grouping)):
                subject = by_rank[occ.rank]
                blocks.append(
                    StudyBlock(
                        id=make_block_id(generation_id, subject.id, occ.ordinal),
                        subject_id=subject.id,
                        subject_name=subject.name,
                        subject_icon=subject.icon,
                        block_number=occ.ordinal,
                        total_blocks_for_subject=totals[occ.rank],
                        spaced_repetition_interval=occ.ordinal,
                        duration_minutes=subject.block_duration_minutes
                        or prefs.default_block_duration_minutes,
                        scheduled_date=horizon_day.day,
                        user_id=prefs.user_id,
                        sort_order=position,
                        generation_id=generation_id,
                        created_at=created_at,
                    )
                )

        distribution: dict[str, int] = {}
        for block in blocks:
            distribution[block.subject_name] = distribution.get(block.subject_name, 0) + 1

        result = SchedulingResult(
            total_blocks=len(blocks),
            schedule_horizon=prefs.schedule_horizon_days,
            subject_distribution=distribution,
            generation_id=generation_id,
        )

        logger.info(
            f"Generated {result.total_blocks} blocks over {prefs.schedule_horizon_days} days "
            f"for {len(subjects)} subjects ({prefs.subject_grouping.value})"
        )

        return blocks, result
