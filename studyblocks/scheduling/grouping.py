"""
Within-day ordering policies.

A day's occurrences arrive as (rank, ordinal) pairs where ``rank`` is the
subject's priority (0 = lowest confidence, earliest created). Each policy
returns the same occurrences in study order. Occurrences of one subject
always keep ascending ordinals.

- MOST_GROUPED: one contiguous run per subject, in priority order
- BALANCED: round-robin across subjects in priority order
- LEAST_GROUPED: no two neighbours share a subject whenever that is possible
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Callable

from studyblocks.core.models import SubjectGrouping


@dataclass(frozen=True)
class Occurrence:
    """One planned block of one subject, before it becomes a StudyBlock."""

    rank: int
    ordinal: int


def _buckets(occurrences: list[Occurrence]) -> dict[int, deque[Occurrence]]:
    buckets: dict[int, list[Occurrence]] = {}
    for occ in occurrences:
        buckets.setdefault(occ.rank, []).append(occ)
    return {
        rank: deque(sorted(items, key=lambda o: o.ordinal))
        for rank, items in sorted(buckets.items())
    }


def most_grouped(occurrences: list[Occurrence]) -> list[Occurrence]:
    result: list[Occurrence] = []
    for bucket in _buckets(occurrences).values():
        result.extend(bucket)
    return result


def _round_robin(buckets: dict[int, deque[Occurrence]]) -> list[Occurrence]:
    result: list[Occurrence] = []
    while any(buckets.values()):
        for bucket in buckets.values():
            if bucket:
                result.append(bucket.popleft())
    return result


def balanced(occurrences: list[Occurrence]) -> list[Occurrence]:
    return _round_robin(_buckets(occurrences))


def least_grouped(occurrences: list[Occurrence]) -> list[Occurrence]:
    """
    Maximise adjacent-subject distinctness.

    When the busiest subject fits into every other position, a greedy
    most-remaining-first pick (never repeating the previous subject) yields
    a sequence without neighbours of the same subject. Otherwise repetition
    is unavoidable: every other occurrence becomes a separator and the
    busiest subject is cut into runs of near-equal length between them.
    """
    buckets = _buckets(occurrences)
    total = len(occurrences)
    if total <= 1:
        return list(occurrences)

    dominant = max(buckets, key=lambda rank: (len(buckets[rank]), -rank))
    dominant_count = len(buckets[dominant])

    if dominant_count <= (total + 1) // 2:
        result: list[Occurrence] = []
        previous: int | None = None
        while len(result) < total:
            candidates = [rank for rank, bucket in buckets.items() if bucket and rank != previous]
            if not candidates:
                candidates = [previous]
            pick = max(candidates, key=lambda rank: (len(buckets[rank]), -rank))
            result.append(buckets[pick].popleft())
            previous = pick
        return result

    dominant_bucket = buckets.pop(dominant)
    fillers = _round_robin(buckets)
    runs = len(fillers) + 1
    run_size, longer_runs = divmod(dominant_count, runs)

    result = []
    for index in range(runs):
        for _ in range(run_size + (1 if index < longer_runs else 0)):
            result.append(dominant_bucket.popleft())
        if index < len(fillers):
            result.append(fillers[index])
    return result


_POLICIES: dict[SubjectGrouping, Callable[[list[Occurrence]], list[Occurrence]]] = {
    SubjectGrouping.MOST_GROUPED: most_grouped,
    SubjectGrouping.BALANCED: balanced,
    SubjectGrouping.LEAST_GROUPED: least_grouped,
}


def order_day(occurrences: list[Occurrence], grouping: SubjectGrouping) -> list[Occurrence]:
    """Order one day's occurrences according to ``grouping``."""
    return _POLICIES[SubjectGrouping(grouping)](occurrences)
