"""Study streaks from a set of completion dates."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable

from studyblocks.core.models import StreakSummary

ONE_DAY = timedelta(days=1)


class StreakCalculator:
    """
    Current and longest runs of consecutive study days.

    The current streak counts back from today. A day without study yet
    does not break it: if today is missing but yesterday is present, the
    streak is still alive and counts back from yesterday (grace day).
    """

    @staticmethod
    def longest(dates: Iterable[date]) -> int:
        ordered = sorted(set(dates))
        best = 0
        run = 0
        previous: date | None = None
        for day in ordered:
            run = run + 1 if previous is not None and day - previous == ONE_DAY else 1
            best = max(best, run)
            previous = day
        return best

    @staticmethod
    def current(dates: Iterable[date], today: date) -> int:
        present = set(dates)
        if today in present:
            cursor = today
        elif today - ONE_DAY in present:
            cursor = today - ONE_DAY
        else:
            return 0

        count = 0
        while cursor in present:
            count += 1
            cursor -= ONE_DAY
        return count

    @classmethod
    def streak(cls, completion_dates: Iterable[date], today: date) -> StreakSummary:
        dates = set(completion_dates)
        return StreakSummary(
            current=cls.current(dates, today),
            longest=cls.longest(dates),
            last_study_date=max(dates) if dates else None,
        )
