"""
XP and level progression.

XP grant per completed block:

    grant = duration_hours * base_xp_per_hour * (1 + low_confidence_bonus * (10 - confidence))

Custom blocks earn the flat hourly rate without the confidence multiplier.
The grant is recorded on the block at completion time, and un-completion
takes back exactly that recorded amount.

Level curve (per subject, and a steeper one for the user's global XP):

    xp_for_level(1) = 0
    xp_for_level(L) = floor(base * ((L - 1) * growth) ** exponent)

Both formulas are tunable policy; the constants live in settings.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace

from studyblocks.config import Settings
from studyblocks.core.models import MAX_CONFIDENCE, StudyBlock, Subject


@dataclass(frozen=True)
class LevelCurve:
    """Cumulative XP thresholds per level."""

    base: float = 100.0
    growth: float = 1.5
    exponent: float = 1.2

    def xp_for_level(self, level: int) -> int:
        """Cumulative XP needed to reach ``level``."""
        if level <= 1:
            return 0
        return int(self.base * ((level - 1) * self.growth) ** self.exponent)

    def level(self, xp: int) -> int:
        """Largest level whose threshold is at most ``xp``."""
        level = 1
        while xp >= self.xp_for_level(level + 1):
            level += 1
        return level

    def level_progress(self, xp: int) -> float:
        """Fraction of the current level's band already earned, in [0, 1)."""
        level = self.level(xp)
        floor_xp = self.xp_for_level(level)
        band = self.xp_for_level(level + 1) - floor_xp
        if band <= 0:
            return 0.0
        return (xp - floor_xp) / band

    def xp_to_next_level(self, xp: int) -> int:
        return self.xp_for_level(self.level(xp) + 1) - xp


SUBJECT_CURVE = LevelCurve(base=100.0, growth=1.5, exponent=1.2)
GLOBAL_CURVE = LevelCurve(base=200.0, growth=1.8, exponent=1.3)


@dataclass(frozen=True)
class LevelInfo:
    """Snapshot of where an XP total sits on a curve."""

    xp: int
    level: int
    current_level_xp: int
    next_level_xp: int
    progress: float


@dataclass
class ProgressionConfig:
    """Tunables for the XP grant and level curves."""

    base_xp_per_hour: int = 100
    low_confidence_bonus: float = 0.05
    subject_curve: LevelCurve = field(default_factory=lambda: SUBJECT_CURVE)
    global_curve: LevelCurve = field(default_factory=lambda: GLOBAL_CURVE)

    @classmethod
    def from_settings(cls, settings: Settings) -> ProgressionConfig:
        values = settings.get_progression_config()
        return cls(
            base_xp_per_hour=values["base_xp_per_hour"],
            low_confidence_bonus=values["low_confidence_bonus"],
            subject_curve=LevelCurve(*values["subject_curve"]),
            global_curve=LevelCurve(*values["global_curve"]),
        )


class ProgressionEngine:
    """Maps completion events to XP deltas and levels."""

    def __init__(self, config: ProgressionConfig | None = None):
        self.config = config or ProgressionConfig()

    # =========================================================================
    # Grants
    # =========================================================================

    def xp_for_block(self, subject: Subject, block: StudyBlock) -> int:
        """XP a block is worth if completed now."""
        hourly = block.duration_minutes / 60 * self.config.base_xp_per_hour
        if not block.is_custom_block:
            hourly *= 1 + self.config.low_confidence_bonus * (MAX_CONFIDENCE - subject.confidence)
        return max(1, math.floor(hourly + 0.5))

    def on_complete(self, subject: Subject, block: StudyBlock) -> int:
        return self.xp_for_block(subject, block)

    @staticmethod
    def on_uncomplete(block: StudyBlock) -> int:
        """Negative of the grant recorded when the block was completed."""
        return -block.xp_awarded

    # =========================================================================
    # Levels
    # =========================================================================

    def apply(self, subject: Subject, delta: int) -> Subject:
        """Subject with ``delta`` applied (XP floored at zero) and its level recomputed."""
        new_xp = max(0, subject.xp + delta)
        return replace(subject, xp=new_xp, level=self.config.subject_curve.level(new_xp))

    def subject_level(self, xp: int) -> int:
        return self.config.subject_curve.level(xp)

    def global_xp(self, subjects: list[Subject]) -> int:
        return sum(subject.xp for subject in subjects)

    def global_level(self, xp: int) -> int:
        return self.config.global_curve.level(xp)

    def level_info(self, xp: int, curve: LevelCurve | None = None) -> LevelInfo:
        curve = curve or self.config.subject_curve
        level = curve.level(xp)
        return LevelInfo(
            xp=xp,
            level=level,
            current_level_xp=curve.xp_for_level(level),
            next_level_xp=curve.xp_for_level(level + 1),
            progress=curve.level_progress(xp),
        )
