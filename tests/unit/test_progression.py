"""
Unit tests for XP grants and level curves.
"""

from datetime import datetime

import pytest

from studyblocks.config import Settings
from studyblocks.progression.xp import (
    GLOBAL_CURVE,
    SUBJECT_CURVE,
    LevelCurve,
    ProgressionConfig,
    ProgressionEngine,
)
from studyblocks.scheduling.lifecycle import CompletionStateMachine


@pytest.fixture
def engine():
    return ProgressionEngine()


class TestGrant:
    def test_confident_subject_gets_base_rate(self, engine, make_subject, make_block, today):
        subject = make_subject("Math", 10)
        assert engine.xp_for_block(subject, make_block(today)) == 100

    def test_low_confidence_bonus(self, engine, make_subject, make_block, today):
        assert engine.xp_for_block(make_subject("Math", 1), make_block(today)) == 145
        assert engine.xp_for_block(make_subject("Math", 2), make_block(today)) == 140

    def test_scales_with_duration(self, engine, make_subject, make_block, today):
        subject = make_subject("Math", 5)
        assert engine.xp_for_block(subject, make_block(today, duration_minutes=30)) == 63

    def test_custom_block_flat_rate(self, engine, make_subject, make_block, today):
        subject = make_subject("Math", 1)
        assert engine.xp_for_block(subject, make_block(today, is_custom_block=True)) == 100

    def test_uncomplete_reverses_recorded_grant(self, engine, make_block, today):
        block = make_block(today, is_completed=True, xp_awarded=87)
        assert engine.on_uncomplete(block) == -87

    def test_config_from_settings(self):
        config = ProgressionConfig.from_settings(Settings(base_xp_per_hour=50))
        assert config.base_xp_per_hour == 50
        assert config.subject_curve == SUBJECT_CURVE
        assert config.global_curve == GLOBAL_CURVE


class TestRoundTrip:
    def test_complete_then_uncomplete_restores_xp_and_level(self, engine, make_subject, make_block, today):
        subject = make_subject("Math", 2, xp=150, level=SUBJECT_CURVE.level(150))
        block = make_block(today)

        grant = engine.on_complete(subject, block)
        done = CompletionStateMachine.complete(block, datetime(2024, 1, 10, 12, 0), xp_awarded=grant)
        after = engine.apply(subject, grant)
        assert after.xp == 150 + grant
        assert after.level >= subject.level

        restored = engine.apply(after, engine.on_uncomplete(done))
        assert restored.xp == subject.xp
        assert restored.level == subject.level

    def test_apply_floors_at_zero(self, engine, make_subject):
        subject = make_subject("Math", 5, xp=20)
        assert engine.apply(subject, -100).xp == 0
        assert engine.apply(subject, -100).level == 1


class TestLevelCurve:
    def test_level_one_starts_at_zero(self):
        assert SUBJECT_CURVE.xp_for_level(1) == 0
        assert SUBJECT_CURVE.level(0) == 1

    def test_thresholds(self):
        threshold = SUBJECT_CURVE.xp_for_level(2)
        assert SUBJECT_CURVE.level(threshold - 1) == 1
        assert SUBJECT_CURVE.level(threshold) == 2

    def test_thresholds_strictly_increase(self):
        for curve in (SUBJECT_CURVE, GLOBAL_CURVE):
            values = [curve.xp_for_level(level) for level in range(1, 30)]
            assert values == sorted(values)
            assert len(set(values)) == len(values)

    def test_global_curve_is_steeper(self):
        for level in range(2, 10):
            assert GLOBAL_CURVE.xp_for_level(level) > SUBJECT_CURVE.xp_for_level(level)

    @pytest.mark.parametrize("xp", [0, 1, 99, 161, 162, 500, 1234, 10_000])
    def test_progress_in_unit_interval(self, xp):
        assert 0.0 <= SUBJECT_CURVE.level_progress(xp) < 1.0

    def test_level_info(self, engine):
        info = engine.level_info(SUBJECT_CURVE.xp_for_level(3))
        assert info.level == 3
        assert info.progress == 0.0
        assert info.next_level_xp == SUBJECT_CURVE.xp_for_level(4)

    def test_custom_curve(self):
        curve = LevelCurve(base=10, growth=1, exponent=1)
        assert [curve.xp_for_level(level) for level in (1, 2, 3)] == [0, 10, 20]
        assert curve.xp_to_next_level(15) == 5

    def test_global_level(self, engine, make_subject):
        subjects = [make_subject("Math", 2, xp=300), make_subject("Art", 8, xp=200)]
        total = engine.global_xp(subjects)
        assert total == 500
        assert engine.global_level(total) == GLOBAL_CURVE.level(500)
