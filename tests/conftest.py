"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from datetime import date, datetime
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from studyblocks.core.models import SchedulePreferences, StudyBlock, Subject  # noqa: E402

# Wednesday
TODAY = date(2024, 1, 10)


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (temporary SQLite database)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def make_subject():
    """Factory for subjects with sequential creation times."""
    counter = {"n": 0}

    def _make(name, confidence, user_id="alice", duration=60, **kwargs):
        counter["n"] += 1
        return Subject(
            id=kwargs.pop("id", f"subj-{name.lower()}"),
            name=name,
            confidence=confidence,
            block_duration_minutes=duration,
            user_id=user_id,
            created_at=kwargs.pop("created_at", datetime(2024, 1, 1, 9, 0, counter["n"])),
            **kwargs,
        )

    return _make


@pytest.fixture
def make_block():
    """Factory for a single block on a given date."""

    def _make(scheduled_date, block_id="blk-1", **kwargs):
        fields = {
            "subject_id": "subj-math",
            "subject_name": "Math",
            "block_number": 1,
            "duration_minutes": 60,
            "user_id": "alice",
        }
        fields.update(kwargs)
        return StudyBlock(id=block_id, scheduled_date=scheduled_date, **fields)

    return _make


@pytest.fixture
def week_prefs():
    """Seven days starting on a Wednesday: 5 weekdays x 3 + 2 weekend days x 2 = 19 slots."""
    return SchedulePreferences(
        user_id="alice",
        schedule_horizon_days=7,
        blocks_per_weekday=3,
        blocks_per_weekend=2,
    )
