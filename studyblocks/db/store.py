"""
Block store.

``StudyStore`` is the narrow storage interface the orchestrator talks to.
``SqlStudyStore`` implements it on SQLAlchemy (SQLite by default), running
every mutating operation inside a single transaction so a batch is either
fully applied or not at all.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Generator
from contextlib import contextmanager
from datetime import date, datetime

from loguru import logger
from sqlalchemy import and_, delete, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from studyblocks.config import get_settings
from studyblocks.core.models import SchedulePreferences, StudyBlock, Subject, SubjectGrouping
from studyblocks.db.database import create_db_engine, init_db, make_session_factory, session_scope
from studyblocks.db.models import SchedulePreferencesRow, StudyBlockRow, SubjectRow
from studyblocks.exceptions import (
    ConcurrencyConflict,
    InvalidTransition,
    NotFound,
    StorageError,
    StudyBlocksError,
)

# =============================================================================
# Interface
# =============================================================================


class StudyStore(ABC):
    """Durable storage for subjects, preferences and blocks."""

    @abstractmethod
    def load_subjects(self, user_id: str) -> list[Subject]:
        """Subjects of a user in creation order."""

    @abstractmethod
    def load_subject(self, subject_id: str) -> Subject | None: ...

    @abstractmethod
    def save_subject(self, subject: Subject) -> None: ...

    @abstractmethod
    def delete_subject(self, subject_id: str) -> int:
        """Delete a subject and all of its blocks. Returns the number of blocks removed."""

    @abstractmethod
    def load_preferences(self, user_id: str) -> SchedulePreferences | None: ...

    @abstractmethod
    def save_preferences(self, prefs: SchedulePreferences) -> None: ...

    @abstractmethod
    def load_blocks(
        self, user_id: str, start: date | None = None, end: date | None = None
    ) -> list[StudyBlock]:
        """Blocks in ``[start, end]`` (either bound optional), by date then in-day order."""

    @abstractmethod
    def load_block(self, block_id: str) -> StudyBlock | None: ...

    @abstractmethod
    def load_completion_history(self, user_id: str) -> set[date]:
        """Dates on which at least one block was completed."""

    @abstractmethod
    def replace_future_incomplete_blocks(
        self,
        user_id: str,
        blocks: list[StudyBlock],
        today: date,
        preferences: SchedulePreferences | None = None,
    ) -> int:
        """
        Atomically delete the user's blocks dated today or later that are
        neither completed nor custom, insert ``blocks``, and optionally save
        ``preferences``. Returns the number of blocks deleted.
        """

    @abstractmethod
    def insert_block(self, block: StudyBlock) -> None: ...

    @abstractmethod
    def update_block(self, block: StudyBlock) -> None: ...

    @abstractmethod
    def update_blocks(self, blocks: list[StudyBlock]) -> None:
        """Overwrite several existing blocks in one transaction (NotFound rolls back all)."""

    @abstractmethod
    def set_block_completion(
        self,
        block_id: str,
        completed: bool,
        completed_at: datetime | None = None,
        xp_awarded: int = 0,
        xp_delta: int = 0,
        level_of: Callable[[int], int] | None = None,
    ) -> tuple[StudyBlock, Subject]:
        """
        Flip a block's completion flag and apply ``xp_delta`` to its subject
        in one transaction.

        Raises:
            InvalidTransition: The block already holds ``completed``
        """

    @abstractmethod
    def update_subject_xp(
        self, subject_id: str, delta: int, level_of: Callable[[int], int] | None = None
    ) -> Subject:
        """Add ``delta`` to a subject's XP (floored at zero), recomputing the level with ``level_of``."""


# =============================================================================
# Row conversion
# =============================================================================


def _subject_from_row(row: SubjectRow) -> Subject:
    return Subject(
        id=row.id,
        name=row.name,
        icon=row.icon,
        confidence=row.confidence,
        block_duration_minutes=row.block_duration_minutes,
        user_id=row.user_id,
        xp=row.xp,
        level=row.level,
        created_at=row.created_at,
    )


def _block_from_row(row: StudyBlockRow) -> StudyBlock:
    return StudyBlock(
        id=row.id,
        subject_id=row.subject_id,
        subject_name=row.subject_name,
        subject_icon=row.subject_icon,
        block_number=row.block_number,
        total_blocks_for_subject=row.total_blocks_for_subject,
        spaced_repetition_interval=row.spaced_repetition_interval,
        duration_minutes=row.duration_minutes,
        scheduled_date=row.scheduled_date,
        user_id=row.user_id,
        is_completed=row.is_completed,
        is_custom_block=row.is_custom_block,
        completed_at=row.completed_at,
        xp_awarded=row.xp_awarded,
        sort_order=row.sort_order,
        generation_id=row.generation_id,
        created_at=row.created_at,
    )


def _block_to_row(block: StudyBlock) -> StudyBlockRow:
    return StudyBlockRow(
        id=block.id,
        user_id=block.user_id,
        subject_id=block.subject_id,
        subject_name=block.subject_name,
        subject_icon=block.subject_icon,
        block_number=block.block_number,
        total_blocks_for_subject=block.total_blocks_for_subject,
        spaced_repetition_interval=block.spaced_repetition_interval,
        duration_minutes=block.duration_minutes,
        scheduled_date=block.scheduled_date,
        sort_order=block.sort_order,
        is_completed=block.is_completed,
        is_custom_block=block.is_custom_block,
        completed_at=block.completed_at,
        xp_awarded=block.xp_awarded,
        generation_id=block.generation_id,
        created_at=block.created_at,
    )


def _prefs_from_row(row: SchedulePreferencesRow) -> SchedulePreferences:
    return SchedulePreferences(
        user_id=row.user_id,
        schedule_horizon_days=row.schedule_horizon_days,
        blocks_per_weekday=row.blocks_per_weekday,
        blocks_per_weekend=row.blocks_per_weekend,
        default_block_duration_minutes=row.default_block_duration_minutes,
        subject_grouping=SubjectGrouping(row.subject_grouping),
    )


def _prefs_to_row(prefs: SchedulePreferences) -> SchedulePreferencesRow:
    return SchedulePreferencesRow(
        user_id=prefs.user_id,
        schedule_horizon_days=prefs.schedule_horizon_days,
        blocks_per_weekday=prefs.blocks_per_weekday,
        blocks_per_weekend=prefs.blocks_per_weekend,
        default_block_duration_minutes=prefs.default_block_duration_minutes,
        subject_grouping=SubjectGrouping(prefs.subject_grouping).value,
    )


# =============================================================================
# SQLAlchemy implementation
# =============================================================================


class SqlStudyStore(StudyStore):
    """
    SQLAlchemy-backed store.

    Handles:
    - Subjects and their XP ledger
    - Schedule preferences per user
    - Study blocks, including atomic schedule replacement
    """

    def __init__(self, database_url: str | None = None, echo: bool | None = None):
        """
        Initialize the store and create missing tables.

        Args:
            database_url: SQLAlchemy URL (defaults to settings.database_url)
            echo: Echo SQL (defaults to settings.database_echo)
        """
        settings = get_settings()
        self.database_url = database_url or settings.database_url
        self.engine = create_db_engine(
            self.database_url,
            echo=settings.database_echo if echo is None else echo,
        )
        self._session_factory = make_session_factory(self.engine)
        init_db(self.engine)

        logger.info(f"SqlStudyStore initialized at {self.database_url}")

    @contextmanager
    def _transaction(self) -> Generator[Session, None, None]:
        """Session scope that maps driver failures onto the core's error types."""
        try:
            with session_scope(self._session_factory) as session:
                yield session
        except StudyBlocksError:
            raise
        except OperationalError as e:
            if "locked" in str(e).lower():
                raise ConcurrencyConflict(f"Database is busy: {e}") from e
            raise StorageError(str(e)) from e
        except SQLAlchemyError as e:
            raise StorageError(str(e)) from e

    def close(self) -> None:
        self.engine.dispose()

    # =========================================================================
    # Subjects
    # =========================================================================

    def load_subjects(self, user_id: str) -> list[Subject]:
        with self._transaction() as session:
            rows = session.scalars(
                select(SubjectRow)
                .where(SubjectRow.user_id == user_id)
                .order_by(SubjectRow.created_at, SubjectRow.id)
            ).all()
            return [_subject_from_row(row) for row in rows]

    def load_subject(self, subject_id: str) -> Subject | None:
        with self._transaction() as session:
            row = session.get(SubjectRow, subject_id)
            return _subject_from_row(row) if row else None

    def save_subject(self, subject: Subject) -> None:
        with self._transaction() as session:
            session.merge(
                SubjectRow(
                    id=subject.id,
                    user_id=subject.user_id,
                    name=subject.name,
                    icon=subject.icon,
                    confidence=subject.confidence,
                    block_duration_minutes=subject.block_duration_minutes,
                    xp=subject.xp,
                    level=subject.level,
                    created_at=subject.created_at,
                )
            )

    def delete_subject(self, subject_id: str) -> int:
        with self._transaction() as session:
            if session.get(SubjectRow, subject_id) is None:
                raise NotFound("subject", subject_id)
            result = session.execute(delete(StudyBlockRow).where(StudyBlockRow.subject_id == subject_id))
            session.execute(delete(SubjectRow).where(SubjectRow.id == subject_id))
            removed = result.rowcount or 0
        logger.info(f"Deleted subject {subject_id} and {removed} blocks")
        return removed

    # =========================================================================
    # Preferences
    # =========================================================================

    def load_preferences(self, user_id: str) -> SchedulePreferences | None:
        with self._transaction() as session:
            row = session.get(SchedulePreferencesRow, user_id)
            return _prefs_from_row(row) if row else None

    def save_preferences(self, prefs: SchedulePreferences) -> None:
        with self._transaction() as session:
            session.merge(_prefs_to_row(prefs))

    # =========================================================================
    # Blocks
    # =========================================================================

    def load_blocks(
        self, user_id: str, start: date | None = None, end: date | None = None
    ) -> list[StudyBlock]:
        query = select(StudyBlockRow).where(StudyBlockRow.user_id == user_id)
        if start is not None:
            query = query.where(StudyBlockRow.scheduled_date >= start)
        if end is not None:
            query = query.where(StudyBlockRow.scheduled_date <= end)
        query = query.order_by(
            StudyBlockRow.scheduled_date,
            StudyBlockRow.sort_order,
            StudyBlockRow.block_number,
            StudyBlockRow.id,
        )
        with self._transaction() as session:
            return [_block_from_row(row) for row in session.scalars(query).all()]

    def load_block(self, block_id: str) -> StudyBlock | None:
        with self._transaction() as session:
            row = session.get(StudyBlockRow, block_id)
            return _block_from_row(row) if row else None

    def load_completion_history(self, user_id: str) -> set[date]:
        with self._transaction() as session:
            stamps = session.scalars(
                select(StudyBlockRow.completed_at).where(
                    StudyBlockRow.user_id == user_id,
                    StudyBlockRow.is_completed.is_(True),
                    StudyBlockRow.completed_at.is_not(None),
                )
            ).all()
        return {stamp.date() for stamp in stamps}

    def replace_future_incomplete_blocks(
        self,
        user_id: str,
        blocks: list[StudyBlock],
        today: date,
        preferences: SchedulePreferences | None = None,
    ) -> int:
        with self._transaction() as session:
            result = session.execute(
                delete(StudyBlockRow).where(
                    and_(
                        StudyBlockRow.user_id == user_id,
                        StudyBlockRow.scheduled_date >= today,
                        StudyBlockRow.is_completed.is_(False),
                        StudyBlockRow.is_custom_block.is_(False),
                    )
                )
            )
            removed = result.rowcount or 0
            session.add_all(_block_to_row(block) for block in blocks)
            if preferences is not None:
                session.merge(_prefs_to_row(preferences))

        logger.info(f"Replaced {removed} future blocks with {len(blocks)} new blocks for {user_id}")
        return removed

    def insert_block(self, block: StudyBlock) -> None:
        with self._transaction() as session:
            session.add(_block_to_row(block))

    def update_block(self, block: StudyBlock) -> None:
        with self._transaction() as session:
            if session.get(StudyBlockRow, block.id) is None:
                raise NotFound("block", block.id)
            session.merge(_block_to_row(block))

    def update_blocks(self, blocks: list[StudyBlock]) -> None:
        with self._transaction() as session:
            for block in blocks:
                if session.get(StudyBlockRow, block.id) is None:
                    raise NotFound("block", block.id)
                session.merge(_block_to_row(block))

    @staticmethod
    def _apply_xp(
        row: SubjectRow, delta: int, level_of: Callable[[int], int] | None
    ) -> None:
        row.xp = max(0, row.xp + delta)
        if level_of is not None:
            row.level = level_of(row.xp)

    def set_block_completion(
        self,
        block_id: str,
        completed: bool,
        completed_at: datetime | None = None,
        xp_awarded: int = 0,
        xp_delta: int = 0,
        level_of: Callable[[int], int] | None = None,
    ) -> tuple[StudyBlock, Subject]:
        with self._transaction() as session:
            block_row = session.get(StudyBlockRow, block_id)
            if block_row is None:
                raise NotFound("block", block_id)
            if block_row.is_completed == completed:
                action = "complete" if completed else "uncomplete"
                current = "COMPLETED" if block_row.is_completed else "not completed"
                raise InvalidTransition(block_id, current, action)

            subject_row = session.get(SubjectRow, block_row.subject_id)
            if subject_row is None:
                raise NotFound("subject", block_row.subject_id)

            block_row.is_completed = completed
            block_row.completed_at = completed_at if completed else None
            block_row.xp_awarded = xp_awarded if completed else 0
            self._apply_xp(subject_row, xp_delta, level_of)
            session.flush()
            return _block_from_row(block_row), _subject_from_row(subject_row)

    def update_subject_xp(
        self, subject_id: str, delta: int, level_of: Callable[[int], int] | None = None
    ) -> Subject:
        with self._transaction() as session:
            row = session.get(SubjectRow, subject_id)
            if row is None:
                raise NotFound("subject", subject_id)
            self._apply_xp(row, delta, level_of)
            session.flush()
            return _subject_from_row(row)
