from .database import create_db_engine, init_db, make_session_factory, session_scope
from .store import SqlStudyStore, StudyStore

__all__ = [
    "create_db_engine",
    "init_db",
    "make_session_factory",
    "session_scope",
    "SqlStudyStore",
    "StudyStore",
]
