"""
RuleKeeper Database Manager

Handles the live ruleset database connection, initialization, and the
small key/value state table.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from sqlalchemy import create_engine, event, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection
from sqlalchemy.orm import sessionmaker, Session

from .models import Base, SystemState, _utcnow
from ..config import get_settings

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Manages the live ruleset database.

    The engine runs in WAL mode so index reloads never observe a swap
    that has not committed yet.
    """

    def __init__(self, db_path: Optional[str] = None, echo: Optional[bool] = None):
        """
        Initialize database manager.

        Args:
            db_path: Path to SQLite database file. If None, uses config.
            echo: Log emitted SQL. If None, uses config.
        """
        settings = get_settings()

        if db_path is None:
            db_path = str(settings.resolve_path(settings.database.path))
        if echo is None:
            echo = settings.database.echo

        self.db_path = db_path
        self._ensure_directory()

        self.engine = create_engine(
            f"sqlite:///{self.db_path}",
            echo=echo,
            connect_args={"check_same_thread": False},
        )

        self.session_factory = sessionmaker(
            self.engine,
            expire_on_commit=False,
        )

        @event.listens_for(self.engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    def _ensure_directory(self):
        """Ensure database directory exists."""
        db_dir = Path(self.db_path).parent
        db_dir.mkdir(parents=True, exist_ok=True)

    def init_db_sync(self):
        """Create tables that do not exist yet."""
        Base.metadata.create_all(self.engine)
        logger.info(f"Database initialized at {self.db_path}")

    def get_sync_session(self) -> Session:
        """Get sync database session."""
        return self.session_factory()

    def get_state(self, key: str, default: Any = None) -> Any:
        """Read a JSON value from the system_state table."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(SystemState.value).where(SystemState.key == key)
            ).first()
        if row is None or row.value is None:
            return default
        return json.loads(row.value)

    def set_state(self, key: str, value: Any, connection: Optional[Connection] = None):
        """
        Upsert a JSON value into the system_state table.

        When a connection is given the write joins its transaction.
        """
        stmt = sqlite_insert(SystemState.__table__).values(
            key=key,
            value=json.dumps(value),
            updated_at=_utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["key"],
            set_={"value": stmt.excluded.value, "updated_at": stmt.excluded.updated_at},
        )
        if connection is not None:
            connection.execute(stmt)
            return
        with self.engine.begin() as conn:
            conn.execute(stmt)

    def close(self):
        """Close database connections."""
        self.engine.dispose()

