"""
RuleKeeper Database Swapper

Replaces the live ruleset tables with the contents of a verified staged
database in a single transaction, then reloads the dependent index.
"""

import logging
import sqlite3
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Protocol, Tuple, Union

from sqlalchemy import create_engine, delete, insert, inspect, text
from sqlalchemy.exc import SQLAlchemyError

from ..storage.database import DatabaseManager
from ..storage.models import Ruleset, Target
from .errors import SwapFailure

logger = logging.getLogger(__name__)

RULESET_VERSION_KEY = "ruleset_version"

STAGED_TABLES = ("rulesets", "targets")


class ReloadableIndex(Protocol):
    def reload(self) -> None: ...


class SwapState(str, Enum):
    IDLE = "idle"
    STAGING_OPEN = "staging-open"
    CONTENTS_REPLACING = "contents-replacing"
    INDEX_RELOADING = "index-reloading"
    CLEANUP = "cleanup"
    ABORTED = "aborted"


class DatabaseSwapper:
    """
    Applies a staged ruleset database to the live one.

    The live tables and the installed ruleset version change together or
    not at all.
    """

    def __init__(self, db_manager: DatabaseManager, index: ReloadableIndex):
        self.db_manager = db_manager
        self.index = index
        self.state = SwapState.IDLE
        self.transitions: List[SwapState] = []

    def _enter(self, state: SwapState):
        self.state = state
        self.transitions.append(state)
        logger.debug(f"Swap state: {state.value}")

    def apply(self, staged_path: Union[str, Path], new_version: str) -> Dict[str, Any]:
        """
        Swap in the staged database.

        Args:
            staged_path: Integrity-verified staged database file
            new_version: Ruleset version recorded on commit

        Returns:
            Counts of rows copied

        Raises:
            SwapFailure: The live database was left in its previous state,
                or (for index reload failures) already holds the new one
        """
        staged_path = Path(staged_path)
        self.transitions = []

        try:
            self._enter(SwapState.STAGING_OPEN)
            rulesets, targets = self._read_staged(staged_path, new_version)

            self._enter(SwapState.CONTENTS_REPLACING)
            self._replace_contents(rulesets, targets, new_version)
            logger.info(
                f"Replaced live rulesets with {len(rulesets)} rulesets "
                f"and {len(targets)} targets (version {new_version})"
            )

            self._enter(SwapState.INDEX_RELOADING)
            try:
                self.index.reload()
            except Exception as e:
                raise SwapFailure(
                    f"Ruleset {new_version} committed but index reload failed: {e}",
                    manifest_version=new_version,
                )

            self._enter(SwapState.CLEANUP)
            staged_path.unlink(missing_ok=True)
            logger.info("Removed staged database file")

        except SwapFailure:
            self._enter(SwapState.ABORTED)
            raise
        finally:
            self.state = SwapState.IDLE

        return {"rulesets": len(rulesets), "targets": len(targets)}

    def _read_staged(
        self,
        staged_path: Path,
        new_version: str,
    ) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
        """Read every ruleset and target row from the staged file."""
        if not staged_path.is_file():
            raise SwapFailure(f"Staged database missing: {staged_path}", manifest_version=new_version)

        # as_uri() percent-encodes "#", "?" and "%" in the path
        staged_uri = f"{staged_path.resolve().as_uri()}?mode=ro"
        engine = create_engine(
            "sqlite://",
            creator=lambda: sqlite3.connect(staged_uri, uri=True, check_same_thread=False),
        )
        try:
            with engine.connect() as conn:
                tables = set(inspect(conn).get_table_names())
                missing = [name for name in STAGED_TABLES if name not in tables]
                if missing:
                    raise SwapFailure(
                        f"Staged database lacks tables: {missing}",
                        manifest_version=new_version,
                    )

                rulesets = [
                    {"id": row[0], "contents": row[1]}
                    for row in conn.execute(text("SELECT rowid, contents FROM rulesets"))
                ]
                targets = [
                    {"host": row[0], "ruleset_id": row[1]}
                    for row in conn.execute(text("SELECT host, ruleset_id FROM targets"))
                ]
        except SQLAlchemyError as e:
            raise SwapFailure(f"Could not read staged database: {e}", manifest_version=new_version)
        finally:
            engine.dispose()

        if not rulesets:
            raise SwapFailure("Staged database contains no rulesets", manifest_version=new_version)

        return rulesets, targets

    def _replace_contents(
        self,
        rulesets: List[Dict[str, Any]],
        targets: List[Dict[str, Any]],
        new_version: str,
    ):
        """Replace live rows and advance the installed version in one transaction."""
        try:
            with self.db_manager.engine.begin() as conn:
                conn.execute(delete(Target.__table__))
                conn.execute(delete(Ruleset.__table__))
                conn.execute(insert(Ruleset.__table__), rulesets)
                if targets:
                    conn.execute(insert(Target.__table__), targets)
                self.db_manager.set_state(RULESET_VERSION_KEY, new_version, connection=conn)
        except SQLAlchemyError as e:
            raise SwapFailure(
                f"Replacing live rulesets failed, transaction rolled back: {e}",
                manifest_version=new_version,
            )
