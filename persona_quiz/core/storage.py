import logging
import threading
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .constants import DEFAULT_DB_PATH, STORAGE_KEY
from .database_models import Base, QuizStateTable
from .logging import log_event, span
from .models import SessionState
from .state_snapshot import SnapshotError, dump_snapshot, load_snapshot
from .storage_interface import StateStore


class StorageError(Exception):
    """Base exception for storage operations."""

    pass


class StateSaveError(StorageError):
    """Raised when the snapshot cannot be written."""

    pass


class StateLoadError(StorageError):
    """Raised when the database cannot be read at all (as opposed to holding a bad document)."""

    pass


class StateClearError(StorageError):
    """Raised when the snapshot cannot be removed."""

    pass


class DatabaseStateStore(StateStore):
    def __init__(self, db_path: str = DEFAULT_DB_PATH, storage_key: str = STORAGE_KEY):
        """Open (and create if needed) the SQLite file holding the snapshot."""
        self.db_path = self._validate_db_path(db_path)
        self.storage_key = storage_key
        self._lock = threading.Lock()

        db_dir = Path(self.db_path).parent
        db_dir.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(
            f"sqlite:///{self.db_path}",
            echo=False,
            pool_pre_ping=True,
        )
        self.SessionLocal = sessionmaker(bind=self.engine)

        Base.metadata.create_all(bind=self.engine)

    def _validate_db_path(self, db_path: str) -> str:
        """Validate database path to prevent path traversal attacks."""
        try:
            resolved = Path(db_path).resolve()
            current_dir = Path.cwd().resolve()

            if not resolved.is_relative_to(current_dir):
                raise ValueError("Database path outside working directory not allowed")

            return str(resolved)
        except (ValueError, OSError) as e:
            raise ValueError(f"Invalid database path: {e}")

    def load(self) -> SessionState | None:
        """Load the snapshot. A document that cannot be decoded counts as absent."""
        with span(
            "db.load_state",
            component="db",
            operation="load_state",
            storage_key=self.storage_key,
            db_path=Path(self.db_path).name,
        ):
            with self.SessionLocal() as db_session:
                try:
                    row = db_session.get(QuizStateTable, self.storage_key)
                    payload = row.payload if row else None
                except SQLAlchemyError as e:
                    raise StateLoadError(f"Failed to read {self.storage_key}: {str(e)}") from e

        if payload is None:
            return None

        try:
            return load_snapshot(payload)
        except SnapshotError as e:
            log_event(
                "state.load_failed",
                component="db",
                operation="load_state",
                storage_key=self.storage_key,
                error=str(e),
                level=logging.WARNING,
            )
            return None

    def save(self, state: SessionState) -> None:
        """Overwrite the whole snapshot."""
        document = dump_snapshot(state)
        with span(
            "db.save_state",
            component="db",
            operation="save_state",
            storage_key=self.storage_key,
            flow_step=state.flow_step.value,
            generated=state.generated_count(),
            answers=len(state.answers),
            db_path=Path(self.db_path).name,
        ):
            with self._lock:
                with self.SessionLocal() as db_session:
                    try:
                        db_session.merge(QuizStateTable(storage_key=self.storage_key, payload=document))
                        db_session.commit()
                    except SQLAlchemyError as e:
                        db_session.rollback()
                        raise StateSaveError(f"Failed to save {self.storage_key}: {str(e)}") from e

    def clear(self) -> None:
        with span(
            "db.clear_state",
            component="db",
            operation="clear_state",
            storage_key=self.storage_key,
            db_path=Path(self.db_path).name,
        ):
            with self._lock:
                with self.SessionLocal() as db_session:
                    try:
                        row = db_session.get(QuizStateTable, self.storage_key)
                        if row is not None:
                            db_session.delete(row)
                            db_session.commit()
                    except SQLAlchemyError as e:
                        db_session.rollback()
                        raise StateClearError(f"Failed to clear {self.storage_key}: {str(e)}") from e

    def put_raw(self, document: str) -> None:
        """Write a document verbatim, bypassing encoding. Used to import older snapshots."""
        with self._lock:
            with self.SessionLocal() as db_session:
                db_session.merge(QuizStateTable(storage_key=self.storage_key, payload=document))
                db_session.commit()

    def close(self) -> None:
        self.engine.dispose()
