import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from pastebin.domain.errors import StorageError
from pastebin.infra.locks import RWLock

logger = logging.getLogger(__name__)


# MIGRATIONS[i] upgrades a database at user_version i to i + 1.
MIGRATIONS: list[str] = [
    """
    CREATE TABLE IF NOT EXISTS users (
      username TEXT PRIMARY KEY CHECK (length(CAST(username AS BLOB)) <= 255),
      password TEXT NOT NULL,
      token TEXT UNIQUE
    );

    CREATE TABLE IF NOT EXISTS pastes (
      id TEXT PRIMARY KEY,
      owner TEXT NOT NULL,
      created_at TEXT NOT NULL,
      FOREIGN KEY (owner) REFERENCES users(username)
    );

    CREATE TABLE IF NOT EXISTS files (
      paste_id TEXT NOT NULL,
      position INTEGER NOT NULL,
      hash TEXT NOT NULL,
      name TEXT NOT NULL CHECK (length(CAST(name AS BLOB)) <= 128),
      PRIMARY KEY (paste_id, position),
      FOREIGN KEY (paste_id) REFERENCES pastes(id) ON DELETE CASCADE
    );

    CREATE INDEX IF NOT EXISTS idx_pastes_owner ON pastes(owner);
    """,
]

SCHEMA_VERSION = len(MIGRATIONS)


@dataclass(frozen=True)
class DbConfig:
    path: Path


class Database:
    """The shared sqlite handle plus the lock that serializes access to it.

    Reads run under the shared side of the lock, writes under the exclusive
    side. Writes commit when the block exits cleanly and roll back otherwise.
    sqlite errors other than integrity violations surface as StorageError;
    IntegrityError is left for the repositories to translate.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn
        self.lock = RWLock()

    @contextmanager
    def reading(self) -> Iterator[sqlite3.Connection]:
        with self.lock.read():
            try:
                yield self.conn
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as e:
                raise StorageError("storage_failure", str(e)) from e

    @contextmanager
    def writing(self) -> Iterator[sqlite3.Connection]:
        with self.lock.write():
            try:
                yield self.conn
                self.conn.commit()
            except BaseException as e:
                self.conn.rollback()
                if isinstance(e, sqlite3.Error) and not isinstance(e, sqlite3.IntegrityError):
                    raise StorageError("storage_failure", str(e)) from e
                raise

    def close(self) -> None:
        with self.lock.write():
            self.conn.close()


def connect(cfg: DbConfig) -> Database:
    cfg.path.parent.mkdir(parents=True, exist_ok=True)
    # One connection shared by FastAPI's threadpool; the RWLock in Database
    # keeps writers exclusive.
    conn = sqlite3.connect(cfg.path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return Database(conn)


def migrate(db: Database) -> None:
    with db.lock.write():
        version = int(db.conn.execute("PRAGMA user_version").fetchone()[0])
        if version > SCHEMA_VERSION:
            raise StorageError(
                "schema_too_new",
                f"database schema version {version} is newer than supported {SCHEMA_VERSION}",
            )
        while version < SCHEMA_VERSION:
            script = MIGRATIONS[version]
            version += 1
            try:
                db.conn.executescript(
                    f"BEGIN;\n{script}\nPRAGMA user_version = {version};\nCOMMIT;"
                )
            except sqlite3.Error as e:
                db.conn.rollback()
                raise StorageError("migration_failed", f"migration to {version} failed: {e}") from e
            logger.info("Migrated database schema to version %d", version)
