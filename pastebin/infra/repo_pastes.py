import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pastebin.domain.errors import ConflictError, NotFoundError, StorageError
from pastebin.infra.db import Database

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PasteFile:
    hash: str
    name: str


@dataclass(frozen=True)
class Paste:
    id: str
    owner: str
    files: tuple[PasteFile, ...]
    created_at: str = field(default="", compare=False)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class PasteRepo:
    def __init__(self, db: Database) -> None:
        self._db = db

    def put(self, paste: Paste) -> Paste:
        """Insert the paste and all of its files in one transaction.

        File order is stored as the position in `paste.files`. If any insert
        fails nothing of the paste stays visible.
        """

        created_at = paste.created_at or utc_now_iso()
        try:
            with self._db.writing() as conn:
                conn.execute(
                    "INSERT INTO pastes(id, owner, created_at) VALUES(?, ?, ?)",
                    (paste.id, paste.owner, created_at),
                )
                conn.executemany(
                    "INSERT INTO files(paste_id, position, hash, name) VALUES(?, ?, ?, ?)",
                    [(paste.id, pos, f.hash, f.name) for pos, f in enumerate(paste.files)],
                )
        except sqlite3.IntegrityError as e:
            if self.exists(paste.id):
                raise ConflictError("id_conflict", f"Paste id already taken: {paste.id}") from e
            raise StorageError("integrity_failure", str(e)) from e
        logger.info("Stored paste %s for %s (%d files)", paste.id, paste.owner, len(paste.files))
        return Paste(id=paste.id, owner=paste.owner, files=paste.files, created_at=created_at)

    def get(self, paste_id: str) -> Paste:
        with self._db.reading() as conn:
            row = conn.execute("SELECT * FROM pastes WHERE id = ?", (paste_id,)).fetchone()
            if row is None:
                raise NotFoundError("paste_not_found", f"Paste not found: {paste_id}")
            files = conn.execute(
                "SELECT hash, name FROM files WHERE paste_id = ? ORDER BY position ASC",
                (paste_id,),
            ).fetchall()
        return Paste(
            id=str(row["id"]),
            owner=str(row["owner"]),
            files=tuple(PasteFile(hash=str(f["hash"]), name=str(f["name"])) for f in files),
            created_at=str(row["created_at"]),
        )

    def exists(self, paste_id: str) -> bool:
        with self._db.reading() as conn:
            row = conn.execute("SELECT 1 FROM pastes WHERE id = ?", (paste_id,)).fetchone()
        return row is not None

    def list_for_owner(self, owner: str) -> list[str]:
        with self._db.reading() as conn:
            rows = conn.execute(
                "SELECT id FROM pastes WHERE owner = ? ORDER BY created_at DESC, id DESC",
                (owner,),
            ).fetchall()
        return [str(r["id"]) for r in rows]

    def delete(self, paste_id: str) -> None:
        # Blobs are left in place; files rows go with the paste via ON DELETE CASCADE.
        with self._db.writing() as conn:
            cur = conn.execute("DELETE FROM pastes WHERE id = ?", (paste_id,))
            if cur.rowcount == 0:
                raise NotFoundError("paste_not_found", f"Paste not found: {paste_id}")
        logger.info("Deleted paste %s", paste_id)
