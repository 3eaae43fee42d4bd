import base64
import logging
import secrets
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass

from pastebin.domain.errors import ConflictError, NotFoundError, StorageError, ValidationError
from pastebin.infra.db import Database

logger = logging.getLogger(__name__)

MAX_USERNAME_BYTES = 255
TOKEN_BYTES = 24
TOKEN_ATTEMPTS = 5


@dataclass(frozen=True)
class User:
    username: str
    password: str
    token: str | None


def new_token() -> str:
    return base64.urlsafe_b64encode(secrets.token_bytes(TOKEN_BYTES)).decode("ascii")


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        username=str(row["username"]),
        password=str(row["password"]),
        token=row["token"],
    )


class UserRepo:
    def __init__(self, db: Database, token_factory: Callable[[], str] = new_token) -> None:
        self._db = db
        self._token_factory = token_factory

    def create(self, username: str, password_hash: str) -> User:
        if not username or len(username.encode("utf-8")) > MAX_USERNAME_BYTES:
            raise ValidationError("invalid_username")
        try:
            with self._db.writing() as conn:
                conn.execute(
                    "INSERT INTO users(username, password, token) VALUES(?, ?, NULL)",
                    (username, password_hash),
                )
        except sqlite3.IntegrityError as e:
            raise ConflictError("user_exists", f"User already exists: {username}") from e
        return User(username=username, password=password_hash, token=None)

    def get(self, username: str) -> User:
        with self._db.reading() as conn:
            row = conn.execute("SELECT * FROM users WHERE username = ?", (username,)).fetchone()
        if row is None:
            raise NotFoundError("user_not_found", f"User not found: {username}")
        return _row_to_user(row)

    def list_all(self) -> list[User]:
        with self._db.reading() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY username ASC").fetchall()
        return [_row_to_user(r) for r in rows]

    def update_password(self, username: str, password_hash: str) -> None:
        with self._db.writing() as conn:
            cur = conn.execute(
                "UPDATE users SET password = ? WHERE username = ?", (password_hash, username)
            )
            if cur.rowcount == 0:
                raise NotFoundError("user_not_found", f"User not found: {username}")

    def refresh_token(self, username: str) -> str:
        """Replace the user's token with a fresh random one and return it.

        Tokens are unique across users; a collision is retried with a new
        value a few times before giving up.
        """

        for attempt in range(1, TOKEN_ATTEMPTS + 1):
            token = self._token_factory()
            try:
                with self._db.writing() as conn:
                    cur = conn.execute(
                        "UPDATE users SET token = ? WHERE username = ?", (token, username)
                    )
                    if cur.rowcount == 0:
                        raise NotFoundError("user_not_found", f"User not found: {username}")
            except sqlite3.IntegrityError:
                logger.warning("Token collision for %s (attempt %d)", username, attempt)
                continue
            logger.info("Refreshed token for %s", username)
            return token
        raise StorageError("token_collision", f"Could not issue a unique token for {username}")
