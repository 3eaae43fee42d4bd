import sqlite3

import pytest

from pastebin.domain.errors import ConflictError, NotFoundError, StorageError, ValidationError
from pastebin.infra.db import SCHEMA_VERSION, DbConfig, connect, migrate
from pastebin.infra.repo_pastes import Paste, PasteFile, PasteRepo
from pastebin.infra.repo_users import UserRepo


def _paste(paste_id: str = "AAAAAA", owner: str = "alice") -> Paste:
    return Paste(
        id=paste_id,
        owner=owner,
        files=(PasteFile("h2", "b.txt"), PasteFile("h1", "a.txt"), PasteFile("h1", "c.txt")),
    )


def _count_files(db, paste_id: str) -> int:
    return db.conn.execute("SELECT COUNT(*) FROM files WHERE paste_id = ?", (paste_id,)).fetchone()[0]


def test_migrate_sets_schema_version(db) -> None:
    assert db.conn.execute("PRAGMA user_version").fetchone()[0] == SCHEMA_VERSION
    # Running again is a no-op.
    migrate(db)
    assert db.conn.execute("PRAGMA user_version").fetchone()[0] == SCHEMA_VERSION


def test_migrate_refuses_newer_schema(tmp_path) -> None:
    path = tmp_path / "future.sqlite3"
    raw = sqlite3.connect(path)
    raw.execute(f"PRAGMA user_version = {SCHEMA_VERSION + 1}")
    raw.close()

    db = connect(DbConfig(path=path))
    with pytest.raises(StorageError) as exc:
        migrate(db)
    assert exc.value.code == "schema_too_new"
    db.close()


def test_put_and_get_preserve_file_order(db) -> None:
    UserRepo(db).create("alice", "hash")
    repo = PasteRepo(db)

    stored = repo.put(_paste())
    loaded = repo.get("AAAAAA")

    assert loaded == _paste()
    assert [f.name for f in loaded.files] == ["b.txt", "a.txt", "c.txt"]
    assert loaded.created_at == stored.created_at != ""


def test_get_unknown_paste(db) -> None:
    with pytest.raises(NotFoundError):
        PasteRepo(db).get("nope00")


def test_duplicate_id_is_a_conflict(db) -> None:
    UserRepo(db).create("alice", "hash")
    UserRepo(db).create("bob", "hash")
    repo = PasteRepo(db)
    repo.put(_paste())

    with pytest.raises(ConflictError):
        repo.put(Paste(id="AAAAAA", owner="bob", files=(PasteFile("x", "x"),)))
    assert repo.get("AAAAAA").owner == "alice"


def test_failed_file_insert_rolls_back_whole_paste(db) -> None:
    UserRepo(db).create("alice", "hash")
    repo = PasteRepo(db)
    bad = Paste(id="BBBBBB", owner="alice", files=(PasteFile("h", "ok"), PasteFile("h", "x" * 129)))

    with pytest.raises(StorageError):
        repo.put(bad)
    assert not repo.exists("BBBBBB")
    assert _count_files(db, "BBBBBB") == 0


def test_unknown_owner_is_rejected(db) -> None:
    with pytest.raises(StorageError):
        PasteRepo(db).put(_paste(owner="ghost"))
    assert not PasteRepo(db).exists("AAAAAA")


def test_delete_cascades_to_files(db) -> None:
    UserRepo(db).create("alice", "hash")
    repo = PasteRepo(db)
    repo.put(_paste())
    assert _count_files(db, "AAAAAA") == 3

    repo.delete("AAAAAA")

    assert not repo.exists("AAAAAA")
    assert _count_files(db, "AAAAAA") == 0
    with pytest.raises(NotFoundError):
        repo.delete("AAAAAA")


def test_list_for_owner(db) -> None:
    UserRepo(db).create("alice", "hash")
    UserRepo(db).create("bob", "hash")
    repo = PasteRepo(db)
    repo.put(_paste("AAAAAA"))
    repo.put(_paste("BBBBBB", owner="bob"))

    assert repo.list_for_owner("alice") == ["AAAAAA"]
    assert repo.list_for_owner("carol") == []


def test_user_lifecycle(db) -> None:
    users = UserRepo(db)
    users.create("alice", "hash-1")
    with pytest.raises(ConflictError):
        users.create("alice", "hash-2")

    users.update_password("alice", "hash-2")
    assert users.get("alice").password == "hash-2"
    assert users.get("alice").token is None
    assert [u.username for u in users.list_all()] == ["alice"]

    with pytest.raises(NotFoundError):
        users.get("bob")
    with pytest.raises(NotFoundError):
        users.update_password("bob", "x")
    with pytest.raises(ValidationError):
        users.create("x" * 256, "hash")


def test_refresh_token_retries_on_collision(db) -> None:
    tokens = iter(["same", "same", "fresh"])
    users = UserRepo(db, token_factory=lambda: next(tokens))
    users.create("alice", "hash")
    users.create("bob", "hash")

    assert users.refresh_token("alice") == "same"
    assert users.refresh_token("bob") == "fresh"
    assert users.get("bob").token == "fresh"


def test_refresh_token_gives_up(db) -> None:
    users = UserRepo(db, token_factory=lambda: "same")
    users.create("alice", "hash")
    users.create("bob", "hash")
    users.refresh_token("alice")

    with pytest.raises(StorageError):
        users.refresh_token("bob")


def test_refresh_token_unknown_user(db) -> None:
    with pytest.raises(NotFoundError):
        UserRepo(db).refresh_token("ghost")


def test_default_tokens_are_24_random_bytes(db) -> None:
    users = UserRepo(db)
    users.create("alice", "hash")
    first = users.refresh_token("alice")
    second = users.refresh_token("alice")

    assert len(first) == 32
    assert first != second
