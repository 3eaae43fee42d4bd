import sys
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest


def pytest_configure() -> None:
    # Ensure `import pastebin...` works without installing the package.
    repo_root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(repo_root))


@dataclass
class Env:
    client: Any
    app: Any
    cfg: Any
    tokens: dict[str, str]

    def auth(self, user: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.tokens[user]}"}

    def blobs_on_disk(self) -> list[Path]:
        return sorted(self.cfg.uploads_dir.iterdir())


@pytest.fixture
def db(tmp_path: Path):
    from pastebin.infra.db import DbConfig, connect, migrate

    database = connect(DbConfig(path=tmp_path / "test.sqlite3"))
    migrate(database)
    yield database
    database.close()


@pytest.fixture
def make_env(tmp_path: Path) -> Callable[..., Env]:
    from fastapi.testclient import TestClient

    from pastebin.config import AppConfig
    from pastebin.infra.repo_users import UserRepo
    from pastebin.main import create_app

    def _make(**overrides: Any) -> Env:
        overrides.setdefault("id_tick_seconds", 0.0)
        cfg = AppConfig(data_dir=tmp_path, **overrides)
        app = create_app(cfg)
        users = UserRepo(app.state.db)
        tokens = {}
        for name in ("alice", "bob"):
            users.create(name, "not-a-real-hash")
            tokens[name] = app.state.tokens.refresh_token(name)
        return Env(client=TestClient(app), app=app, cfg=cfg, tokens=tokens)

    return _make
