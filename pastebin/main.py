from fastapi import FastAPI

from pastebin.config import AppConfig, load_config
from pastebin.features.auth.api import router as auth_router
from pastebin.features.auth.tokens import TokenRegistry
from pastebin.features.ids.allocator import build_allocator
from pastebin.features.pastes.api import router as pastes_router
from pastebin.features.upload.api import router as upload_router
from pastebin.infra.db import DbConfig, connect, migrate
from pastebin.infra.repo_pastes import PasteRepo
from pastebin.infra.repo_users import UserRepo
from pastebin.web.errors import install_error_handlers
from pastebin.web.health import router as health_router


def create_app(cfg: AppConfig | None = None) -> FastAPI:
    cfg = cfg or load_config()
    db = connect(DbConfig(path=cfg.db_path))
    migrate(db)
    cfg.uploads_dir.mkdir(parents=True, exist_ok=True)

    app = FastAPI(title=cfg.site_name, version="0.1.0")
    app.state.cfg = cfg
    app.state.db = db
    app.state.tokens = TokenRegistry(UserRepo(db))
    app.state.ids = build_allocator(cfg, PasteRepo(db).exists)
    install_error_handlers(app)
    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(upload_router)
    # Last: its /{paste_id} route would shadow the fixed paths above.
    app.include_router(pastes_router)
    return app
