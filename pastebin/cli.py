import argparse
import getpass
import logging
import sys

import uvicorn

from pastebin.config import load_config
from pastebin.domain.errors import PasteError
from pastebin.features.auth.passwords import hash_password
from pastebin.infra.db import Database, DbConfig, connect, migrate
from pastebin.infra.log import setup_logging
from pastebin.infra.repo_users import UserRepo
from pastebin.main import create_app

logger = logging.getLogger(__name__)

RESTART_NOTE = "A running server only sees this change after it is restarted."


def _read_password(args: argparse.Namespace, prompt: str) -> str:
    if args.password:
        return args.password
    password = getpass.getpass(prompt)
    if not password:
        raise SystemExit("error: empty password")
    return password


def cmd_run(args: argparse.Namespace, db: Database) -> int:
    cfg = args.cfg
    # The server opens its own handle.
    db.close()
    app = create_app(cfg)
    logger.info("Serving %s on %s:%d", cfg.site_name, cfg.address, cfg.port)
    uvicorn.run(app, host=cfg.address, port=cfg.port, log_level=cfg.log_level.lower())
    return 0


def cmd_create_user(args: argparse.Namespace, db: Database) -> int:
    users = UserRepo(db)
    password = _read_password(args, f"Password for new user {args.username}: ")
    users.create(args.username, hash_password(password))
    token = users.refresh_token(args.username)
    print(f"{args.username}'s token: {token}")
    print(RESTART_NOTE, file=sys.stderr)
    return 0


def cmd_change_password(args: argparse.Namespace, db: Database) -> int:
    users = UserRepo(db)
    users.get(args.username)
    password = _read_password(args, f"New password for user {args.username}: ")
    users.update_password(args.username, hash_password(password))
    print(f"Password changed for {args.username}")
    return 0


def cmd_refresh_token(args: argparse.Namespace, db: Database) -> int:
    token = UserRepo(db).refresh_token(args.username)
    print(f"{args.username}'s token: {token}")
    print(RESTART_NOTE, file=sys.stderr)
    return 0


def cmd_list_users(args: argparse.Namespace, db: Database) -> int:
    for user in UserRepo(db).list_all():
        print(user.username)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pastebin", description="Multi-file paste service")
    parser.add_argument("--config", help="path to a TOML configuration file")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="run the HTTP server")
    run.set_defaults(func=cmd_run)

    create = sub.add_parser(
        "create-user", help="create a user and print its token", description=RESTART_NOTE
    )
    create.add_argument("username")
    create.add_argument("password", nargs="?")
    create.set_defaults(func=cmd_create_user)

    change = sub.add_parser("change-password", help="change a user's password")
    change.add_argument("username")
    change.add_argument("password", nargs="?")
    change.set_defaults(func=cmd_change_password)

    refresh = sub.add_parser(
        "refresh-token", help="issue a new token for a user", description=RESTART_NOTE
    )
    refresh.add_argument("username")
    refresh.set_defaults(func=cmd_refresh_token)

    listing = sub.add_parser("list-users", help="list user names")
    listing.set_defaults(func=cmd_list_users)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        args.cfg = load_config(args.config)
    except PasteError as e:
        print(f"error loading config: {e}", file=sys.stderr)
        return 1
    setup_logging(args.cfg.log_level)

    try:
        db = connect(DbConfig(path=args.cfg.db_path))
        migrate(db)
    except PasteError as e:
        print(f"error opening database: {e}", file=sys.stderr)
        return 1

    try:
        return args.func(args, db)
    except PasteError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
