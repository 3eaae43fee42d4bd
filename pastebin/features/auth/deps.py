from fastapi import Request

from pastebin.features.auth.tokens import TokenRegistry
from pastebin.infra.repo_users import User


def bearer_token(header: str | None) -> str | None:
    if not header:
        return None
    scheme, _, value = header.strip().partition(" ")
    if scheme.lower() == "bearer":
        return value.strip() or None
    return header.strip()


def require_user(request: Request) -> User:
    registry: TokenRegistry = request.app.state.tokens
    return registry.authorize(bearer_token(request.headers.get("Authorization")))
