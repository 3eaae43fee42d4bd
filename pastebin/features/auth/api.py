from fastapi import APIRouter, Depends, Request

from pastebin.features.auth.deps import require_user
from pastebin.infra.repo_users import User

router = APIRouter(tags=["auth"])


@router.post("/token")
def refresh_token(request: Request, user: User = Depends(require_user)) -> dict[str, str]:
    token = request.app.state.tokens.refresh_token(user.username)
    return {"username": user.username, "token": token}
