import logging
import threading
from dataclasses import replace

from pastebin.domain.errors import AuthError
from pastebin.infra.repo_pastes import Paste
from pastebin.infra.repo_users import User, UserRepo

logger = logging.getLogger(__name__)


class TokenRegistry:
    """In-memory view of every user's current token.

    Owned by one app instance and loaded from the user table when built.
    Lookups go through a token -> user index; a refresh swaps both maps
    under the lock so the old token stops working at once.
    """

    def __init__(self, users: UserRepo) -> None:
        self._users = users
        self._lock = threading.Lock()
        self._refresh_lock = threading.Lock()
        self._by_token: dict[str, User] = {}
        self._by_name: dict[str, User] = {}
        self.reload()

    def reload(self) -> None:
        with self._refresh_lock:
            users = self._users.list_all()
            with self._lock:
                self._by_name = {u.username: u for u in users}
                self._by_token = {u.token: u for u in users if u.token}
        logger.info("Loaded tokens for %d users", len(self._by_token))

    def authorize(self, token: str | None) -> User:
        if not token:
            raise AuthError("no_token", "no token provided")
        with self._lock:
            user = self._by_token.get(token)
        if user is None:
            logger.warning("Rejected request with an invalid token")
            raise AuthError("invalid_token", "invalid token provided")
        return user

    def authorize_owner(self, token: str | None, paste: Paste) -> User:
        """Authorize the token and require that its user owns `paste`."""

        user = self.authorize(token)
        if user.username != paste.owner:
            logger.warning("%s is not the owner of paste %s", user.username, paste.id)
            raise AuthError("not_owner", f"{user.username} does not own paste {paste.id}")
        return user

    def refresh_token(self, username: str) -> str:
        # Refreshes are serialized end to end so the stored token and the
        # in-memory maps always agree; lookups only take the map lock.
        with self._refresh_lock:
            token = self._users.refresh_token(username)
            with self._lock:
                user = self._by_name.get(username)
            if user is None:
                user = self._users.get(username)
            user = replace(user, token=token)
            with self._lock:
                previous = self._by_name.get(username)
                if previous is not None and previous.token:
                    self._by_token.pop(previous.token, None)
                self._by_name[username] = user
                self._by_token[token] = user
        return token
