from __future__ import annotations


class PasteError(Exception):
    """Base for every failure the service reports to callers.

    `code` is a short machine-readable reason; it is what the HTTP layer
    returns as `detail`.
    """

    def __init__(self, code: str, message: str | None = None) -> None:
        super().__init__(message or code)
        self.code = code


class ValidationError(PasteError):
    pass


class PolicyError(PasteError):
    pass


class AuthError(PasteError):
    pass


class NotFoundError(PasteError):
    pass


class ConflictError(PasteError):
    pass


class StorageError(PasteError):
    pass


class ConfigError(PasteError):
    pass
