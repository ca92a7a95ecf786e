"""Error taxonomy shared by every layer.

Errors are grouped by origin, not by the concrete operation that raised
them. Each carries a machine-readable ``code``, a message that states what
failed and what to do next, and optionally the offending ``path`` and the
underlying ``cause``.
"""

from __future__ import annotations

REINDEX_HINT = "Run `cortex store reindex` to rebuild the category indexes."


class CortexError(Exception):
    """Base class for all cortex errors."""

    code = "CORTEX_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        path: str | None = None,
        cause: BaseException | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.path = path
        self.cause = cause
        self.hint = hint

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} {self.hint}"
        return self.message

    def to_dict(self) -> dict:
        data = {"code": self.code, "message": str(self)}
        if self.path is not None:
            data["path"] = self.path
        return data


class ValidationError(CortexError):
    """Malformed input: slugs, paths, sizes, policy fields, documents."""

    code = "INVALID_INPUT"


class NotFoundError(CortexError):
    """A memory, category or store does not exist."""

    code = "NOT_FOUND"


class StoreResolutionError(NotFoundError):
    """No store could be resolved for the current context."""

    code = "STORE_NOT_FOUND"


class AlreadyExistsError(CortexError):
    """The target of a create or move is already occupied."""

    code = "ALREADY_EXISTS"


class ProtectedResourceError(CortexError):
    """The operation is forbidden on a protected category or by policy."""

    code = "CATEGORY_PROTECTED"


class StorageError(CortexError):
    """A filesystem operation failed; wraps the OSError as ``cause``."""

    code = "STORAGE_ERROR"


class PartialSuccessError(CortexError):
    """A multi-step write completed its first step but not the index update.

    The written file is kept. Callers should repair the index with a reindex.
    """

    code = "PARTIAL_SUCCESS"

    def __init__(self, message: str, **kwargs) -> None:
        kwargs.setdefault("hint", REINDEX_HINT)
        super().__init__(message, **kwargs)


class ConfigError(CortexError):
    """The configuration file could not be read, parsed or written."""

    code = "CONFIG_VALIDATION_FAILED"
