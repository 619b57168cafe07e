from __future__ import annotations

from typing import Any


class SearchValidationError(ValueError):
    """A request parameter was rejected before any storage access."""

    def __init__(self, field: str, message: str, location: str = "query") -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message
        self.location = location

    def to_detail(self) -> list[dict[str, Any]]:
        # Same shape FastAPI uses for request-model validation errors
        return [{
            "loc": [self.location, *self.field.split(".")],
            "msg": self.message,
            "type": "value_error",
        }]


class StorageError(RuntimeError):
    """The catalogue store failed to execute a query."""


class StorageTimeoutError(StorageError):
    """A query exceeded the store's statement timeout."""
