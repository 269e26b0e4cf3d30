"""Error taxonomy surfaced by the store layer.

The HTTP layer maps each kind to a status code; nothing here is retried.
"""
from __future__ import annotations


class ODPError(Exception):
    """Base exception for all store-level errors."""

    pass


class StoreError(ODPError):
    """Substrate or query failure, wrapping the underlying cause."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class ValidationError(ODPError):
    """One or more invalid fields or reference ids, reported together."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("Validation failed: " + "; ".join(self.errors))


class VersionConflict(ODPError):
    """The caller's expectedVersionId is no longer the latest version."""

    def __init__(self, item_id: int, expected_version_id: int | None, current_version_id: int | None) -> None:
        self.item_id = item_id
        self.expected_version_id = expected_version_id
        self.current_version_id = current_version_id
        super().__init__(
            f"Outdated item version for item {item_id}: "
            f"expected {expected_version_id}, latest is {current_version_id}"
        )


class NotFoundError(ODPError):
    """Item, baseline, wave or milestone absent (or absent from a baseline)."""

    pass


class UnsupportedOperationError(ODPError):
    pass
