from __future__ import annotations

from typing import Optional

from bowlbuilder.core.errors import (  # noqa: F401
    CardinalityError, ServiceError, StepIncompleteError, ValidationError,
)


class RestrictionError(ValidationError):
    """The backend rejected an ingredient for this bowl."""

    def __init__(self, ingredient_id: str, message: str):
        super().__init__(message, field="ingredientId")
        self.ingredient_id = ingredient_id


class RemoteError(ServiceError):
    """Errors from the ordering backend (transport or failure envelope)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class RepoError(ServiceError):
    """Errors from local repositories (I/O, parse)."""
