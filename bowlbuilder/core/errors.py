# bowlbuilder/core/errors.py
from __future__ import annotations

from typing import Optional


class ServiceError(RuntimeError):
    """Base class for errors raised to callers of the bowl-building flow."""


class ValidationError(ServiceError):
    """A precondition of the requested action is missing."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class StepIncompleteError(ValidationError):
    """Advancing was requested before the current step reached its minimum."""

    def __init__(self, step_id: str, selected: int, min_items: int):
        super().__init__(
            f"Step {step_id} needs at least {min_items} item(s), {selected} selected",
            field="minItems",
        )
        self.step_id = step_id
        self.selected = selected
        self.min_items = min_items


class CardinalityError(ServiceError):
    """A selection would exceed the step's maximum."""

    def __init__(self, step_id: str, limit: int):
        super().__init__(f"Step {step_id} allows at most {limit} item(s)")
        self.step_id = step_id
        self.limit = limit
