# bowlbuilder/core/ledger.py
from __future__ import annotations

from typing import Dict, List, Optional

from .errors import CardinalityError

from .models import Ingredient, Step

DEFAULT_PORTIONS = 1.0
DEFAULT_STANDARD_QUANTITY = 100.0
QUANTITY_TOLERANCE = 0.01


def derive_quantity(step: Step, ingredient: Optional[Ingredient]) -> float:
    """
    Mass to persist for one "add": portions configured on the step times the
    ingredient's mass per portion.

    Missing or non-positive values fall back to 1 portion and 100 per portion.
    """
    portions = step.default_qty if step.default_qty and step.default_qty > 0 else DEFAULT_PORTIONS
    std = None if ingredient is None else ingredient.standard_quantity
    per_portion = std if std and std > 0 else DEFAULT_STANDARD_QUANTITY
    return round(portions * per_portion, 6)  # avoid float drift


def normalize_quantity(qty: float) -> Optional[float]:
    """Round to 2 decimals; None for non-positive input."""
    if qty is None or qty <= 0:
        return None
    return round(float(qty), 2)


def is_same_quantity(a: float, b: float) -> bool:
    return abs(a - b) < QUANTITY_TOLERANCE


class SelectionLedger:
    """
    Local read-model of which ingredients were added under which step.

    Advisory only: it answers "how many has the user picked for step N"
    without a round trip. Persisted bowl items are always re-read from the
    backend after a mutation.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, List[str]] = {}

    def picked(self, step_id: str) -> List[str]:
        return list(self._entries.get(step_id, []))

    def count(self, step_id: str) -> int:
        return len(self._entries.get(step_id, []))

    def contains(self, step_id: str, ingredient_id: str) -> bool:
        return ingredient_id in self._entries.get(step_id, [])

    def check_capacity(self, step: Step, pending: int = 0) -> None:
        """
        Raise CardinalityError if one more pick would exceed `step.max_items` (0 = unbounded).

        `pending` counts picks for the step that are still being created remotely.
        """
        if step.is_bounded() and self.count(step.id) + pending >= step.max_items:
            raise CardinalityError(step.id, step.max_items)

    def record(self, step_id: str, ingredient_id: str) -> bool:
        """Append a pick. Returns False (no-op) if it is already recorded for the step."""
        picked = self._entries.setdefault(step_id, [])
        if ingredient_id in picked:
            return False
        picked.append(ingredient_id)
        return True

    def discard(self, step_id: str, ingredient_id: str) -> bool:
        picked = self._entries.get(step_id)
        if not picked or ingredient_id not in picked:
            return False
        self._entries[step_id] = [i for i in picked if i != ingredient_id]
        return True

    def clear(self) -> None:
        self._entries.clear()

    def as_dict(self) -> Dict[str, List[str]]:
        return {k: list(v) for k, v in self._entries.items()}
