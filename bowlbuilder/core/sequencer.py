# bowlbuilder/core/sequencer.py
from __future__ import annotations

from typing import Callable, List, Optional

from .errors import StepIncompleteError, ValidationError

from .models import Step

NOT_STARTED = -1


class StepSequencer:
    """
    Ordered steps of the selected template plus the current step pointer.

    `current_index` is -1 before `start()` and in [0, len(steps)) afterwards.
    `completed` is set once the user advances past the last step with its
    minimum satisfied; the index then stays on the last step.

    The sequencer does not own selection counts: `selected_count` is supplied
    by the caller (the session wires it to the ledger).
    """

    def __init__(self, selected_count: Callable[[Step], int]):
        self._selected_count = selected_count
        self.steps: List[Step] = []
        self.current_index: int = NOT_STARTED
        self.completed: bool = False

    # ---- lifecycle ----------------------------------------------------------

    def load(self, steps: List[Step]) -> None:
        """Replace the step list (sorted by displayOrder) and reset the pointer."""
        self.steps = sorted(steps, key=lambda s: s.display_order)
        self.reset()

    def reset(self) -> None:
        self.current_index = NOT_STARTED
        self.completed = False

    def clear(self) -> None:
        self.steps = []
        self.reset()

    # ---- queries ------------------------------------------------------------

    @property
    def started(self) -> bool:
        return self.current_index >= 0

    @property
    def current(self) -> Optional[Step]:
        if 0 <= self.current_index < len(self.steps):
            return self.steps[self.current_index]
        return None

    def can_advance(self, index: int) -> bool:
        if not 0 <= index < len(self.steps):
            return False
        step = self.steps[index]
        return self._selected_count(step) >= step.min_items

    def index_for_category(self, category_id: str) -> int:
        for i, step in enumerate(self.steps):
            if step.category_id == category_id:
                return i
        return -1

    # ---- navigation ---------------------------------------------------------

    def start(self) -> Step:
        if not self.steps:
            raise ValidationError("Select a template with at least one step first", field="templateId")
        self.current_index = 0
        self.completed = False
        return self.steps[0]

    def next(self) -> Optional[Step]:
        """
        Advance when the current step's minimum is met.

        Returns the new current step, or None once the flow is completed.
        Raises StepIncompleteError (state unchanged) when the minimum is unmet.
        """
        if not self.started:
            raise ValidationError("No active step", field="currentStepIndex")
        if self.completed:
            return None
        step = self.steps[self.current_index]
        if not self.can_advance(self.current_index):
            raise StepIncompleteError(step.id, self._selected_count(step), step.min_items)
        if self.current_index + 1 >= len(self.steps):
            self.completed = True
            return None
        self.current_index += 1
        return self.steps[self.current_index]

    def prev(self) -> Optional[Step]:
        if self.completed:
            # back onto the last step
            self.completed = False
            return self.current
        if self.current_index > 0:
            self.current_index -= 1
        return self.current

    def goto(self, index: int) -> Step:
        if not 0 <= index < len(self.steps):
            raise ValidationError(f"Step index {index} out of range", field="currentStepIndex")
        self.current_index = index
        self.completed = False
        return self.steps[index]
