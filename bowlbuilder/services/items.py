from __future__ import annotations

import logging
from typing import Optional

from bowlbuilder.core.ledger import SelectionLedger, is_same_quantity, normalize_quantity
from bowlbuilder.core.models import BowlItem, BowlItemRequest, Ingredient, Step
from bowlbuilder.core.sequencer import StepSequencer
from .backend import BowlBackend
from .catalog import IngredientCatalogCache
from .exceptions import RemoteError
from .provisioner import OrderBowlProvisioner
from .reconciler import TotalsReconciler

logger = logging.getLogger(__name__)


class ItemSynchronizer:
    """Bridges ledger mutations to bowl-item create / update / delete calls."""

    def __init__(
        self,
        backend: BowlBackend,
        ledger: SelectionLedger,
        sequencer: StepSequencer,
        cache: IngredientCatalogCache,
        provisioner: OrderBowlProvisioner,
        reconciler: TotalsReconciler,
    ):
        self._backend = backend
        self._ledger = ledger
        self._sequencer = sequencer
        self._cache = cache
        self._provisioner = provisioner
        self._reconciler = reconciler

    async def create(self, bowl_id: str, ingredient_id: str, quantity: float, unit_price: float) -> BowlItem:
        item = await self._backend.create_bowl_item(BowlItemRequest(
            bowl_id=bowl_id,
            ingredient_id=ingredient_id,
            quantity=quantity,
            unit_price=unit_price,
        ))
        logger.info("Added ingredient %s to bowl %s (qty=%s)", ingredient_id, bowl_id, quantity)
        return item

    async def resolve_ingredient(self, ingredient_id: str) -> Optional[Ingredient]:
        """Cached step list first, then any cached category, then the backend. Lookup failure yields None."""
        current = self._sequencer.current
        hit = self._cache.find(ingredient_id, prefer=current.category_id if current else None)
        if hit is not None:
            return hit
        try:
            return await self._backend.get_ingredient(ingredient_id)
        except RemoteError as e:
            logger.warning("Could not look up ingredient %s: %s", ingredient_id, e)
            return None

    async def remove_item(self, item_id: str) -> Optional[Step]:
        """
        Delete a bowl item and drop its ingredient from the owning step's picks.

        The owning step is found through the ingredient's category; when found,
        the sequencer moves onto it and that step is returned. Resolution
        failures never block the delete.
        """
        item = self._reconciler.find_item(item_id)
        owner: Optional[Step] = None
        if item is not None and item.ingredient_id:
            ingredient = await self.resolve_ingredient(item.ingredient_id)
            if ingredient is not None and ingredient.category_id:
                idx = self._sequencer.index_for_category(ingredient.category_id)
                if idx >= 0:
                    owner = self._sequencer.steps[idx]

        await self._backend.delete_bowl_item(item_id)
        logger.info("Deleted bowl item %s", item_id)

        if owner is not None:
            self._ledger.discard(owner.id, item.ingredient_id)
            self._sequencer.goto(self._sequencer.steps.index(owner))

        await self._reconcile()
        return owner

    async def update_item_qty(self, item_id: str, qty: float) -> bool:
        """
        Change an item's quantity in place. Returns True if an update was sent.

        Non-positive values and changes under 0.01 are no-ops. The totals are
        refreshed whether or not the update succeeds; its error still propagates.
        """
        item = self._reconciler.find_item(item_id)
        if item is None:
            return False
        next_qty = normalize_quantity(qty)
        if next_qty is None or is_same_quantity(next_qty, item.quantity):
            return False
        if not item.bowl_id or not item.ingredient_id:
            logger.warning("Bowl item %s lacks bowlId/ingredientId; not updating", item_id)
            return False

        try:
            await self._backend.update_bowl_item(item_id, BowlItemRequest(
                bowl_id=item.bowl_id,
                ingredient_id=item.ingredient_id,
                quantity=next_qty,
                unit_price=item.unit_price,
            ))
        finally:
            await self._reconcile()
        return True

    async def _reconcile(self):
        return await self._reconciler.recalc_totals(self._provisioner.order_id, self._provisioner.bowl_id)
