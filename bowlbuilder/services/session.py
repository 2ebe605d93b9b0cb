from __future__ import annotations

import logging
from datetime import timedelta
from typing import List, Optional, Set, Tuple

from bowlbuilder.config import Settings
from bowlbuilder.core.ledger import SelectionLedger, derive_quantity
from bowlbuilder.core.models import (
    BowlItem, Ingredient, ReconcileOutcome, SessionSnapshot, Step, StepProgress, Template,
)
from bowlbuilder.core.sequencer import StepSequencer
from .backend import BowlBackend
from .catalog import Catalog, CatalogLoader, IngredientCatalogCache
from .exceptions import (
    CardinalityError, RemoteError, RepoError, RestrictionError, ValidationError,
)
from .items import ItemSynchronizer
from .metrics import MetricsLogger
from .provisioner import OrderBowlProvisioner
from .reconciler import TotalsReconciler
from .store_repo import StoreSelectionRepo

logger = logging.getLogger(__name__)


class BowlSession:
    """
    One guided bowl-building flow for one user.

    Owns the step sequencer, selection ledger, ingredient cache, Order/Bowl
    provisioning and totals. Constructed when a checkout flow starts and
    discarded with `close()`; UI bindings hold it by reference and treat its
    state as read-only between actions.
    """

    def __init__(
        self,
        backend: BowlBackend,
        user_id: str,
        settings: Optional[Settings] = None,
        store_repo: Optional[StoreSelectionRepo] = None,
        metrics: Optional[MetricsLogger] = None,
    ):
        self.settings = settings or Settings()
        self.user_id = user_id
        self._backend = backend
        self._store_repo = store_repo

        self.catalog = Catalog()
        self.store_id: Optional[str] = None
        self.template: Optional[Template] = None
        self.step_ingredients: List[Ingredient] = []

        self.ledger = SelectionLedger()
        self.sequencer = StepSequencer(selected_count=lambda step: self.ledger.count(step.id))
        self.cache = IngredientCatalogCache(backend)
        self.provisioner = OrderBowlProvisioner(
            backend,
            pickup_lead=timedelta(minutes=self.settings.pickup_lead_minutes),
            default_bowl_name=self.settings.default_bowl_name,
        )
        self.reconciler = TotalsReconciler(backend, metrics=metrics)
        self.items = ItemSynchronizer(
            backend, self.ledger, self.sequencer, self.cache, self.provisioner, self.reconciler,
        )
        self._loader = CatalogLoader(backend, template_page_size=self.settings.template_page_size)
        self._adding: Set[Tuple[str, str]] = set()
        self._epoch = 0  # bumped whenever store or template changes

    # ---- derived state ------------------------------------------------------

    @property
    def order_id(self) -> Optional[str]:
        return self.provisioner.order_id

    @property
    def bowl_id(self) -> Optional[str]:
        return self.provisioner.bowl_id

    @property
    def order_total(self) -> float:
        return self.reconciler.order_total

    @property
    def bowl_line_price(self) -> float:
        return self.reconciler.bowl_line_price

    @property
    def bowl_items(self) -> List[BowlItem]:
        return self.reconciler.bowl_items

    # ---- catalog & context --------------------------------------------------

    async def hydrate(self) -> Catalog:
        """Load templates, categories and stores; pick the saved store or the first one."""
        self.catalog = await self._loader.load()
        saved = None
        if self._store_repo is not None:
            try:
                saved = self._store_repo.load(self.user_id)
            except RepoError as e:
                logger.warning("Ignoring unreadable store selection: %s", e)
        if self.catalog.has_store(saved):
            self.store_id = saved
        elif self.catalog.stores:
            self.store_id = self.catalog.stores[0].id
        return self.catalog

    def select_store(self, store_id: str) -> None:
        if not store_id:
            raise ValidationError("Store id is required", field="storeId")
        if self.catalog.stores and not self.catalog.has_store(store_id):
            raise ValidationError(f"Unknown store {store_id}", field="storeId")
        self.store_id = store_id
        if self._store_repo is not None:
            try:
                self._store_repo.save(self.user_id, store_id)
            except RepoError as e:
                logger.warning("Could not persist store selection: %s", e)
        self._reset_flow()

    async def select_template(self, template_id: str) -> List[Step]:
        """Switch template: clears all flow state, then loads its steps (embedded or fetched)."""
        template = self.catalog.template(template_id)
        if template is None:
            raise ValidationError(f"Unknown template {template_id}", field="templateId")
        self.template = template
        self._reset_flow()
        self.sequencer.clear()
        if template.steps:
            steps = template.ordered_steps()
        else:
            steps = await self._backend.list_template_steps(template.id)
        self.sequencer.load(steps)
        return self.sequencer.steps

    def _reset_flow(self) -> None:
        self.provisioner.reset()
        self.ledger.clear()
        self.cache.clear()
        self.reconciler.reset()
        self.sequencer.reset()
        self.step_ingredients = []
        self._adding.clear()
        self._epoch += 1

    def _check_epoch(self, epoch: int) -> None:
        if epoch != self._epoch:
            raise ValidationError("Session context changed", field="storeId")

    # ---- navigation ---------------------------------------------------------

    async def _load_step(self, step: Optional[Step]) -> None:
        self.step_ingredients = [] if step is None else await self.cache.get(step.category_id)

    async def start(self) -> Step:
        if self.template is None:
            raise ValidationError("No template selected", field="templateId")
        step = self.sequencer.start()
        await self._load_step(step)
        return step

    async def next_step(self) -> Optional[Step]:
        step = self.sequencer.next()
        if step is not None:
            await self._load_step(step)
        return step

    async def prev_step(self) -> Optional[Step]:
        if not self.sequencer.started:
            return None
        step = self.sequencer.prev()
        await self._load_step(step)
        return step

    async def goto_step(self, index: int) -> Step:
        step = self.sequencer.goto(index)
        await self._load_step(step)
        return step

    # ---- mutations ----------------------------------------------------------

    async def add_ingredient(self, ingredient_id: str) -> Optional[BowlItem]:
        """
        Add one ingredient under the current step.

        Returns the created item, or None when the ingredient is already
        picked for this step (quantity changes go through update_item_qty).
        """
        step = self.sequencer.current
        if step is None:
            raise ValidationError("No active step", field="currentStepIndex")
        key = (step.id, ingredient_id)
        epoch = self._epoch
        if self.ledger.contains(*key) or key in self._adding:
            return None
        self.ledger.check_capacity(step, pending=sum(1 for s, _ in self._adding if s == step.id))

        self._adding.add(key)
        try:
            ingredient = await self.items.resolve_ingredient(ingredient_id)
            _order_id, bowl_id = await self.provisioner.ensure(self.user_id, self.store_id, self.template)
            item = await self._create_for_step(step, ingredient_id, ingredient, bowl_id, epoch)
        finally:
            self._adding.discard(key)
        await self.recalc_totals()
        return item

    async def _create_for_step(
        self, step: Step, ingredient_id: str, ingredient: Optional[Ingredient], bowl_id: str, epoch: int,
    ) -> BowlItem:
        await self._check_restriction(bowl_id, ingredient_id)
        self._check_epoch(epoch)
        if ingredient is None:
            logger.warning("Ingredient %s unresolved; using price 0 and default portion mass", ingredient_id)
        unit_price = ingredient.unit_price if ingredient is not None else 0
        item = await self.items.create(bowl_id, ingredient_id, derive_quantity(step, ingredient), unit_price)
        self._check_epoch(epoch)
        self.ledger.record(step.id, ingredient_id)
        return item

    async def _check_restriction(self, bowl_id: str, ingredient_id: str) -> None:
        try:
            check = await self._backend.validate_addition(bowl_id, ingredient_id)
        except RemoteError as e:
            logger.warning("Restriction check unavailable for %s: %s", ingredient_id, e)
            return
        if check.valid is False:
            raise RestrictionError(ingredient_id, check.message or "Ingredient not allowed in this bowl")

    async def remove_item(self, item_id: str) -> Optional[Step]:
        owner = await self.items.remove_item(item_id)
        if owner is not None:
            await self._load_step(owner)
        return owner

    async def update_item_qty(self, item_id: str, qty: float) -> bool:
        return await self.items.update_item_qty(item_id, qty)

    async def recalc_totals(self) -> ReconcileOutcome:
        return await self.reconciler.recalc_totals(self.order_id, self.bowl_id)

    async def confirm_order(self) -> ReconcileOutcome:
        if not self.order_id:
            raise ValidationError("Nothing to confirm yet", field="orderId")
        await self._backend.confirm_order(self.order_id)
        logger.info("Confirmed order %s", self.order_id)
        return await self.recalc_totals()

    async def reorder(self, template_id: str, ingredient_ids: List[str]) -> List[str]:
        """
        Rebuild a previous bowl: select the template and add each ingredient
        under the step matching its category. Lines that cannot be placed are
        skipped; their ids are returned.
        """
        await self.select_template(template_id)
        epoch = self._epoch
        _order_id, bowl_id = await self.provisioner.ensure(self.user_id, self.store_id, self.template)

        skipped: List[str] = []
        for ingredient_id in ingredient_ids:
            ingredient = self.cache.find(ingredient_id)
            if ingredient is None:
                try:
                    ingredient = await self._backend.get_ingredient(ingredient_id)
                except RemoteError as e:
                    logger.warning("Reorder: skipping %s, lookup failed: %s", ingredient_id, e)
                    skipped.append(ingredient_id)
                    continue
            idx = self.sequencer.index_for_category(ingredient.category_id or "")
            if idx < 0:
                logger.warning("Reorder: no step for ingredient %s (category %s)", ingredient_id, ingredient.category_id)
                skipped.append(ingredient_id)
                continue
            step = self.sequencer.steps[idx]
            if self.ledger.contains(step.id, ingredient_id):
                continue
            try:
                self.ledger.check_capacity(step)
                await self._create_for_step(step, ingredient_id, ingredient, bowl_id, epoch)
            except (CardinalityError, RestrictionError, RemoteError) as e:
                logger.warning("Reorder: skipping %s: %s", ingredient_id, e)
                skipped.append(ingredient_id)

        await self.recalc_totals()
        await self.start()
        return skipped

    # ---- views & teardown ---------------------------------------------------

    def snapshot(self) -> SessionSnapshot:
        steps = self.sequencer.steps
        return SessionSnapshot(
            user_id=self.user_id,
            store_id=self.store_id,
            template_id=self.template.id if self.template else None,
            order_id=self.order_id,
            bowl_id=self.bowl_id,
            current_step_index=self.sequencer.current_index,
            completed=self.sequencer.completed,
            steps=[
                StepProgress(
                    step_id=s.id,
                    category_id=s.category_id,
                    min_items=s.min_items,
                    max_items=s.max_items,
                    selected=self.ledger.count(s.id),
                    can_advance=self.sequencer.can_advance(i),
                )
                for i, s in enumerate(steps)
            ],
            step_ingredients=list(self.step_ingredients),
            bowl_items=list(self.bowl_items),
            order_total=self.order_total,
            bowl_line_price=self.bowl_line_price,
            last_reconcile=self.reconciler.last_outcome,
        )

    def close(self) -> None:
        self.provisioner.reset()
        self._adding.clear()
