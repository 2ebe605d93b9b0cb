import asyncio
import itertools
from typing import Dict, List, Optional

import pytest

from bowlbuilder.config import Settings
from bowlbuilder.core.models import (
    Bowl, BowlItem, BowlItemRequest, BowlRequest, Category, Ingredient,
    Order, OrderRequest, RestrictionCheck, Step, Store, Template,
)
from bowlbuilder.services.backend import BowlBackend
from bowlbuilder.services.exceptions import RemoteError
from bowlbuilder.services.session import BowlSession


class FakeBackend(BowlBackend):
    """In-memory ordering backend. Prices: line = sum(unitPrice * quantity / 100)."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.templates: List[Template] = []
        self.steps_by_template: Dict[str, List[Step]] = {}
        self.categories: List[Category] = []
        self.ingredients: Dict[str, Ingredient] = {}
        self.stores: List[Store] = []
        self.orders: Dict[str, Order] = {}
        self.bowls: Dict[str, Bowl] = {}
        self.items: Dict[str, BowlItem] = {}
        self.restricted: Dict[str, str] = {}
        self.calls: List[tuple] = []
        self.fail: Dict[str, Exception] = {}
        self.fail_once: Dict[str, Exception] = {}

    def count(self, name: str) -> int:
        return sum(1 for c in self.calls if c[0] == name)

    async def _enter(self, name: str, *args):
        self.calls.append((name,) + args)
        await asyncio.sleep(0)
        if name in self.fail_once:
            raise self.fail_once.pop(name)
        if name in self.fail:
            raise self.fail[name]

    def _new_id(self, prefix: str) -> str:
        return f"{prefix}{next(self._ids)}"

    # ---- catalog ----
    async def list_templates(self, page=0, size=200):
        await self._enter("list_templates")
        return list(self.templates)

    async def list_template_steps(self, template_id):
        await self._enter("list_template_steps", template_id)
        return list(self.steps_by_template.get(template_id, []))

    async def list_categories(self):
        await self._enter("list_categories")
        return list(self.categories)

    async def list_ingredients_by_category(self, category_id):
        await self._enter("list_ingredients_by_category", category_id)
        return [i for i in self.ingredients.values() if i.category_id == category_id]

    async def get_ingredient(self, ingredient_id):
        await self._enter("get_ingredient", ingredient_id)
        if ingredient_id not in self.ingredients:
            raise RemoteError("Ingredient not found", status_code=404)
        return self.ingredients[ingredient_id]

    async def list_stores(self):
        await self._enter("list_stores")
        return list(self.stores)

    # ---- orders ----
    async def create_order(self, request: OrderRequest):
        await self._enter("create_order", request)
        order = Order(id=self._new_id("o"), store_id=request.store_id, user_id=request.user_id,
                      status="PENDING", pickup_at=request.pickup_at, note=request.note)
        self.orders[order.id] = order
        return order

    async def get_order(self, order_id):
        await self._enter("get_order", order_id)
        return self.orders[order_id].model_copy()

    async def recalculate_order(self, order_id):
        await self._enter("recalculate_order", order_id)
        total = 0.0
        for bowl in self.bowls.values():
            if bowl.order_id != order_id:
                continue
            line = sum(it.unit_price * it.quantity / 100 for it in self.items.values() if it.bowl_id == bowl.id)
            bowl.line_price = round(line, 2)
            total += bowl.line_price
        order = self.orders[order_id]
        order.subtotal_amount = order.total_amount = round(total, 2)
        return order.model_copy()

    async def confirm_order(self, order_id):
        await self._enter("confirm_order", order_id)
        self.orders[order_id].status = "CONFIRMED"
        return self.orders[order_id].model_copy()

    # ---- bowls ----
    async def create_bowl(self, request: BowlRequest):
        await self._enter("create_bowl", request)
        bowl = Bowl(id=self._new_id("b"), order_id=request.order_id, template_id=request.template_id,
                    name=request.name, instruction=request.instruction)
        self.bowls[bowl.id] = bowl
        return bowl

    async def get_bowl_with_items(self, bowl_id):
        await self._enter("get_bowl_with_items", bowl_id)
        bowl = self.bowls[bowl_id]
        items = [it.model_copy() for it in self.items.values() if it.bowl_id == bowl_id]
        return bowl.model_copy(update={"items": items})

    # ---- items ----
    async def create_bowl_item(self, request: BowlItemRequest):
        await self._enter("create_bowl_item", request)
        item = BowlItem(id=self._new_id("i"), bowl_id=request.bowl_id, ingredient_id=request.ingredient_id,
                        quantity=request.quantity, unit_price=request.unit_price)
        self.items[item.id] = item
        return item

    async def update_bowl_item(self, item_id, request: BowlItemRequest):
        await self._enter("update_bowl_item", item_id, request)
        item = self.items[item_id]
        item.quantity = request.quantity
        return item.model_copy()

    async def delete_bowl_item(self, item_id):
        await self._enter("delete_bowl_item", item_id)
        self.items.pop(item_id, None)

    async def validate_addition(self, bowl_id, ingredient_id):
        await self._enter("validate_addition", bowl_id, ingredient_id)
        if ingredient_id in self.restricted:
            return RestrictionCheck(valid=False, message=self.restricted[ingredient_id])
        return RestrictionCheck(valid=True)


def seed(backend: FakeBackend) -> FakeBackend:
    """Template T1: A (1..2), B (1..1), C (0..3); two stores; three ingredients per category."""
    steps = [
        Step(id="sA", template_id="T1", category_id="A", min_items=1, max_items=2, default_qty=1, display_order=1),
        Step(id="sB", template_id="T1", category_id="B", min_items=1, max_items=1, default_qty=2, display_order=2),
        Step(id="sC", template_id="T1", category_id="C", min_items=0, max_items=3, display_order=3),
    ]
    backend.templates = [
        Template(id="T1", name="Poke Bowl"),
        Template(id="T2", name="Salad", steps=[
            Step(id="s2", template_id="T2", category_id="A", min_items=0, max_items=0, display_order=1),
        ]),
    ]
    backend.steps_by_template = {"T1": steps}
    backend.categories = [Category(id=c, name=f"Cat {c}", kind="BASE") for c in "ABC"]
    backend.stores = [Store(id="st1", name="Downtown"), Store(id="st2", name="Airport")]
    for cat, std in (("A", 50), ("B", None), ("C", 30)):
        for n in range(1, 4):
            ing = Ingredient(id=f"{cat.lower()}{n}", name=f"{cat}-{n}", category_id=cat,
                             unit_price=10 * n, standard_quantity=std, unit="g")
            backend.ingredients[ing.id] = ing
    return backend


@pytest.fixture
def settings(tmp_path, monkeypatch):
    d = tmp_path / "data"
    d.mkdir()
    monkeypatch.setenv("DATA_DIR", str(d))
    monkeypatch.setenv("STORE_SELECTION_FILE", str(d / "store_selection.json"))
    monkeypatch.setenv("API_BASE_URL", "http://backend.test")
    return Settings()


@pytest.fixture
def backend():
    return seed(FakeBackend())


@pytest.fixture
def make_session(backend, settings):
    """Build a hydrated session on T1 at store st1 (not started unless asked)."""

    async def _make(template_id: Optional[str] = "T1", start: bool = True, **kwargs) -> BowlSession:
        session = BowlSession(backend, "u1", settings=settings, **kwargs)
        await session.hydrate()
        if template_id:
            await session.select_template(template_id)
            if start:
                await session.start()
        return session

    return _make
