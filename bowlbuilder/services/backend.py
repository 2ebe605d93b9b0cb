from __future__ import annotations
from abc import ABC, abstractmethod
from typing import List, Optional
from bowlbuilder.core.models import (
    Bowl, BowlItem, BowlItemRequest, BowlRequest, Category, Ingredient,
    Order, OrderRequest, RestrictionCheck, Step, Store, Template,
)


class BowlBackend(ABC):
    """Ordering backend operations the bowl-building session relies on.

    Every method raises RemoteError on transport failure or a failure envelope.
    """

    # ---- catalog ----
    @abstractmethod
    async def list_templates(self, page: int = 0, size: int = 200) -> List[Template]: ...
    @abstractmethod
    async def list_template_steps(self, template_id: str) -> List[Step]: ...
    @abstractmethod
    async def list_categories(self) -> List[Category]: ...
    @abstractmethod
    async def list_ingredients_by_category(self, category_id: str) -> List[Ingredient]: ...
    @abstractmethod
    async def get_ingredient(self, ingredient_id: str) -> Ingredient: ...
    @abstractmethod
    async def list_stores(self) -> List[Store]: ...

    # ---- orders ----
    @abstractmethod
    async def create_order(self, request: OrderRequest) -> Order: ...
    @abstractmethod
    async def get_order(self, order_id: str) -> Order: ...
    @abstractmethod
    async def recalculate_order(self, order_id: str) -> Order: ...
    @abstractmethod
    async def confirm_order(self, order_id: str) -> Order: ...

    # ---- bowls ----
    @abstractmethod
    async def create_bowl(self, request: BowlRequest) -> Bowl: ...
    @abstractmethod
    async def get_bowl_with_items(self, bowl_id: str) -> Bowl: ...

    # ---- bowl items ----
    @abstractmethod
    async def create_bowl_item(self, request: BowlItemRequest) -> BowlItem: ...
    @abstractmethod
    async def update_bowl_item(self, item_id: str, request: BowlItemRequest) -> Optional[BowlItem]: ...
    @abstractmethod
    async def delete_bowl_item(self, item_id: str) -> None: ...

    @abstractmethod
    async def validate_addition(self, bowl_id: str, ingredient_id: str) -> RestrictionCheck: ...

    async def aclose(self) -> None:
        """Release transport resources; no-op by default."""
