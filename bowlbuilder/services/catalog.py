from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterator, List, Optional

from pydantic import BaseModel, Field

from bowlbuilder.core.models import Category, Ingredient, Store, Template
from .backend import BowlBackend

logger = logging.getLogger(__name__)


class Catalog(BaseModel):
    templates: List[Template] = Field(default_factory=list)
    categories: List[Category] = Field(default_factory=list)
    stores: List[Store] = Field(default_factory=list)

    def template(self, template_id: str) -> Optional[Template]:
        return next((t for t in self.templates if t.id == template_id), None)

    def has_store(self, store_id: Optional[str]) -> bool:
        return bool(store_id) and any(s.id == store_id for s in self.stores)


class CatalogLoader:
    """Fetches templates, categories and stores at session start.

    The three reads are independent; a failed one yields an empty list.
    """

    def __init__(self, backend: BowlBackend, template_page_size: int = 200):
        self._backend = backend
        self._page_size = template_page_size

    async def load(self) -> Catalog:
        templates, categories, stores = await asyncio.gather(
            self._backend.list_templates(page=0, size=self._page_size),
            self._backend.list_categories(),
            self._backend.list_stores(),
            return_exceptions=True,
        )
        catalog = Catalog()
        for name, result in (("templates", templates), ("categories", categories), ("stores", stores)):
            if isinstance(result, BaseException):
                logger.warning("Could not load %s: %s", name, result)
                continue
            setattr(catalog, name, result)
        return catalog


class IngredientCatalogCache:
    """
    Ingredient lists memoized per category id.

    Assumption: the catalog is static for the lifetime of a session, so there
    is no TTL or invalidation. The session calls `clear()` when the user
    switches store or template, which is the only point where prices are
    re-read.
    """

    def __init__(self, backend: BowlBackend):
        self._backend = backend
        self._by_category: Dict[str, List[Ingredient]] = {}

    async def get(self, category_id: str) -> List[Ingredient]:
        cached = self._by_category.get(category_id)
        if cached is not None:
            return cached
        ings = await self._backend.list_ingredients_by_category(category_id)
        self._by_category[category_id] = ings
        return ings

    def peek(self, category_id: str) -> Optional[List[Ingredient]]:
        return self._by_category.get(category_id)

    def find(self, ingredient_id: str, prefer: Optional[str] = None) -> Optional[Ingredient]:
        """Look an ingredient up in cached lists only, checking category `prefer` first."""
        if prefer is not None:
            hit = next((i for i in self._by_category.get(prefer, []) if i.id == ingredient_id), None)
            if hit is not None:
                return hit
        for ing in self._iter_all():
            if ing.id == ingredient_id:
                return ing
        return None

    def _iter_all(self) -> Iterator[Ingredient]:
        for ings in self._by_category.values():
            yield from ings

    def clear(self) -> None:
        self._by_category.clear()

    def __contains__(self, category_id: str) -> bool:
        return category_id in self._by_category
