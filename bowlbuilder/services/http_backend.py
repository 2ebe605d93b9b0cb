from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError as PydanticValidationError

from bowlbuilder.config import Settings
from bowlbuilder.core.models import (
    ApiEnvelope, Bowl, BowlItem, BowlItemRequest, BowlRequest, Category, Ingredient,
    Order, OrderRequest, RestrictionCheck, Step, Store, Template,
)
from .backend import BowlBackend
from .exceptions import RemoteError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def normalize_envelope(resp: httpx.Response) -> ApiEnvelope:
    """
    Map any backend response onto {success, code, message, data}.

    - `success` comes from the body when it is a boolean, else from the HTTP status.
    - `data` is the body's data / result when either key is present, even if null;
      otherwise content / items (never for a bare record), then the raw body.
    - An empty 2xx body (e.g. a DELETE) is a success with no data.
    """
    ok_status = 200 <= resp.status_code < 300
    if not resp.content:
        return ApiEnvelope(success=ok_status, code=resp.status_code)

    content_type = resp.headers.get("content-type", "")
    if "json" not in content_type:
        raise RemoteError(
            f"Unexpected non-JSON response ({content_type or 'no content-type'}) from {resp.request.url}",
            status_code=resp.status_code,
        )
    try:
        raw = resp.json()
    except ValueError as e:
        raise RemoteError(f"Malformed JSON from {resp.request.url}: {e}", status_code=resp.status_code) from e

    if not isinstance(raw, dict):
        return ApiEnvelope(success=ok_status, code=resp.status_code, data=raw)

    success = raw["success"] if isinstance(raw.get("success"), bool) else ok_status
    if not ok_status:
        success = False
    code = raw.get("code") if isinstance(raw.get("code"), int) else (
        raw.get("status") if isinstance(raw.get("status"), int) else resp.status_code
    )
    message = raw.get("message") if isinstance(raw.get("message"), str) else (
        raw.get("msg") if isinstance(raw.get("msg"), str) else ""
    )
    data: Any = raw
    # an explicit null payload stays null
    if "data" in raw or "result" in raw:
        data = raw["data"] if "data" in raw else raw["result"]
    elif "id" not in raw:  # a bare record keeps its own `items`
        for key in ("content", "items"):
            if raw.get(key) is not None:
                data = raw[key]
                break
    return ApiEnvelope(success=success, code=code, message=message, data=data)


def _as_list(data: Any) -> List[Dict[str, Any]]:
    """Unwrap a paged payload ({"content": [...]}) or pass a plain list through."""
    if isinstance(data, dict) and isinstance(data.get("content"), list):
        return data["content"]
    if isinstance(data, list):
        return data
    return []


def _as_dict(data: Any, what: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise RemoteError(f"Expected a {what} object, got {type(data).__name__}")
    return data


def _parse(model: Type[M], data: Any, what: str) -> M:
    try:
        return model.model_validate(_as_dict(data, what))
    except PydanticValidationError as e:
        raise RemoteError(f"Malformed {what} from backend: {e.error_count()} invalid field(s)") from e


def _parse_list(model: Type[M], data: Any, what: str) -> List[M]:
    try:
        return [model.model_validate(row) for row in _as_list(data)]
    except PydanticValidationError as e:
        raise RemoteError(f"Malformed {what} list from backend: {e.error_count()} invalid field(s)") from e


class HttpBowlBackend(BowlBackend):
    """REST client for the ordering backend, on a shared httpx.AsyncClient."""

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        if client is None:
            headers = {"Content-Type": "application/json"}
            if settings.api_token:
                headers["Authorization"] = f"Bearer {settings.api_token}"
            client = httpx.AsyncClient(
                base_url=settings.api_base_url,
                timeout=settings.api_timeout_s,
                headers=headers,
            )
            self._owns_client = True
        else:
            self._owns_client = False
        self._client = client

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> ApiEnvelope:
        try:
            resp = await self._client.request(method, path, json=json, params=params)
        except httpx.HTTPError as e:
            raise RemoteError(f"{method} {path} failed: {e}") from e
        env = normalize_envelope(resp)
        if not env.success:
            logger.debug("Backend failure %s %s: %s (%s)", method, path, env.message, env.code)
            raise RemoteError(env.message or f"{method} {path} was not successful", status_code=env.code)
        return env

    # ---- catalog ----

    async def list_templates(self, page: int = 0, size: int = 200) -> List[Template]:
        env = await self._request("GET", "/api/bowl_templates/getall", params={"page": page, "size": size})
        return _parse_list(Template, env.data, "template")

    async def list_template_steps(self, template_id: str) -> List[Step]:
        # the template detail view embeds its steps
        env = await self._request("GET", f"/api/bowl_templates/getbyid/{template_id}")
        steps = _as_dict(env.data, "template").get("steps") or []
        return sorted(_parse_list(Step, steps, "template step"), key=lambda s: s.display_order)

    async def list_categories(self) -> List[Category]:
        env = await self._request("GET", "/api/categories/getall")
        return _parse_list(Category, env.data, "category")

    async def list_ingredients_by_category(self, category_id: str) -> List[Ingredient]:
        env = await self._request("GET", "/api/ingredients/getall")
        ings = _parse_list(Ingredient, env.data, "ingredient")
        return [i for i in ings if i.category_id == category_id]

    async def get_ingredient(self, ingredient_id: str) -> Ingredient:
        env = await self._request("GET", f"/api/ingredients/getbyid/{ingredient_id}")
        return _parse(Ingredient, env.data, "ingredient")

    async def list_stores(self) -> List[Store]:
        env = await self._request("GET", "/api/stores/getall")
        return _parse_list(Store, env.data, "store")

    # ---- orders ----

    async def create_order(self, request: OrderRequest) -> Order:
        env = await self._request("POST", "/api/orders/create", json=request.model_dump(by_alias=True))
        return _parse(Order, env.data, "order")

    async def get_order(self, order_id: str) -> Order:
        env = await self._request("GET", f"/api/orders/getbyid/{order_id}")
        return _parse(Order, env.data, "order")

    async def recalculate_order(self, order_id: str) -> Order:
        env = await self._request("POST", f"/api/orders/recalc/{order_id}")
        return _parse(Order, env.data, "order")

    async def confirm_order(self, order_id: str) -> Order:
        env = await self._request("POST", f"/api/orders/confirm/{order_id}")
        return _parse(Order, env.data, "order")

    # ---- bowls ----

    async def create_bowl(self, request: BowlRequest) -> Bowl:
        env = await self._request("POST", "/api/bowls/create", json=request.model_dump(by_alias=True))
        return _parse(Bowl, env.data, "bowl")

    async def get_bowl_with_items(self, bowl_id: str) -> Bowl:
        env = await self._request("GET", f"/api/bowls/getbyid/{bowl_id}/items")
        return _parse(Bowl, env.data, "bowl")

    # ---- bowl items ----

    async def create_bowl_item(self, request: BowlItemRequest) -> BowlItem:
        env = await self._request("POST", "/api/bowl_items/create", json=request.model_dump(by_alias=True))
        return _parse(BowlItem, env.data, "bowl item")

    async def update_bowl_item(self, item_id: str, request: BowlItemRequest) -> Optional[BowlItem]:
        env = await self._request("PUT", f"/api/bowl_items/update/{item_id}", json=request.model_dump(by_alias=True))
        if isinstance(env.data, dict) and env.data.get("id"):
            return _parse(BowlItem, env.data, "bowl item")
        return None

    async def delete_bowl_item(self, item_id: str) -> None:
        await self._request("DELETE", f"/api/bowl_items/delete/{item_id}")

    async def validate_addition(self, bowl_id: str, ingredient_id: str) -> RestrictionCheck:
        env = await self._request(
            "POST",
            "/api/ingredient-restrictions/validate-addition",
            params={"bowlId": bowl_id, "ingredientId": ingredient_id},
        )
        if isinstance(env.data, dict):
            return _parse(RestrictionCheck, env.data, "restriction check")
        return RestrictionCheck()
