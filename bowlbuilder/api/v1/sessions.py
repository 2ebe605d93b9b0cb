from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import Field

from bowlbuilder.config import Settings
from bowlbuilder.core.models import BowlItem, SessionSnapshot, WireModel
from bowlbuilder.services.backend import BowlBackend
from bowlbuilder.services.catalog import Catalog
from bowlbuilder.services.exceptions import (
    CardinalityError, RemoteError, ServiceError, ValidationError,
)
from bowlbuilder.services.metrics import MetricsLogger
from bowlbuilder.services.registry import SessionRegistry
from bowlbuilder.services.session import BowlSession
from bowlbuilder.services.store_repo import JSONStoreSelectionRepo

router = APIRouter(prefix="/api/v1/sessions", tags=["sessions"])

# ---- DI helpers --------------------------------------------------------------

def get_settings(request: Request) -> Settings:
    return request.app.state.settings

def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions

def get_backend(request: Request) -> BowlBackend:
    return request.app.state.backend

def _user_id_or_400(request: Request) -> str:
    uid = request.headers.get("X-User-Id")
    if not uid:
        raise HTTPException(status_code=400, detail="Missing X-User-Id header")
    return uid

def get_session(sid: str, request: Request, registry: SessionRegistry = Depends(get_registry)) -> BowlSession:
    session = registry.get(sid)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    if session.user_id != _user_id_or_400(request):
        raise HTTPException(status_code=404, detail="Session not found")
    return session

def _to_http(e: ServiceError) -> HTTPException:
    if isinstance(e, ValidationError):
        return HTTPException(status_code=422, detail={"message": str(e), "field": e.field})
    if isinstance(e, CardinalityError):
        return HTTPException(status_code=409, detail={"message": str(e), "stepId": e.step_id, "limit": e.limit})
    if isinstance(e, RemoteError):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))

# ---- Models ------------------------------------------------------------------

class SessionCreated(WireModel):
    session_id: str
    snapshot: SessionSnapshot
    catalog: Catalog

class StoreChoice(WireModel):
    store_id: str = Field(..., min_length=1)

class TemplateChoice(WireModel):
    template_id: str = Field(..., min_length=1)

class IngredientChoice(WireModel):
    ingredient_id: str = Field(..., min_length=1)

class QuantityChange(WireModel):
    quantity: float

class ReorderRequest(WireModel):
    template_id: str = Field(..., min_length=1)
    ingredient_ids: List[str] = Field(default_factory=list)

class AddResult(WireModel):
    item: Optional[BowlItem] = None
    snapshot: SessionSnapshot

class UpdateResult(WireModel):
    updated: bool
    snapshot: SessionSnapshot

class ReorderResult(WireModel):
    skipped: List[str]
    snapshot: SessionSnapshot

# ---- Routes: lifecycle -------------------------------------------------------

@router.post("", response_model=SessionCreated, status_code=status.HTTP_201_CREATED)
async def open_session(
    request: Request,
    settings: Settings = Depends(get_settings),
    registry: SessionRegistry = Depends(get_registry),
    backend: BowlBackend = Depends(get_backend),
):
    user_id = _user_id_or_400(request)
    session = BowlSession(
        backend,
        user_id,
        settings=settings,
        store_repo=JSONStoreSelectionRepo(settings),
        metrics=MetricsLogger(settings),
    )
    catalog = await session.hydrate()
    sid = registry.add(session)
    return SessionCreated(session_id=sid, snapshot=session.snapshot(), catalog=catalog)


@router.get("/{sid}", response_model=SessionSnapshot)
async def get_snapshot(session: BowlSession = Depends(get_session)):
    return session.snapshot()


@router.delete("/{sid}")
async def close_session(sid: str, session: BowlSession = Depends(get_session),
                        registry: SessionRegistry = Depends(get_registry)):
    registry.close(sid)
    return {"ok": True}


@router.get("/{sid}/catalog", response_model=Catalog)
async def get_catalog(session: BowlSession = Depends(get_session)):
    return session.catalog

# ---- Routes: context & navigation --------------------------------------------

@router.put("/{sid}/store", response_model=SessionSnapshot)
async def choose_store(body: StoreChoice, session: BowlSession = Depends(get_session)):
    try:
        session.select_store(body.store_id)
    except ServiceError as e:
        raise _to_http(e)
    return session.snapshot()


@router.put("/{sid}/template", response_model=SessionSnapshot)
async def choose_template(body: TemplateChoice, session: BowlSession = Depends(get_session)):
    try:
        await session.select_template(body.template_id)
    except ServiceError as e:
        raise _to_http(e)
    return session.snapshot()


@router.post("/{sid}/start", response_model=SessionSnapshot)
async def start_flow(session: BowlSession = Depends(get_session)):
    try:
        await session.start()
    except ServiceError as e:
        raise _to_http(e)
    return session.snapshot()


@router.post("/{sid}/next", response_model=SessionSnapshot)
async def next_step(session: BowlSession = Depends(get_session)):
    try:
        await session.next_step()
    except ServiceError as e:
        raise _to_http(e)
    return session.snapshot()


@router.post("/{sid}/prev", response_model=SessionSnapshot)
async def prev_step(session: BowlSession = Depends(get_session)):
    try:
        await session.prev_step()
    except ServiceError as e:
        raise _to_http(e)
    return session.snapshot()


@router.post("/{sid}/goto/{index}", response_model=SessionSnapshot)
async def goto_step(index: int, session: BowlSession = Depends(get_session)):
    try:
        await session.goto_step(index)
    except ServiceError as e:
        raise _to_http(e)
    return session.snapshot()

# ---- Routes: bowl mutations --------------------------------------------------

@router.post("/{sid}/ingredients", response_model=AddResult)
async def add_ingredient(body: IngredientChoice, session: BowlSession = Depends(get_session)):
    try:
        item = await session.add_ingredient(body.ingredient_id)
    except ServiceError as e:
        raise _to_http(e)
    return AddResult(item=item, snapshot=session.snapshot())


@router.delete("/{sid}/items/{item_id}", response_model=SessionSnapshot)
async def remove_item(item_id: str, session: BowlSession = Depends(get_session)):
    try:
        await session.remove_item(item_id)
    except ServiceError as e:
        raise _to_http(e)
    return session.snapshot()


@router.patch("/{sid}/items/{item_id}", response_model=UpdateResult)
async def update_item(item_id: str, body: QuantityChange, session: BowlSession = Depends(get_session)):
    try:
        updated = await session.update_item_qty(item_id, body.quantity)
    except ServiceError as e:
        raise _to_http(e)
    return UpdateResult(updated=updated, snapshot=session.snapshot())


@router.post("/{sid}/recalc", response_model=SessionSnapshot)
async def recalc(session: BowlSession = Depends(get_session)):
    await session.recalc_totals()
    return session.snapshot()


@router.post("/{sid}/confirm", response_model=SessionSnapshot)
async def confirm(session: BowlSession = Depends(get_session)):
    try:
        await session.confirm_order()
    except ServiceError as e:
        raise _to_http(e)
    return session.snapshot()


@router.post("/{sid}/reorder", response_model=ReorderResult)
async def reorder(body: ReorderRequest, session: BowlSession = Depends(get_session)):
    try:
        skipped = await session.reorder(body.template_id, body.ingredient_ids)
    except ServiceError as e:
        raise _to_http(e)
    return ReorderResult(skipped=skipped, snapshot=session.snapshot())
