# bowlbuilder/core/models.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal, Optional, List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for records exchanged with the ordering backend (camelCase on the wire)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ---------- Reference data (read-only for a session) ----------

class Step(WireModel):
    id: str
    template_id: Optional[str] = None
    category_id: str
    min_items: int = Field(0, ge=0)
    max_items: int = Field(0, ge=0, description="0 means no upper bound")
    default_qty: Optional[float] = Field(None, description="Portion count, not a mass")
    display_order: int = 0

    @field_validator("min_items", "max_items", "display_order", mode="before")
    @classmethod
    def _none_as_zero(cls, v):
        return 0 if v is None else v

    @model_validator(mode="after")
    def _check_bounds(self) -> "Step":
        if self.max_items > 0 and self.min_items > self.max_items:
            raise ValueError(f"Step {self.id}: minItems ({self.min_items}) exceeds maxItems ({self.max_items})")
        return self

    def is_bounded(self) -> bool:
        return self.max_items > 0


class Template(WireModel):
    id: str
    name: str = ""
    description: Optional[str] = None
    is_active: Optional[bool] = None
    steps: List[Step] = Field(default_factory=list)

    @field_validator("steps", mode="before")
    @classmethod
    def _none_as_empty(cls, v):
        return [] if v is None else v

    def ordered_steps(self) -> List[Step]:
        return sorted(self.steps, key=lambda s: s.display_order)


class Category(WireModel):
    id: str
    name: str = ""
    kind: Optional[str] = None
    display_order: Optional[int] = None


class Ingredient(WireModel):
    id: str
    name: str = ""
    category_id: Optional[str] = None
    unit_price: float = 0
    standard_quantity: Optional[float] = Field(None, description="Mass per portion")
    unit: Optional[str] = None

    @field_validator("unit_price", mode="before")
    @classmethod
    def _price_none_as_zero(cls, v):
        return 0 if v is None else v


class Store(WireModel):
    id: str
    name: str = ""
    address: Optional[str] = None
    phone: Optional[str] = None


# ---------- Order aggregate (owned by the backend) ----------

class Order(WireModel):
    id: str
    store_id: Optional[str] = None
    user_id: Optional[str] = None
    status: Optional[str] = None
    subtotal_amount: float = 0
    promotion_total: float = 0
    total_amount: float = 0
    pickup_at: Optional[str] = None
    note: Optional[str] = None

    @field_validator("subtotal_amount", "promotion_total", "total_amount", mode="before")
    @classmethod
    def _amount_none_as_zero(cls, v):
        return 0 if v is None else v


class BowlItem(WireModel):
    id: str
    bowl_id: Optional[str] = None
    ingredient_id: Optional[str] = None
    quantity: float = 0
    unit_price: float = 0

    @field_validator("quantity", "unit_price", mode="before")
    @classmethod
    def _none_as_zero(cls, v):
        return 0 if v is None else v


class Bowl(WireModel):
    id: str
    order_id: Optional[str] = None
    template_id: Optional[str] = None
    name: Optional[str] = None
    instruction: Optional[str] = None
    line_price: float = 0
    items: List[BowlItem] = Field(default_factory=list)

    @field_validator("line_price", mode="before")
    @classmethod
    def _price_none_as_zero(cls, v):
        return 0 if v is None else v

    @field_validator("items", mode="before")
    @classmethod
    def _none_as_empty(cls, v):
        return [] if v is None else v


# ---------- Request payloads ----------

class OrderRequest(WireModel):
    store_id: str
    user_id: str
    pickup_at: str
    note: str = ""


class BowlRequest(WireModel):
    order_id: str
    template_id: str
    name: str
    instruction: str = ""


class BowlItemRequest(WireModel):
    bowl_id: str
    ingredient_id: str
    quantity: float = Field(..., gt=0)
    unit_price: float = Field(0, ge=0)


# ---------- Transport ----------

class ApiEnvelope(BaseModel):
    """Normalized backend response: success flag plus optional message."""
    success: bool
    code: int = 200
    message: str = ""
    data: Any = None


class RestrictionCheck(WireModel):
    valid: Optional[bool] = None
    message: Optional[str] = None


# ---------- Session read models ----------

class ReconcileOutcome(BaseModel):
    """Result of a totals refresh. `stale` means some local values were left as they were."""
    status: Literal["ok", "stale", "skipped"]
    errors: List[str] = Field(default_factory=list)
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_stale(self) -> bool:
        return self.status == "stale"


class StepProgress(WireModel):
    step_id: str
    category_id: str
    min_items: int
    max_items: int
    selected: int
    can_advance: bool


class SessionSnapshot(WireModel):
    user_id: str
    store_id: Optional[str] = None
    template_id: Optional[str] = None
    order_id: Optional[str] = None
    bowl_id: Optional[str] = None
    current_step_index: int = -1
    completed: bool = False
    steps: List[StepProgress] = Field(default_factory=list)
    step_ingredients: List[Ingredient] = Field(default_factory=list)
    bowl_items: List[BowlItem] = Field(default_factory=list)
    order_total: float = 0
    bowl_line_price: float = 0
    last_reconcile: Optional[ReconcileOutcome] = None
