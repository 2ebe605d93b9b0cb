from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from bowlbuilder.core.models import BowlRequest, OrderRequest, Template
from .backend import BowlBackend
from .exceptions import ValidationError

logger = logging.getLogger(__name__)


class OrderBowlProvisioner:
    """
    Lazily creates the session's Order and its Bowl, exactly once.

    Order and Bowl are two separate backend calls (the Bowl needs the Order's
    id). Concurrent callers share one in-flight creation task instead of each
    racing to create an Order. If the Bowl call fails after the Order
    succeeded, the order id is kept and the next call only creates the Bowl.
    """

    def __init__(self, backend: BowlBackend, pickup_lead: timedelta = timedelta(hours=1),
                 default_bowl_name: str = "Healthy Bowl"):
        self._backend = backend
        self._pickup_lead = pickup_lead
        self._default_bowl_name = default_bowl_name
        self.order_id: Optional[str] = None
        self.bowl_id: Optional[str] = None
        self._pending: Optional[asyncio.Task] = None

    @property
    def ready(self) -> bool:
        return bool(self.order_id and self.bowl_id)

    async def ensure(
        self,
        user_id: Optional[str],
        store_id: Optional[str],
        template: Optional[Template],
    ) -> Tuple[str, str]:
        if self.ready:
            return self.order_id, self.bowl_id
        if not user_id:
            raise ValidationError("Missing user identity", field="userId")
        if not store_id:
            raise ValidationError("No store selected", field="storeId")
        if template is None:
            raise ValidationError("No template selected", field="templateId")

        if self._pending is None:
            self._pending = asyncio.create_task(self._provision(user_id, store_id, template))
        pending = self._pending
        try:
            return await asyncio.shield(pending)
        except asyncio.CancelledError:
            # shield keeps the task alive when only this caller is cancelled,
            # so a cancelled task means reset() abandoned it
            if pending.cancelled():
                raise ValidationError("Session context changed", field="storeId") from None
            raise
        finally:
            if pending.done() and self._pending is pending:
                self._pending = None

    async def _provision(self, user_id: str, store_id: str, template: Template) -> Tuple[str, str]:
        if not self.order_id:
            pickup_at = datetime.now(timezone.utc) + self._pickup_lead
            order = await self._backend.create_order(OrderRequest(
                store_id=store_id,
                user_id=user_id,
                pickup_at=pickup_at.isoformat(),
                note="",
            ))
            self.order_id = order.id
            logger.info("Created order %s for user %s at store %s", order.id, user_id, store_id)

        bowl = await self._backend.create_bowl(BowlRequest(
            order_id=self.order_id,
            template_id=template.id,
            name=template.name or self._default_bowl_name,
            instruction="",
        ))
        self.bowl_id = bowl.id
        logger.info("Created bowl %s on order %s", bowl.id, self.order_id)
        return self.order_id, self.bowl_id

    def reset(self) -> None:
        """Forget ids and abandon any in-flight creation."""
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None
        self.order_id = None
        self.bowl_id = None
