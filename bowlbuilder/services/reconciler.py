from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Optional

from bowlbuilder.core.models import BowlItem, ReconcileOutcome
from .backend import BowlBackend
from .metrics import MetricsLogger

logger = logging.getLogger(__name__)


class TotalsReconciler:
    """
    Pulls server-computed totals back after every mutation.

    The backend owns pricing: we ask it to recalculate the order, then read
    the order total and the bowl (line price + canonical items) concurrently.
    Whichever read succeeds is applied; a failed read leaves its local values
    as they were and the outcome is reported as `stale`. Never raises.
    """

    def __init__(self, backend: BowlBackend, metrics: Optional[MetricsLogger] = None):
        self._backend = backend
        self._metrics = metrics
        self.order_total: float = 0
        self.bowl_line_price: float = 0
        self.bowl_items: List[BowlItem] = []
        self.last_outcome: Optional[ReconcileOutcome] = None

    def find_item(self, item_id: str) -> Optional[BowlItem]:
        return next((it for it in self.bowl_items if it.id == item_id), None)

    def reset(self) -> None:
        self.order_total = 0
        self.bowl_line_price = 0
        self.bowl_items = []
        self.last_outcome = None

    async def recalc_totals(self, order_id: Optional[str], bowl_id: Optional[str]) -> ReconcileOutcome:
        if not order_id:
            outcome = ReconcileOutcome(status="skipped")
            self.last_outcome = outcome
            return outcome

        t0 = time.perf_counter()
        errors: List[str] = []
        try:
            await self._backend.recalculate_order(order_id)
        except Exception as e:  # never block the calling mutation
            logger.warning("Recalculation of order %s failed: %s", order_id, e)
            errors.append(f"recalculate: {e}")
        else:
            errors.extend(await self._refresh(order_id, bowl_id))

        outcome = ReconcileOutcome(status="stale" if errors else "ok", errors=errors)
        self.last_outcome = outcome
        self._record(outcome, order_id, (time.perf_counter() - t0) * 1000.0)
        return outcome

    async def _refresh(self, order_id: str, bowl_id: Optional[str]) -> List[str]:
        if bowl_id:
            order_res, bowl_res = await asyncio.gather(
                self._backend.get_order(order_id),
                self._backend.get_bowl_with_items(bowl_id),
                return_exceptions=True,
            )
        else:
            (order_res,) = await asyncio.gather(self._backend.get_order(order_id), return_exceptions=True)
            bowl_res = None

        errors: List[str] = []
        if isinstance(order_res, BaseException):
            logger.warning("Could not refresh order %s: %s", order_id, order_res)
            errors.append(f"order: {order_res}")
        else:
            self.order_total = order_res.total_amount

        if isinstance(bowl_res, BaseException):
            logger.warning("Could not refresh bowl %s: %s", bowl_id, bowl_res)
            errors.append(f"bowl: {bowl_res}")
        elif bowl_res is not None:
            self.bowl_line_price = bowl_res.line_price
            self.bowl_items = list(bowl_res.items)
        return errors

    def _record(self, outcome: ReconcileOutcome, order_id: str, duration_ms: float) -> None:
        if self._metrics is None:
            return
        self._metrics.log_latency(
            "recalc_totals", duration_ms, corr_id=order_id,
            status=outcome.status, errors=len(outcome.errors),
        )
