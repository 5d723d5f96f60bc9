"""
Dispense claim for paid orders.

An order moves from PENDING (paid, not dispensed) to DISPENSED exactly once.
The claim is a read of the oldest pending order followed by a conditional
write guarded by ``dispensed = false``. Whoever's write lands owns the
dispense; everyone else sees nothing to do.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from dispense.db.models import utcnow
from dispense.services.store import OrderStore, ProductCatalog
from dispense.types.dispense_types import (
    UNKNOWN_PRODUCT_NAME,
    ClaimedOrder,
    DispenseItem,
    LineItem,
    ProductInfo,
)

logger = logging.getLogger("resolver")


class DispenseResolver:
    def __init__(
        self,
        store: OrderStore,
        catalog: ProductCatalog,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.catalog = catalog
        self.clock = clock

    def claim_next_pending_order(self, machine_id: str) -> Optional[ClaimedOrder]:
        """
        Claim the oldest pending order for ``machine_id``.

        Returns None when nothing is pending or when another caller claimed
        the same order first. A lost race is not retried; the device polls
        again on its own schedule. Store failures propagate as
        ``StoreUnavailableError``.
        """
        pending = self.store.oldest_pending(machine_id)
        if pending is None:
            logger.debug(f"[Resolver] no pending order for machine {machine_id}")
            return None

        dispensed_at = self.clock()
        if not self.store.mark_dispensed(pending.id, dispensed_at):
            logger.info(f"[Resolver] lost claim race: order {pending.id} on machine {machine_id}")
            return None

        logger.info(f"[Resolver] claimed order {pending.id} for machine {machine_id}")
        items = [self._resolve_item(machine_id, pending.id, raw) for raw in pending.line_items]
        return ClaimedOrder(order=pending, dispensed_at=dispensed_at, items=items)

    def _resolve_item(self, machine_id: str, order_id: str, raw: Dict[str, Any]) -> DispenseItem:
        # The order is already committed as dispensed, so nothing here may raise.
        try:
            line = LineItem.from_json(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"[Resolver] malformed line item on order {order_id}: {raw!r} ({e})")
            line = LineItem(product_id=None, quantity=1, price=0.0, name=raw.get("name"))

        info = None
        if line.product_id is not None:
            try:
                info = self.catalog.describe(machine_id, line.product_id)
            except Exception as e:
                logger.warning(
                    f"[Resolver] product lookup failed on order {order_id}, product {line.product_id}: {e}"
                )
            if info is None:
                logger.warning(f"[Resolver] product {line.product_id} unresolved on order {order_id}")

        if info is None:
            info = ProductInfo(
                id=line.product_id or "0",
                name=line.name or UNKNOWN_PRODUCT_NAME,
                description=line.description or "",
            )
        return DispenseItem(product=info, quantity=line.quantity, price=line.price)
