"""
Order store and product catalog.

The resolver only talks to these two protocols, so the compare-and-swap claim
can be exercised against an in-memory store as well as the SQL one.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dispense.db.models import Order, Product, MachineProduct, PAYMENT_PAID
from dispense.errors import StoreUnavailableError
from dispense.types.dispense_types import PendingOrder, ProductInfo

logger = logging.getLogger("store")


class OrderStore(Protocol):
    def oldest_pending(self, machine_id: str) -> Optional[PendingOrder]:
        """Return the oldest paid, undispensed order for the machine."""
        ...

    def mark_dispensed(self, order_id: str, at: datetime) -> bool:
        """Flip ``dispensed`` to true if it is still false. True only for the winner."""
        ...


class ProductCatalog(Protocol):
    def describe(self, machine_id: str, product_id: str) -> Optional[ProductInfo]:
        ...


def _line_items(raw: Any) -> List[Dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    return [item for item in raw if isinstance(item, dict)]


class SqlOrderStore:
    def __init__(self, db: Session):
        self.db = db

    def oldest_pending(self, machine_id: str) -> Optional[PendingOrder]:
        stmt = (
            select(Order)
            .where(
                Order.machine_id == machine_id,
                Order.payment_status == PAYMENT_PAID,
                Order.dispensed.is_(False),
            )
            .order_by(Order.created_at.asc(), Order.id.asc())
            .limit(1)
        )
        try:
            row = self.db.execute(stmt).scalars().first()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"[Store] pending order lookup failed for machine {machine_id}: {e}")
            raise StoreUnavailableError("Pending order lookup failed") from e

        if row is None:
            return None
        return PendingOrder(
            id=row.id,
            machine_id=row.machine_id,
            amount=row.total_amount if row.total_amount is not None else (row.amount or 0),
            created_at=row.created_at,
            line_items=_line_items(row.items),
            razorpay_order_id=row.razorpay_order_id,
            razorpay_payment_id=row.razorpay_payment_id,
        )

    def mark_dispensed(self, order_id: str, at: datetime) -> bool:
        stmt = (
            update(Order)
            .where(
                Order.id == order_id,
                Order.payment_status == PAYMENT_PAID,
                Order.dispensed.is_(False),
            )
            .values(dispensed=True, dispensed_at=at)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"[Store] dispense claim failed for order {order_id}: {e}")
            raise StoreUnavailableError("Dispense claim failed") from e
        return result.rowcount == 1


class SqlProductCatalog:
    def __init__(self, db: Session):
        self.db = db

    def describe(self, machine_id: str, product_id: str) -> Optional[ProductInfo]:
        mapped = self.db.execute(
            select(Product)
            .join(MachineProduct, MachineProduct.product_id == Product.id)
            .where(MachineProduct.machine_id == machine_id, Product.id == product_id)
            .limit(1)
        ).scalars().first()
        product = mapped or self.db.get(Product, product_id)
        if product is None:
            return None
        return ProductInfo(id=product.id, name=product.name, description=product.description or "")
