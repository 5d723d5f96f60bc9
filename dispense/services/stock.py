import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dispense.db.models import MachineProduct, utcnow
from dispense.errors import NotFoundError, StoreUnavailableError, UpdateFailedError

logger = logging.getLogger("stock")

MODE_SET = "set"
STOCK_WRITE_ATTEMPTS = 5


@dataclass(frozen=True)
class StockChange:
    product_id: str
    old_stock: int
    new_stock: int


def find_machine_product(db: Session, machine_id: str, product_id: str) -> Optional[MachineProduct]:
    try:
        return db.execute(
            select(MachineProduct)
            .where(MachineProduct.machine_id == machine_id, MachineProduct.product_id == product_id)
            .limit(1)
        ).scalars().first()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[Stock] machine product lookup failed: {machine_id} / {product_id}: {e}")
        raise StoreUnavailableError("Machine product lookup failed") from e


def next_stock(current: int, quantity: int, mode: Optional[str] = None) -> int:
    if mode == MODE_SET:
        return quantity
    return max(0, current - quantity)


def _read_stock(db: Session, mapping_id: str) -> Optional[int]:
    return db.execute(select(MachineProduct.stock).where(MachineProduct.id == mapping_id)).scalar_one_or_none()


def write_stock(db: Session, mapping_id: str, quantity: int, mode: Optional[str] = None) -> Tuple[int, int]:
    """
    Apply a stock change to one slot and return ``(old, new)`` as written.

    The write only lands if the slot still holds the value it was computed
    from; otherwise the slot is re-read and the change recomputed.
    """
    try:
        for _ in range(STOCK_WRITE_ATTEMPTS):
            current = _read_stock(db, mapping_id)
            new_stock = next_stock(current or 0, quantity, mode)
            unchanged = MachineProduct.stock.is_(None) if current is None else MachineProduct.stock == current
            result = db.execute(
                update(MachineProduct)
                .where(MachineProduct.id == mapping_id, unchanged)
                .values(stock=new_stock, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            db.commit()
            if result.rowcount == 1:
                return current or 0, new_stock
            logger.info(f"[Stock] slot {mapping_id} changed during update, retrying")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[Stock] stock write failed for slot {mapping_id}: {e}")
        raise UpdateFailedError("Failed to update stock") from e

    logger.error(f"[Stock] slot {mapping_id} kept changing, gave up after {STOCK_WRITE_ATTEMPTS} attempts")
    raise UpdateFailedError("Failed to update stock")


def update_product_stock(
    db: Session, machine_id: str, product_id: str, quantity: int, mode: Optional[str] = None
) -> StockChange:
    """Apply a device-reported stock change to one machine-product slot."""
    mapping = find_machine_product(db, machine_id, product_id)
    if mapping is None:
        logger.info(f"[Stock] machine product not found: {machine_id} / {product_id}")
        raise NotFoundError("Machine product not found")

    old_stock, new_stock = write_stock(db, mapping.id, quantity, mode)
    logger.info(f"[Stock] {machine_id} / product {product_id}: {old_stock} -> {new_stock}")
    return StockChange(product_id=product_id, old_stock=old_stock, new_stock=new_stock)
