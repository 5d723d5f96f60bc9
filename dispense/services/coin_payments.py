"""
Coin payments.

A coin sale is dispensed by the machine before it is reported, so the record
is created already dispensed. It never passes through the online-payment
claim.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dispense.db.models import CoinPayment, Product, new_id, utcnow
from dispense.errors import NotFoundError, StoreUnavailableError, UpdateFailedError
from dispense.services.stock import find_machine_product, write_stock
from dispense.types.dispense_types import UNKNOWN_PRODUCT_NAME

logger = logging.getLogger("coin-payment")


@dataclass(frozen=True)
class CoinPaymentResult:
    payment_id: str
    amount: float
    product_name: str
    old_stock: int
    new_stock: int


def _product_name(db: Session, product_id: str) -> str:
    try:
        product = db.get(Product, product_id)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[CoinPayment] product lookup failed: {product_id}: {e}")
        raise StoreUnavailableError("Product lookup failed") from e
    return product.name if product else UNKNOWN_PRODUCT_NAME


def record_coin_payment(db: Session, machine_id: str, product_id: str, amount_in_paisa: int) -> CoinPaymentResult:
    mapping = find_machine_product(db, machine_id, product_id)
    if mapping is None:
        logger.warning(f"[CoinPayment] machine product not found: {machine_id} / {product_id}")
        raise NotFoundError("Machine product not found")

    product_name = _product_name(db, product_id)
    now = utcnow()

    payment_id = new_id()
    payment = CoinPayment(
        id=payment_id,
        machine_id=machine_id,
        product_id=product_id,
        amount_in_paisa=amount_in_paisa,
        quantity=1,
        dispensed=True,
        dispensed_at=now,
        created_at=now,
    )
    try:
        db.add(payment)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[CoinPayment] insert failed: {machine_id} / {product_id}: {e}")
        raise StoreUnavailableError("Failed to record coin payment", code="INSERT_FAILED") from e

    try:
        old_stock, new_stock = write_stock(db, mapping.id, 1)
    except UpdateFailedError as e:
        # The payment row is committed; a stale stock count is corrected by the next stock sync.
        logger.error(f"[CoinPayment] stock update failed: {machine_id} / {product_id}: {e.message}")
        old_stock = new_stock = mapping.stock or 0

    amount = amount_in_paisa / 100
    logger.info(
        f"[CoinPayment] recorded {machine_id} / {product_name} / {amount:.2f} / stock {old_stock} -> {new_stock}"
    )
    return CoinPaymentResult(
        payment_id=payment_id,
        amount=amount,
        product_name=product_name,
        old_stock=old_stock,
        new_stock=new_stock,
    )
