from typing import Any, Dict

from dispense.api.schemas import (
    DispenseItemOut,
    NoPendingResponse,
    PendingPaymentResponse,
    ProductOut,
)
from dispense.types.dispense_types import ClaimedOrder, MachineRecord


def no_pending_payload() -> Dict[str, Any]:
    return NoPendingResponse().model_dump()


def pending_payment_payload(mac: str, machine: MachineRecord, claimed: ClaimedOrder) -> Dict[str, Any]:
    order = claimed.order
    response = PendingPaymentResponse(
        mac=mac,
        machine_id=machine.code,
        machine_name=machine.name,
        transaction_id=order.id,
        razorpay_order_id=order.razorpay_order_id,
        razorpay_payment_id=order.razorpay_payment_id,
        amount=order.amount,
        products=[
            DispenseItemOut(
                product=ProductOut(
                    id=item.product.id,
                    name=item.product.name,
                    description=item.product.description,
                ),
                quantity=item.quantity,
                price=item.price,
            )
            for item in claimed.items
        ],
        timestamp=order.created_at.isoformat(),
    )
    payload = response.model_dump(by_alias=True)
    for key in ("razorpayOrderId", "razorpayPaymentId"):
        if payload.get(key) is None:
            payload.pop(key, None)
    return payload
