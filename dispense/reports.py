"""
Operator report of paid orders and their dispense state.

Run ``python -m dispense.reports [MAC]`` to print it for every machine or for
the machine owning a hardware address.
"""

import sys
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session
from tabulate import tabulate

from dispense.db.models import Machine, Order, PAYMENT_PAID
from dispense.services.registry import MachineRegistry

HEADERS = ["Transaction ID", "Machine", "Gateway Order", "Amount", "Created At", "Dispensed", "Dispensed At"]


def pending_rows(db: Session, mac: Optional[str] = None) -> List[list]:
    stmt = (
        select(Order, Machine.machine_id)
        .join(Machine, Machine.id == Order.machine_id)
        .where(Order.payment_status == PAYMENT_PAID)
        .order_by(Order.created_at.desc())
    )
    if mac:
        machine = MachineRegistry(db).resolve(mac)
        if machine is None:
            return []
        stmt = stmt.where(Order.machine_id == machine.id)

    rows = []
    for order, code in db.execute(stmt).all():
        amount = order.total_amount if order.total_amount is not None else order.amount
        rows.append([
            order.id,
            code,
            order.razorpay_order_id,
            amount,
            order.created_at.isoformat() if order.created_at else None,
            "yes" if order.dispensed else "no",
            order.dispensed_at.isoformat() if order.dispensed_at else None,
        ])
    return rows


def summarize(rows: List[list]) -> dict:
    dispensed = sum(1 for row in rows if row[5] == "yes")
    return {"paid": len(rows), "dispensed": dispensed, "pending": len(rows) - dispensed}


def render_pending(rows: List[list]) -> str:
    return tabulate(rows, headers=HEADERS, tablefmt="grid")


def main(argv: List[str]) -> int:
    from dispense.db.session import SessionLocal

    mac = argv[1] if len(argv) > 1 else None
    with SessionLocal() as db:
        rows = pending_rows(db, mac)
    print(render_pending(rows))
    totals = summarize(rows)
    print(f"\nPaid: {totals['paid']}  Dispensed: {totals['dispensed']}  Pending: {totals['pending']}")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
