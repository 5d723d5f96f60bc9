import logging
from typing import Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dispense.db.models import Machine, utcnow
from dispense.errors import StoreUnavailableError
from dispense.types.dispense_types import MachineRecord, TelemetryUpdate

logger = logging.getLogger("registry")


def _record(machine: Machine) -> MachineRecord:
    return MachineRecord(id=machine.id, code=machine.machine_id, name=machine.name)


class MachineRegistry:
    """Resolves devices to machines and records their liveness."""

    def __init__(self, db: Session):
        self.db = db

    def _lookup(self, stmt) -> list:
        try:
            return list(self.db.execute(stmt.limit(2)).scalars().all())
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"[Registry] machine lookup failed: {e}")
            raise StoreUnavailableError("Machine lookup failed") from e

    def resolve(self, hardware_address: str) -> Optional[MachineRecord]:
        """Case-insensitive exact match on the hardware address."""
        rows = self._lookup(
            select(Machine).where(func.lower(Machine.mac_id) == hardware_address.strip().lower())
        )
        if not rows:
            return None
        if len(rows) > 1:
            logger.warning(f"[Registry] hardware address {hardware_address} matches several machines")
            return None
        return _record(rows[0])

    def resolve_code(self, code: str) -> Optional[MachineRecord]:
        """Look a machine up by logical code, falling back to its internal id."""
        rows = self._lookup(select(Machine).where(or_(Machine.machine_id == code, Machine.id == code)))
        if not rows:
            return None
        if len(rows) > 1:
            by_code = [m for m in rows if m.machine_id == code]
            if len(by_code) != 1:
                logger.warning(f"[Registry] machine code {code} is ambiguous")
                return None
            return _record(by_code[0])
        return _record(rows[0])

    def touch(self, machine_id: str, telemetry: Optional[TelemetryUpdate] = None) -> bool:
        """
        Mark the machine online and write whichever telemetry was reported.

        Fields not reported keep their previous value. Store failures are
        logged and reported as False; they never raise.
        """
        values = {"asset_online": True, "last_ping": utcnow()}
        if telemetry is not None:
            values.update(telemetry.present())
        try:
            self.db.execute(
                update(Machine)
                .where(Machine.id == machine_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(f"[Registry] liveness update failed for machine {machine_id}: {e}")
            return False
        return True
