import logging
from datetime import timedelta
from temporalio import activity

logger = logging.getLogger("liveness")


@activity.defn
async def activity_mark_stale_machines_offline(stale_after_seconds: int) -> int:
    from sqlalchemy import or_, update
    from ..db import session as db_session
    from ..db.models import Machine, utcnow

    cutoff = utcnow() - timedelta(seconds=stale_after_seconds)
    with db_session.SessionLocal() as db:
        result = db.execute(
            update(Machine)
            .where(
                Machine.asset_online.is_(True),
                or_(Machine.last_ping.is_(None), Machine.last_ping < cutoff),
            )
            .values(asset_online=False)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        changed = result.rowcount or 0

    if changed:
        logger.info(f"[Activity] marked {changed} machine(s) offline, no contact since {cutoff.isoformat()}")
    else:
        logger.debug("[Activity] no stale machines")
    return changed
