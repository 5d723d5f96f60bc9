import logging
logger = logging.getLogger("poll")

from contextlib import asynccontextmanager
from typing import Any, Optional
from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from temporalio.client import Client
from temporalio.exceptions import WorkflowAlreadyStartedError

from dispense.api.schemas import CoinPaymentRequest, PingResponse, StockUpdateRequest, parse_ping
from dispense.api.serializers import no_pending_payload, pending_payment_payload
from dispense.config import get_settings
from dispense.db.session import SessionLocal, init_db
from dispense.errors import DispenseError, MissingFieldError, NotFoundError, StoreUnavailableError
from dispense.logs import configure_logging
from dispense.reports import pending_rows, render_pending, summarize
from dispense.services.coin_payments import record_coin_payment
from dispense.services.registry import MachineRegistry
from dispense.services.resolver import DispenseResolver
from dispense.services.stock import update_product_stock
from dispense.services.store import SqlOrderStore, SqlProductCatalog
from dispense.types.dispense_types import TelemetryUpdate
from dispense.workflows import MachineLivenessWorkflow

telemetry_logger = logging.getLogger("telemetry")


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(get_settings().log_level)
    init_db()
    yield


app = FastAPI(lifespan=lifespan)
app.state.client = None


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@app.exception_handler(DispenseError)
async def dispense_error_handler(request: Request, exc: DispenseError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def require_text(value: Optional[str], message: str, code: str) -> str:
    if value is None or not value.strip():
        raise MissingFieldError(message, code=code)
    return value.strip()


@app.get("/api/payment_success", tags=["Device"])
def payment_success(mac: Optional[str] = None, firmware: Optional[str] = None, db: Session = Depends(get_db)):
    mac = require_text(mac, "MAC address is required", "MISSING_MAC")
    registry = MachineRegistry(db)

    try:
        machine = registry.resolve(mac)
    except StoreUnavailableError as e:
        logger.error(f"[Poll] machine lookup failed for MAC {mac}: {e.message}")
        return no_pending_payload()
    if machine is None:
        logger.info(f"[Poll] machine not registered for MAC {mac}")
        return no_pending_payload()

    registry.touch(machine.id, TelemetryUpdate(firmware_version=firmware or None))

    resolver = DispenseResolver(SqlOrderStore(db), SqlProductCatalog(db))
    try:
        claimed = resolver.claim_next_pending_order(machine.id)
    except DispenseError as e:
        logger.error(f"[Poll] claim failed for machine {machine.code}: {e.message}")
        raise

    if claimed is None:
        return no_pending_payload()

    logger.info(f"[Poll] dispensing order {claimed.order.id} on machine {machine.code} ({len(claimed.items)} item(s))")
    return pending_payment_payload(mac, machine, claimed)


@app.post("/api/machine-ping", tags=["Device"])
async def machine_ping(request: Request, db: Session = Depends(get_db)):
    try:
        body: Any = await request.json()
    except ValueError:
        body = None
    await run_in_threadpool(record_ping, db, parse_ping(body))
    return PingResponse().model_dump()


def record_ping(db: Session, ping) -> None:
    code = (ping.machine_id or "").strip()
    if not code or code == "UNKNOWN":
        return

    registry = MachineRegistry(db)
    try:
        machine = registry.resolve_code(code)
    except DispenseError as e:
        telemetry_logger.warning(f"[Telemetry] ping for {code} not recorded: {e.message}")
        return
    if machine is None:
        telemetry_logger.info(f"[Telemetry] ping from unknown machine {code}")
        return
    if registry.touch(machine.id, ping.telemetry()):
        telemetry_logger.debug(f"[Telemetry] ping recorded for machine {machine.code}")


@app.get("/api/get-machine-id-from-mac", tags=["Device"])
def get_machine_id_from_mac(mac: Optional[str] = None, firmware: Optional[str] = None, db: Session = Depends(get_db)):
    mac = require_text(mac, "MAC address is required", "INVALID_MAC")
    registry = MachineRegistry(db)
    machine = registry.resolve(mac)
    if machine is None:
        raise NotFoundError("Machine not found", code="MACHINE_NOT_FOUND")

    if firmware:
        registry.touch(machine.id, TelemetryUpdate(firmware_version=firmware))
    return {"success": True, "data": {"machine_id": machine.code, "machine_name": machine.name}}


def resolve_machine_or_404(db: Session, code: str):
    machine = MachineRegistry(db).resolve_code(code)
    if machine is None:
        raise NotFoundError("Machine product not found")
    return machine


@app.post("/api/coin-payment", tags=["Device"])
def coin_payment(payload: CoinPaymentRequest, db: Session = Depends(get_db)):
    if not payload.machine_id or not payload.product_id or not payload.amount_in_paisa:
        raise MissingFieldError("Missing required fields")

    machine = resolve_machine_or_404(db, payload.machine_id)
    result = record_coin_payment(db, machine.id, payload.product_id, payload.amount_in_paisa)
    return {
        "success": True,
        "data": {
            "message": "Coin payment recorded and stock updated",
            "payment_id": result.payment_id,
            "amount": result.amount,
            "product_name": result.product_name,
            "old_stock": result.old_stock,
            "new_stock": result.new_stock,
        },
    }


@app.post("/api/update-product-stock", tags=["Device"])
def product_stock(payload: StockUpdateRequest, db: Session = Depends(get_db)):
    if not payload.machine_id or not payload.product_id or payload.quantity is None:
        raise MissingFieldError("Missing required fields")

    machine = resolve_machine_or_404(db, payload.machine_id)
    change = update_product_stock(db, machine.id, payload.product_id, payload.quantity, payload.mode)
    return {
        "success": True,
        "data": {
            "message": "Stock updated successfully",
            "product_id": change.product_id,
            "old_stock": change.old_stock,
            "new_stock": change.new_stock,
        },
    }


@app.post("/start-liveness", tags=["System"])
async def start_liveness():
    settings = get_settings()
    try:
        if app.state.client is None:
            logger.info("Connecting Temporal client...")
            app.state.client = await Client.connect(settings.temporal_address)
    except Exception as e:
        raise HTTPException(status_code=503, detail=f"Temporal client not connected: {str(e)}")

    try:
        handle = await app.state.client.start_workflow(
            MachineLivenessWorkflow.run,
            args=[settings.stale_after_seconds, settings.sweep_interval_seconds],
            id=settings.liveness_workflow_id,
            task_queue=settings.liveness_task_queue,
        )
    except WorkflowAlreadyStartedError:
        return {"status": "Liveness sweep already running", "workflow_id": settings.liveness_workflow_id}
    logger.info(f"[{handle.id}] Liveness workflow started")
    return {"status": "Liveness sweep started", "workflow_id": handle.id}


@app.get("/db-dump", tags=["Database"])
def db_dump(mac: Optional[str] = None, db: Session = Depends(get_db)):
    rows = pending_rows(db, mac)
    logger.info("Paid orders\n" + render_pending(rows))
    return {"status": "Pending payment report written to log", **summarize(rows)}


@app.get("/", tags=["System"])
async def root():
    return {"status": "ok"}
