import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from dispense.types.dispense_types import TelemetryUpdate

logger = logging.getLogger("telemetry")

NO_PENDING_STATUS = "No pending payments"


class NoPendingResponse(BaseModel):
    status: str = NO_PENDING_STATUS


class ProductOut(BaseModel):
    id: str
    name: str
    description: str = ""


class DispenseItemOut(BaseModel):
    product: ProductOut
    quantity: int
    price: float


class PendingPaymentResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str = "success"
    mac: str
    machine_id: str = Field(serialization_alias="machineId")
    machine_name: Optional[str] = Field(default=None, serialization_alias="machineName")
    transaction_id: str = Field(serialization_alias="transactionId")
    razorpay_order_id: Optional[str] = Field(default=None, serialization_alias="razorpayOrderId")
    razorpay_payment_id: Optional[str] = Field(default=None, serialization_alias="razorpayPaymentId")
    amount: float
    products: List[DispenseItemOut]
    timestamp: str


class MachinePing(BaseModel):
    """Heartbeat body. Unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")

    machine_id: Optional[str] = None
    firmware_version: Optional[str] = None
    wifi_rssi: Optional[int] = None
    free_heap: Optional[int] = None
    uptime: Optional[int] = None
    stock_level: Optional[int] = None
    stock_count: Optional[int] = None
    network_speed_kbps: Optional[float] = None
    temperature_celsius: Optional[float] = None

    @field_validator("machine_id", "firmware_version", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    def telemetry(self) -> TelemetryUpdate:
        return TelemetryUpdate(
            firmware_version=self.firmware_version or None,
            wifi_rssi=self.wifi_rssi,
            free_heap=self.free_heap,
            uptime=self.uptime,
            stock_level=self.stock_level if self.stock_level is not None else self.stock_count,
            network_speed=self.network_speed_kbps,
            temperature=self.temperature_celsius,
        )


def parse_ping(body: Any) -> MachinePing:
    """
    Build a MachinePing from an arbitrary JSON body.

    Fields that fail validation are dropped one pass at a time until the rest
    validates, so a single bad reading never discards the whole heartbeat.
    """
    if not isinstance(body, dict):
        return MachinePing()
    data: Dict[str, Any] = dict(body)
    while True:
        try:
            return MachinePing.model_validate(data)
        except ValidationError as e:
            bad = {err["loc"][0] for err in e.errors() if err.get("loc")}
            bad &= set(data)
            if not bad:
                return MachinePing()
            logger.debug(f"[Telemetry] dropping invalid ping fields: {sorted(bad)}")
            for key in bad:
                data.pop(key, None)


class PingResponse(BaseModel):
    success: bool = True
    message: str = "Ping received"
    reboot: bool = False
    reset_stock: bool = False


class CoinPaymentRequest(BaseModel):
    machine_id: Optional[str] = None
    product_id: Optional[str] = None
    amount_in_paisa: Optional[int] = None


class StockUpdateRequest(BaseModel):
    machine_id: Optional[str] = None
    product_id: Optional[str] = None
    quantity: Optional[int] = None
    mode: Optional[str] = None
