from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

UNKNOWN_PRODUCT_NAME = "Unknown Product"


@dataclass(frozen=True)
class MachineRecord:
    id: str
    code: str
    name: Optional[str]


@dataclass(frozen=True)
class TelemetryUpdate:
    """Liveness fields to write on a touch. ``None`` means "not reported"."""

    firmware_version: Optional[str] = None
    wifi_rssi: Optional[int] = None
    free_heap: Optional[int] = None
    uptime: Optional[int] = None
    stock_level: Optional[int] = None
    network_speed: Optional[float] = None
    temperature: Optional[float] = None

    def present(self) -> Dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass(frozen=True)
class LineItem:
    product_id: Optional[str]
    quantity: int
    price: float
    name: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def from_json(cls, raw: Dict[str, Any]) -> "LineItem":
        product_id = raw.get("product_id")
        return cls(
            product_id=str(product_id) if product_id is not None else None,
            quantity=int(raw.get("quantity") or 1),
            price=float(raw.get("price") or 0),
            name=raw.get("name"),
            description=raw.get("description"),
        )


@dataclass(frozen=True)
class ProductInfo:
    id: str
    name: str
    description: str = ""


@dataclass(frozen=True)
class PendingOrder:
    id: str
    machine_id: str
    amount: float
    created_at: datetime
    line_items: List[Dict[str, Any]] = field(default_factory=list)
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None


@dataclass(frozen=True)
class DispenseItem:
    product: ProductInfo
    quantity: int
    price: float


@dataclass(frozen=True)
class ClaimedOrder:
    order: PendingOrder
    dispensed_at: datetime
    items: List[DispenseItem] = field(default_factory=list)
