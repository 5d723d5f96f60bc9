from sqlalchemy import Column, String, Integer, Float, Boolean, DateTime, ForeignKey, JSON, Index, func
from sqlalchemy.orm import declarative_base
from datetime import datetime, timezone
import uuid

Base = declarative_base()

PAYMENT_UNPAID = "unpaid"
PAYMENT_PAID = "paid"
PAYMENT_FAILED = "failed"


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id():
    return str(uuid.uuid4())


class Machine(Base):
    __tablename__ = "vending_machines"

    id = Column(String, primary_key=True, default=new_id)
    mac_id = Column(String, nullable=False, unique=True)
    machine_id = Column(String, nullable=False)
    name = Column(String)
    asset_online = Column(Boolean, default=False, nullable=False)
    last_ping = Column(DateTime)
    firmware_version = Column(String)
    wifi_rssi = Column(Integer)
    free_heap = Column(Integer)
    uptime = Column(Integer)
    stock_level = Column(Integer)
    network_speed = Column(Float)
    temperature = Column(Float)

    __table_args__ = (
        Index("ix_vending_machines_mac_lower", func.lower(mac_id)),
        Index("ix_vending_machines_machine_id", "machine_id"),
    )


class Product(Base):
    __tablename__ = "products"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    description = Column(String, default="")
    price = Column(Float)


class MachineProduct(Base):
    __tablename__ = "machine_products"

    id = Column(String, primary_key=True, default=new_id)
    machine_id = Column(String, ForeignKey("vending_machines.id"), nullable=False)
    product_id = Column(String, ForeignKey("products.id"), nullable=False)
    price = Column(Float)
    stock = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index("ix_machine_products_machine_product", "machine_id", "product_id", unique=True),
    )


class Order(Base):
    __tablename__ = "transactions"

    id = Column(String, primary_key=True, default=new_id)
    machine_id = Column(String, ForeignKey("vending_machines.id"), nullable=False)
    payment_status = Column(String, default=PAYMENT_UNPAID, nullable=False)
    dispensed = Column(Boolean, default=False, nullable=False)
    dispensed_at = Column(DateTime)
    items = Column(JSON, default=list)
    amount = Column(Float)
    total_amount = Column(Float)
    razorpay_order_id = Column(String)
    razorpay_payment_id = Column(String)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_transactions_pending", "machine_id", "payment_status", "dispensed", "created_at"),
    )


class CoinPayment(Base):
    __tablename__ = "coin_payments"

    id = Column(String, primary_key=True, default=new_id)
    machine_id = Column(String, ForeignKey("vending_machines.id"), nullable=False)
    product_id = Column(String, ForeignKey("products.id"), nullable=False)
    amount_in_paisa = Column(Integer, nullable=False)
    quantity = Column(Integer, default=1, nullable=False)
    dispensed = Column(Boolean, default=True, nullable=False)
    dispensed_at = Column(DateTime, default=utcnow)
    created_at = Column(DateTime, default=utcnow, nullable=False)
