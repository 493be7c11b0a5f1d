import enum
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base # Import the Base class from our database setup


def utcnow():
    return datetime.now(timezone.utc)


class Size(str, enum.Enum):
    XS = "XS"
    S = "S"
    M = "M"
    L = "L"
    XL = "XL"


class Category(str, enum.Enum):
    MEN = "MEN"
    WOMEN = "WOMEN"
    UNISEX = "UNISEX"


class Channel(str, enum.Enum):
    IN_PERSON = "IN_PERSON" # Point of sale
    ONLINE = "ONLINE" # Web checkout


class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    CARD = "CARD"
    TRANSFER = "TRANSFER"
    WALLET = "WALLET"
    OTHER = "OTHER"


# Defines a role and its position in the permission ring hierarchy.
class Role(Base):
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    permission_ring = Column(Integer, nullable=False) # 0 is the most privileged ring.
    description = Column(String, default="")

    __table_args__ = (CheckConstraint("permission_ring >= 0", name="ck_roles_ring_non_negative"),)


# A principal known to the service: cashier, manager, admin or customer.
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, nullable=False)
    email = Column(String, nullable=True)
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=True)

    role = relationship("Role")


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    base_price = Column(Numeric(10, 2), nullable=False)
    description = Column(String, nullable=True)
    category = Column(Enum(Category), nullable=False)
    product_type = Column(String, nullable=False) # e.g. "shirt", "trousers"
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    variants = relationship("ProductVariant", back_populates="product", order_by="ProductVariant.id")


# A purchasable size/SKU of a product. ``stock`` is only ever changed through
# conditional decrements (orders) and atomic increments (restock, returns).
class ProductVariant(Base):
    __tablename__ = "product_variants"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    size = Column(Enum(Size), nullable=False)
    sku = Column(String, unique=True, index=True, nullable=False) # Stock Keeping Unit, must be unique.
    stock = Column(Integer, nullable=False, default=0)

    product = relationship("Product", back_populates="variants")

    __table_args__ = (
        UniqueConstraint("product_id", "size", name="uq_variant_product_size"),
        CheckConstraint("stock >= 0", name="ck_variant_stock_non_negative"),
    )


# Defines the ORM model for a completed sale. Sales are never updated.
class Sale(Base):
    __tablename__ = "sales"

    id = Column(Integer, primary_key=True, index=True) # Auto-incrementing primary key.
    order_id = Column(String, unique=True, nullable=False) # Business-level order identifier.
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    cashier_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    channel = Column(Enum(Channel), nullable=False)
    payment_method = Column(Enum(PaymentMethod), nullable=False)
    total = Column(Numeric(12, 2), nullable=False)
    shipping_address = Column(JSON, nullable=True)
    tracking_number = Column(String, unique=True, nullable=True)
    idempotency_key = Column(String, unique=True, nullable=True) # Key to prevent duplicate processing.
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    lines = relationship(
        "SaleLine", back_populates="sale", order_by="SaleLine.position", cascade="all, delete-orphan"
    )
    returns = relationship("SaleReturn", back_populates="sale", order_by="SaleReturn.id")


class SaleLine(Base):
    __tablename__ = "sale_lines"

    id = Column(Integer, primary_key=True, index=True)
    sale_id = Column(Integer, ForeignKey("sales.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    variant_id = Column(Integer, ForeignKey("product_variants.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False) # Price at the time of sale.
    discount_rate = Column(Numeric(5, 4), nullable=False, default=0)
    line_total = Column(Numeric(12, 2), nullable=False)

    sale = relationship("Sale", back_populates="lines")

    __table_args__ = (CheckConstraint("quantity >= 1", name="ck_sale_line_quantity_positive"),)


# Goods brought back against an earlier sale.
class SaleReturn(Base):
    __tablename__ = "sale_returns"

    id = Column(Integer, primary_key=True, index=True)
    return_id = Column(String, unique=True, nullable=False)
    sale_id = Column(Integer, ForeignKey("sales.id"), nullable=False, index=True)
    cashier_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    refund_total = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    sale = relationship("Sale", back_populates="returns")
    lines = relationship(
        "SaleReturnLine", back_populates="sale_return", order_by="SaleReturnLine.position",
        cascade="all, delete-orphan",
    )

    @property
    def order_id(self):
        return self.sale.order_id


class SaleReturnLine(Base):
    __tablename__ = "sale_return_lines"

    id = Column(Integer, primary_key=True, index=True)
    return_id = Column(Integer, ForeignKey("sale_returns.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    variant_id = Column(Integer, ForeignKey("product_variants.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    discount_rate = Column(Numeric(5, 4), nullable=False, default=0)
    line_total = Column(Numeric(12, 2), nullable=False)

    sale_return = relationship("SaleReturn", back_populates="lines")
