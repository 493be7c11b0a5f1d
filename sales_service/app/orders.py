"""Order placement.

``place_order`` reserves stock for every line and persists the sale in one
database transaction. Each line is reserved with a conditional decrement
(``stock >= quantity``), so concurrent orders cannot oversell a variant; if
any line comes up short the transaction is rolled back and no stock moves.
"""
import logging
import uuid
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from . import inventory
from .database import unit_of_work
from .errors import InsufficientStockError, InternalError, NotFoundError, Shortage, ValidationError, enum_member
from .models import Channel, PaymentMethod, Sale, SaleLine, User

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


@dataclass
class OrderLineInput:
    variant_id: int
    quantity: int
    unit_price: Decimal
    discount_rate: Decimal = Decimal("0")


def to_decimal(value, label: str) -> Decimal:
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{label} must be a number, got {value!r}") from None
    if not result.is_finite():
        raise ValidationError(f"{label} must be a finite number")
    return result


def line_total(unit_price: Decimal, quantity: int, discount_rate: Decimal) -> Decimal:
    """unit_price * quantity * (1 - discount_rate), rounded half-up to cents."""
    return (unit_price * quantity * (Decimal(1) - discount_rate)).quantize(CENTS, rounding=ROUND_HALF_UP)


def _validate_lines(lines: Sequence[OrderLineInput]) -> List[OrderLineInput]:
    if not lines:
        raise ValidationError("no items")

    cleaned = []
    for position, line in enumerate(lines, start=1):
        quantity = line.quantity
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError(f"line {position}: quantity must be an integer >= 1, got {quantity!r}")
        discount = to_decimal(line.discount_rate, f"line {position}: discount rate")
        if discount < 0 or discount > 1:
            raise ValidationError(f"line {position}: discount rate must be between 0 and 1, got {discount}")
        price = to_decimal(line.unit_price, f"line {position}: unit price")
        if price < 0:
            raise ValidationError(f"line {position}: unit price must be >= 0, got {price}")
        cleaned.append(OrderLineInput(line.variant_id, quantity, price, discount))
    return cleaned


class _KeyTaken(Exception):
    """A concurrent call committed a sale under the same idempotency key first."""


def _find_by_key(db: Session, idempotency_key: str) -> Optional[Sale]:
    return db.scalars(select(Sale).where(Sale.idempotency_key == idempotency_key)).first()


def _reserve_lines(db: Session, lines: Sequence[OrderLineInput]) -> List[Shortage]:
    """
    Reserves every line, in order. Returns one shortage per short variant,
    carrying the variant's total demand across the order and the stock it had
    before this call reserved anything.
    """
    demand = {}
    reserved = {}
    before_call = {}
    for line in lines:
        variant_id = line.variant_id
        demand[variant_id] = demand.get(variant_id, 0) + line.quantity
        shortage = inventory.reserve_stock(db, variant_id, line.quantity)
        if shortage is None:
            reserved[variant_id] = reserved.get(variant_id, 0) + line.quantity
        elif variant_id not in before_call:
            before_call[variant_id] = shortage.available + reserved.get(variant_id, 0)
    return [
        Shortage(variant_id=variant_id, requested=demand[variant_id], available=before_call[variant_id])
        for variant_id in demand
        if variant_id in before_call
    ]


def place_order(
    db: Session,
    cashier_id: int,
    lines: Sequence[OrderLineInput],
    channel=Channel.IN_PERSON,
    payment_method=PaymentMethod.CASH,
    customer_id: Optional[int] = None,
    shipping_address: Optional[dict] = None,
    idempotency_key: Optional[str] = None,
) -> Sale:
    """
    Reserves stock for every line and records the sale.

    Raises ValidationError, NotFoundError or InsufficientStockError without
    changing any stock; TransientError when the database times out.
    A call repeating an already used ``idempotency_key`` returns the stored sale.
    """
    lines = _validate_lines(lines)
    channel = enum_member(Channel, channel, "channel")
    payment_method = enum_member(PaymentMethod, payment_method, "payment method")
    if cashier_id is None:
        raise ValidationError("cashier is required")
    if channel is Channel.ONLINE and not shipping_address:
        raise ValidationError("online orders require a shipping address")

    try:
        with unit_of_work(db, "place order"):
            if idempotency_key:
                existing = _find_by_key(db, idempotency_key)
                if existing is not None:
                    logger.info("Order %s replayed for idempotency key %s", existing.order_id, idempotency_key)
                    return existing

            missing = inventory.missing_variants(db, [line.variant_id for line in lines])
            if missing:
                raise NotFoundError("variant", missing[0])
            if db.get(User, cashier_id) is None:
                raise NotFoundError("cashier", cashier_id)
            if customer_id is not None and db.get(User, customer_id) is None:
                raise NotFoundError("customer", customer_id)

            shortages = _reserve_lines(db, lines)
            if shortages:
                raise InsufficientStockError(shortages)

            sale = Sale(
                order_id=str(uuid.uuid4()),
                customer_id=customer_id,
                cashier_id=cashier_id,
                channel=channel,
                payment_method=payment_method,
                shipping_address=shipping_address,
                idempotency_key=idempotency_key,
            )
            if channel is Channel.ONLINE:
                sale.tracking_number = f"SS-{uuid.uuid4().hex[:12].upper()}"
            sale.lines = [
                SaleLine(
                    position=position,
                    variant_id=line.variant_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    discount_rate=line.discount_rate,
                    line_total=line_total(line.unit_price, line.quantity, line.discount_rate),
                )
                for position, line in enumerate(lines, start=1)
            ]
            # The total is always computed here; a client-supplied total is never used.
            sale.total = sum((sale_line.line_total for sale_line in sale.lines), Decimal("0.00"))
            db.add(sale)
            try:
                db.flush()
            except IntegrityError as exc:
                if not idempotency_key:
                    raise
                raise _KeyTaken(idempotency_key) from exc
    except InsufficientStockError as exc:
        logger.info("Order rejected, rolled back: %s", exc)
        raise
    except _KeyTaken as exc:
        # Two concurrent calls with the same key: the loser returns the winner's sale.
        existing = _find_by_key(db, idempotency_key)
        if existing is None:
            logger.error("place order: integrity error not explained by idempotency key %s", idempotency_key)
            raise InternalError("place order failed") from exc.__cause__
        logger.info("Order %s already placed concurrently for idempotency key %s", existing.order_id, idempotency_key)
        return existing

    logger.info(
        "Order %s placed by cashier %s: %s lines, total=%s, channel=%s",
        sale.order_id, cashier_id, len(lines), sale.total, channel.value,
    )
    return sale


def get_order(db: Session, order_id: str) -> Sale:
    sale = db.scalars(
        select(Sale).options(selectinload(Sale.lines)).where(Sale.order_id == order_id)
    ).first()
    if sale is None:
        raise NotFoundError("order", order_id)
    return sale


def list_orders(db: Session, customer_id: Optional[int] = None, limit: int = 100) -> List[Sale]:
    """Most recent sales first, optionally restricted to one customer."""
    query = select(Sale).options(selectinload(Sale.lines))
    if customer_id is not None:
        query = query.where(Sale.customer_id == customer_id)
    return list(db.scalars(query.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit)))


def find_by_tracking(db: Session, tracking_number: str) -> Sale:
    sale = db.scalars(
        select(Sale).options(selectinload(Sale.lines)).where(Sale.tracking_number == tracking_number)
    ).first()
    if sale is None:
        raise NotFoundError("tracking number", tracking_number)
    return sale
