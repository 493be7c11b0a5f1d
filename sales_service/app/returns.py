import logging
import uuid
from collections import Counter
from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from . import inventory
from .database import unit_of_work
from .errors import NotFoundError, ValidationError
from .models import Sale, SaleLine, SaleReturn, SaleReturnLine
from .orders import line_total

logger = logging.getLogger(__name__)


@dataclass
class ReturnItemInput:
    variant_id: int
    quantity: int


def process_return(db: Session, order_id: str, cashier_id: int, items: Sequence[ReturnItemInput]) -> SaleReturn:
    """
    Takes goods back against an earlier sale.

    Each returned variant must have been sold on that order, and the quantity
    may not exceed what was sold minus what earlier returns already took back.
    Returned units go back into stock and the refund uses the price and
    discount captured on the original line. All of it commits together.
    """
    if not items:
        raise ValidationError("no items")
    for item in items:
        if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity < 1:
            raise ValidationError(f"return quantity must be an integer >= 1, got {item.quantity!r}")

    with unit_of_work(db, "process return"):
        requested = Counter()
        for item in items:
            requested[item.variant_id] += item.quantity

        # Put the goods back first. The write takes the row lock (the database
        # lock on SQLite), so concurrent returns of the same variant queue here
        # and the returnable amounts below are read after any earlier commit.
        unknown = [
            variant_id for variant_id in sorted(requested)
            if not inventory.release_stock(db, variant_id, requested[variant_id])
        ]

        sale = db.scalars(select(Sale).where(Sale.order_id == order_id)).first()
        if sale is None:
            raise NotFoundError("order", order_id)

        sold = Counter()
        first_line = {}
        for sale_line in db.scalars(
            select(SaleLine).where(SaleLine.sale_id == sale.id).order_by(SaleLine.position)
        ):
            sold[sale_line.variant_id] += sale_line.quantity
            first_line.setdefault(sale_line.variant_id, sale_line)
        already_returned = Counter(dict(db.execute(
            select(SaleReturnLine.variant_id, func.sum(SaleReturnLine.quantity))
            .join(SaleReturn, SaleReturnLine.return_id == SaleReturn.id)
            .where(SaleReturn.sale_id == sale.id)
            .group_by(SaleReturnLine.variant_id)
        ).all()))

        for variant_id, quantity in requested.items():
            if variant_id not in sold:
                raise ValidationError(f"variant {variant_id} was not sold on order {order_id}")
            returnable = sold[variant_id] - already_returned[variant_id]
            if quantity > returnable:
                raise ValidationError(
                    f"cannot return {quantity} of variant {variant_id}: only {returnable} returnable"
                )
        if unknown:
            raise NotFoundError("variant", unknown[0])

        sale_return = SaleReturn(return_id=str(uuid.uuid4()), sale=sale, cashier_id=cashier_id)
        for position, item in enumerate(items, start=1):
            original = first_line[item.variant_id]
            sale_return.lines.append(SaleReturnLine(
                position=position,
                variant_id=item.variant_id,
                quantity=item.quantity,
                unit_price=original.unit_price,
                discount_rate=original.discount_rate,
                line_total=line_total(original.unit_price, item.quantity, original.discount_rate),
            ))
        sale_return.refund_total = sum((line.line_total for line in sale_return.lines), Decimal("0.00"))
        db.add(sale_return)
        db.flush()

    logger.info(
        "Return %s against order %s: %s lines, refund=%s",
        sale_return.return_id, order_id, len(items), sale_return.refund_total,
    )
    return sale_return
