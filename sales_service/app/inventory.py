"""Catalog and stock operations.

Stock is never assigned directly. The only mutations are:

- ``reserve_stock``: conditional decrement, applies only when enough stock remains;
- ``release_stock``: atomic increment used by restocks and returns.

Both run inside the caller's transaction.
"""
import logging
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from . import config
from .database import unit_of_work
from .errors import NotFoundError, Shortage, ValidationError, enum_member
from .models import Category, Product, ProductVariant, Size

logger = logging.getLogger(__name__)


def reserve_stock(db: Session, variant_id: int, quantity: int) -> Optional[Shortage]:
    """
    Decrements the variant's stock by ``quantity`` if at least that much is on hand.
    Returns None on success, or the shortage when the decrement matched no row.
    """
    result = db.execute(
        update(ProductVariant)
        .where(ProductVariant.id == variant_id, ProductVariant.stock >= quantity)
        .values(stock=ProductVariant.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return None

    available = db.scalar(select(ProductVariant.stock).where(ProductVariant.id == variant_id))
    return Shortage(variant_id=variant_id, requested=quantity, available=available or 0)


def release_stock(db: Session, variant_id: int, quantity: int) -> bool:
    """Adds ``quantity`` back to the variant. Returns False if the variant does not exist."""
    result = db.execute(
        update(ProductVariant)
        .where(ProductVariant.id == variant_id)
        .values(stock=ProductVariant.stock + quantity)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def missing_variants(db: Session, variant_ids: Iterable[int]) -> List[int]:
    """Returns the ids from ``variant_ids`` that have no variant, in input order."""
    wanted = list(dict.fromkeys(variant_ids))
    found = set(db.scalars(select(ProductVariant.id).where(ProductVariant.id.in_(wanted))))
    return [variant_id for variant_id in wanted if variant_id not in found]


def restock(db: Session, variant_id: int, quantity: int) -> ProductVariant:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("restock quantity must be an integer >= 1")

    with unit_of_work(db, "restock"):
        if not release_stock(db, variant_id, quantity):
            raise NotFoundError("variant", variant_id)

    variant = db.get(ProductVariant, variant_id)
    logger.info("Restocked variant %s (%s) by %s, stock=%s", variant.id, variant.sku, quantity, variant.stock)
    return variant


def get_variant(db: Session, variant_id: int) -> ProductVariant:
    variant = db.get(ProductVariant, variant_id)
    if variant is None:
        raise NotFoundError("variant", variant_id)
    return variant


def low_stock(db: Session, threshold: Optional[int] = None) -> List[ProductVariant]:
    """Variants at or below ``threshold`` units, lowest stock first."""
    if threshold is None:
        threshold = config.LOW_STOCK_THRESHOLD
    if threshold < 0:
        raise ValidationError("threshold must be >= 0")
    return list(
        db.scalars(
            select(ProductVariant)
            .where(ProductVariant.stock <= threshold)
            .order_by(ProductVariant.stock, ProductVariant.id)
        )
    )


def list_products(db: Session) -> List[Product]:
    return list(db.scalars(select(Product).options(selectinload(Product.variants)).order_by(Product.id)))


def create_product(db: Session, name, base_price, category, product_type, variants, description=None) -> Product:
    """
    Creates a product together with its variants.
    ``variants`` is a list of dicts with ``size``, ``sku`` and optional initial ``stock``.
    """
    if not variants:
        raise ValidationError("a product needs at least one variant")
    sizes = [enum_member(Size, v["size"], "size") for v in variants]
    if len(set(sizes)) != len(sizes):
        raise ValidationError("variant sizes must be unique per product")
    skus = [v["sku"].strip() for v in variants]
    if len(set(skus)) != len(skus):
        raise ValidationError("variant SKUs must be unique")
    for v in variants:
        if v.get("stock", 0) < 0:
            raise ValidationError(f"initial stock for {v['sku']} must be >= 0")

    product = Product(
        name=name,
        base_price=base_price,
        description=description,
        category=enum_member(Category, category, "category"),
        product_type=product_type.lower(),
    )
    product.variants = [
        ProductVariant(size=size, sku=sku, stock=v.get("stock", 0))
        for size, sku, v in zip(sizes, skus, variants)
    ]
    with unit_of_work(db, "create product"):
        taken = list(db.scalars(select(ProductVariant.sku).where(ProductVariant.sku.in_(skus))))
        if taken:
            raise ValidationError(f"SKU already exists: {', '.join(taken)}")
        db.add(product)
        db.flush()

    logger.info("Created product %s with %s variants", product.id, len(product.variants))
    return product
