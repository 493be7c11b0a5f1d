# --- Imports ---
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

# Internal imports from sibling modules
from . import config, inventory, orders, permissions, returns, schemas
from .database import Base, SessionLocal, engine, get_db
from .errors import SalesError
from .messaging.bus import (
    EventPublisher,
    get_publisher,
    sale_created_event,
    sale_returned_event,
    stock_restocked_event,
)
from .models import User

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create database tables if they don't exist, then seed default roles.
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        permissions.seed_defaults(db)
    finally:
        db.close()
    yield
    get_publisher().close()


# --- App Instance ---
app = FastAPI(title="Storefront Sales Service", lifespan=lifespan)


# --- Error mapping ---
@app.exception_handler(SalesError)
async def sales_error_handler(request: Request, exc: SalesError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "validation_error", "message": "malformed request", "details": jsonable_encoder(exc.errors())},
    )


# --- Authorization ---
def require(action: str):
    """
    Builds a dependency that resolves the caller from the ``X-User-Id`` header
    (set by the identity gateway) and checks their ring against ``action``.
    """
    def dependency(x_user_id: Optional[int] = Header(None), db: Session = Depends(get_db)) -> User:
        if x_user_id is None:
            raise HTTPException(status_code=401, detail="Missing X-User-Id header")
        decision = permissions.check_permission(db, x_user_id, action)
        if decision.user is None:
            raise HTTPException(status_code=401, detail="Unknown user")
        if not decision.allowed:
            raise HTTPException(status_code=403, detail="Insufficient permissions for this action")
        return decision.user
    return dependency


# --- Endpoints ---
@app.get("/")
def root():
    """Health check endpoint."""
    return {"message": "Sales service is running"}


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/api/v1/products", response_model=List[schemas.ProductOut])
def list_products(db: Session = Depends(get_db)):
    return inventory.list_products(db)


@app.post("/api/v1/products", response_model=schemas.ProductOut, status_code=201)
def create_product(
    req: schemas.ProductCreate,
    db: Session = Depends(get_db),
    _: User = Depends(require("catalog.write")),
):
    return inventory.create_product(
        db,
        name=req.name,
        base_price=req.base_price,
        category=req.category,
        product_type=req.product_type,
        description=req.description,
        variants=[variant.model_dump() for variant in req.variants],
    )


@app.get("/api/v1/variants/{variant_id}", response_model=schemas.VariantOut)
def get_variant(variant_id: int, db: Session = Depends(get_db)):
    return inventory.get_variant(db, variant_id)


@app.post("/api/v1/variants/{variant_id}/restock", response_model=schemas.VariantOut)
def restock_variant(
    variant_id: int,
    req: schemas.RestockRequest,
    db: Session = Depends(get_db),
    _: User = Depends(require("inventory.restock")),
    publisher: EventPublisher = Depends(get_publisher),
):
    variant = inventory.restock(db, variant_id, req.quantity)
    publisher.publish("stock.restocked", stock_restocked_event(variant, req.quantity))
    return variant


@app.get("/api/v1/inventory/low-stock", response_model=List[schemas.VariantOut])
def low_stock(
    threshold: Optional[int] = None,
    db: Session = Depends(get_db),
    _: User = Depends(require("inventory.report")),
):
    return inventory.low_stock(db, threshold)


@app.post("/api/v1/orders", response_model=schemas.OrderOut, status_code=201)
def place_order(
    req: schemas.OrderCreate,
    db: Session = Depends(get_db),
    cashier: User = Depends(require("orders.place")),
    publisher: EventPublisher = Depends(get_publisher),
):
    """
    Places an order on behalf of the calling cashier.
    Any ``total`` sent by the client is ignored; the server computes it.
    """
    sale = orders.place_order(
        db,
        cashier_id=cashier.id,
        customer_id=req.customer_id,
        channel=req.channel,
        payment_method=req.payment_method,
        lines=[
            orders.OrderLineInput(line.variant_id, line.quantity, line.unit_price, line.discount_rate)
            for line in req.lines
        ],
        shipping_address=req.shipping_address.model_dump() if req.shipping_address else None,
        idempotency_key=req.idempotency_key,
    )
    publisher.publish("sale.created", sale_created_event(sale))
    return sale


@app.get("/api/v1/orders", response_model=List[schemas.OrderOut])
def list_orders(
    customer_id: Optional[int] = None,
    db: Session = Depends(get_db),
    _: User = Depends(require("orders.read")),
):
    return orders.list_orders(db, customer_id=customer_id)


# Tracking lookup is public: the tracking number is the shared secret.
@app.get("/api/v1/orders/track/{tracking_number}", response_model=schemas.OrderOut)
def track_order(tracking_number: str, db: Session = Depends(get_db)):
    return orders.find_by_tracking(db, tracking_number)


@app.get("/api/v1/orders/{order_id}", response_model=schemas.OrderOut)
def get_order(
    order_id: str,
    db: Session = Depends(get_db),
    _: User = Depends(require("orders.read")),
):
    return orders.get_order(db, order_id)


@app.post("/api/v1/orders/{order_id}/returns", response_model=schemas.ReturnOut, status_code=201)
def create_return(
    order_id: str,
    req: schemas.ReturnCreate,
    db: Session = Depends(get_db),
    cashier: User = Depends(require("orders.return")),
    publisher: EventPublisher = Depends(get_publisher),
):
    sale_return = returns.process_return(
        db,
        order_id=order_id,
        cashier_id=cashier.id,
        items=[returns.ReturnItemInput(item.variant_id, item.quantity) for item in req.items],
    )
    publisher.publish("sale.returned", sale_returned_event(sale_return))
    return sale_return


@app.get("/api/v1/roles", response_model=List[schemas.RoleOut])
def list_roles(db: Session = Depends(get_db)):
    return permissions.list_roles(db)


@app.post("/api/v1/roles", response_model=schemas.RoleOut, status_code=201)
def create_role(
    req: schemas.RoleCreate,
    db: Session = Depends(get_db),
    _: User = Depends(require("roles.manage")),
):
    return permissions.create_role(db, req.name, req.permission_ring, req.description)


@app.post("/api/v1/users", response_model=schemas.UserOut, status_code=201)
def create_user(
    req: schemas.UserCreate,
    db: Session = Depends(get_db),
    _: User = Depends(require("users.manage")),
):
    return permissions.create_user(db, req.username, req.role, email=req.email)


if __name__ == "__main__":
    import os

    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
