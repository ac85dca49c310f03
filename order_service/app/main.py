# --- Imports ---
import os
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from .database import Base, engine, get_db
from .messaging.producer import RabbitMQProducer, publish_order_event
from .models import Order, PaymentMethod

# Create database tables on startup if they don't exist.
Base.metadata.create_all(bind=engine)

app = FastAPI()

# Where uploaded payment receipts are written.
RECEIPTS_DIR = Path(os.getenv("RECEIPTS_DIR", "./receipts"))
RECEIPT_MAX_BYTES = 5 * 1024 * 1024
RECEIPT_CONTENT_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
}

# Allowed status moves; approved and rejected are terminal.
STATUS_TRANSITIONS = {
    "pending": {"processing", "approved", "rejected"},
    "processing": {"approved", "rejected"},
    "approved": set(),
    "rejected": set(),
}

producer = RabbitMQProducer()


def get_producer():
    """Dependency returning the shared change-notification producer."""
    return producer


# --- Request Models ---
class OrderCreate(BaseModel):
    """Defines the data model for a new storefront order."""
    order_items: List[Dict[str, Any]] = Field(min_length=1)
    customer_info: Dict[str, Any] = Field(default_factory=dict)
    payment_method_id: Optional[str] = None
    receipt_url: str
    total_price: float = Field(ge=0)
    member_id: Optional[str] = None

    @field_validator("receipt_url")
    @classmethod
    def receipt_required(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("receipt_url must not be empty")
        return value


class OrderUpdate(BaseModel):
    """Partial update of the operator-controlled fields."""
    status: Optional[str] = None
    rejection_reason: Optional[str] = None
    rejection_message: Optional[str] = None
    approval_message: Optional[str] = None


class PaymentMethodCreate(BaseModel):
    id: str
    name: str
    account_number: str = ""
    account_name: str = ""
    qr_code_url: str = ""
    icon_url: Optional[str] = None
    active: bool = True
    sort_order: int = 0


# --- Serialization ---
def _timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_order(order: Order, include_receipt: bool = True) -> Dict[str, Any]:
    """Formats an order row the way the storefront reads it."""
    data = {
        "id": order.order_id,
        "invoice_number": order.invoice_number,
        "status": order.status,
        "order_items": order.order_items or [],
        "customer_info": order.customer_info or {},
        "payment_method_id": order.payment_method_id,
        "total_price": order.total_price,
        "rejection_reason": order.rejection_reason,
        "rejection_message": order.rejection_message,
        "approval_message": order.approval_message,
        "member_id": order.member_id,
        "created_at": _timestamp(order.created_at),
        "updated_at": _timestamp(order.updated_at),
    }
    if include_receipt:
        data["receipt_url"] = order.receipt_url
    return data


def serialize_payment_method(method: PaymentMethod) -> Dict[str, Any]:
    return {
        "id": method.id,
        "name": method.name,
        "account_number": method.account_number,
        "account_name": method.account_name,
        "qr_code_url": method.qr_code_url,
        "icon_url": method.icon_url,
        "active": method.active,
        "sort_order": method.sort_order,
    }


def _get_order_or_404(db: Session, order_id: str) -> Order:
    order = db.query(Order).filter(Order.order_id == order_id).first()
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


# --- Endpoints ---
@app.get("/")
def root():
    """Health check endpoint."""
    return {"message": "Order store is running"}


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/api/v1/orders", status_code=201)
def create_order(req: OrderCreate, db: Session = Depends(get_db), bus: RabbitMQProducer = Depends(get_producer)):
    """Inserts a new order. The status is always 'pending' on creation."""
    order = Order(
        order_id=str(uuid.uuid4()),
        status="pending",
        order_items=req.order_items,
        customer_info=req.customer_info,
        payment_method_id=req.payment_method_id,
        receipt_url=req.receipt_url,
        total_price=req.total_price,
        member_id=req.member_id,
    )
    db.add(order)
    db.flush()
    order.invoice_number = f"INV-{order.id:06d}"
    db.commit()
    db.refresh(order)

    publish_order_event(bus, "created", order.order_id, order.status)
    return serialize_order(order)


@app.get("/api/v1/orders/{order_id}")
def get_order(order_id: str, db: Session = Depends(get_db)):
    """Retrieves a single order, including its receipt."""
    return serialize_order(_get_order_or_404(db, order_id))


@app.get("/api/v1/orders")
def list_orders(
    offset: int = Query(0, ge=0),
    limit: int = Query(10, ge=1, le=100),
    member_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Retrieves one page of orders, newest first, with the total count."""
    query = db.query(Order)
    if member_id:
        query = query.filter(Order.member_id == member_id)
    count = query.count()
    orders = query.order_by(Order.created_at.desc(), Order.id.desc()).offset(offset).limit(limit).all()

    # Receipts are left out of the list view; fetch one order to get it.
    return {
        "orders": [serialize_order(o, include_receipt=False) for o in orders],
        "count": count,
    }


@app.patch("/api/v1/orders/{order_id}")
def update_order(order_id: str, req: OrderUpdate, db: Session = Depends(get_db), bus: RabbitMQProducer = Depends(get_producer)):
    """
    Applies an operator decision to an order.
    - Status changes must follow pending -> processing -> approved/rejected.
    - Approved and rejected orders are final and can no longer be edited.
    - Rejection fields are cleared whenever the status is not 'rejected'.
    - The approval message is only written when entering 'approved'.
    """
    order = _get_order_or_404(db, order_id)
    status = req.status or order.status

    if status not in STATUS_TRANSITIONS:
        raise HTTPException(status_code=422, detail=f"Unknown status: {status}")
    allowed = STATUS_TRANSITIONS[order.status]
    if not allowed or (status != order.status and status not in allowed):
        raise HTTPException(
            status_code=409,
            detail=f"Cannot move order from {order.status} to {status}",
        )

    order.status = status
    if status == "rejected":
        if req.rejection_reason is not None:
            order.rejection_reason = req.rejection_reason
        if req.rejection_message is not None:
            order.rejection_message = req.rejection_message
    else:
        order.rejection_reason = None
        order.rejection_message = None
    if status == "approved" and req.approval_message is not None:
        order.approval_message = req.approval_message

    db.commit()
    db.refresh(order)

    publish_order_event(bus, "updated", order.order_id, order.status)
    return serialize_order(order)


@app.delete("/api/v1/orders/{order_id}")
def delete_order(order_id: str, db: Session = Depends(get_db), bus: RabbitMQProducer = Depends(get_producer)):
    order = _get_order_or_404(db, order_id)
    status = order.status
    db.delete(order)
    db.commit()

    publish_order_event(bus, "deleted", order_id, status)
    return {"status": "deleted", "id": order_id}


@app.post("/api/v1/receipts", status_code=201)
async def upload_receipt(request: Request, file: UploadFile = File(...)):
    """Stores a proof-of-payment image and returns its URL."""
    extension = RECEIPT_CONTENT_TYPES.get(file.content_type or "")
    if extension is None:
        raise HTTPException(status_code=415, detail="Receipt must be a JPEG, PNG, WEBP or GIF image")

    content = await file.read()
    if not content:
        raise HTTPException(status_code=422, detail="Receipt file is empty")
    if len(content) > RECEIPT_MAX_BYTES:
        raise HTTPException(status_code=413, detail="Receipt exceeds the 5MB limit")

    RECEIPTS_DIR.mkdir(parents=True, exist_ok=True)
    name = f"{uuid.uuid4().hex}{extension}"
    (RECEIPTS_DIR / name).write_bytes(content)

    return {"url": str(request.url_for("get_receipt", filename=name))}


@app.get("/receipts/{filename}", name="get_receipt")
def get_receipt(filename: str):
    path = RECEIPTS_DIR / Path(filename).name
    if not path.is_file():
        raise HTTPException(status_code=404, detail="Receipt not found")
    return FileResponse(path)


@app.get("/api/v1/payment-methods")
def list_payment_methods(db: Session = Depends(get_db)):
    """Active payment methods in display order."""
    methods = (
        db.query(PaymentMethod)
        .filter(PaymentMethod.active.is_(True))
        .order_by(PaymentMethod.sort_order, PaymentMethod.name)
        .all()
    )
    return [serialize_payment_method(m) for m in methods]


@app.post("/api/v1/payment-methods", status_code=201)
def add_payment_method(req: PaymentMethodCreate, db: Session = Depends(get_db)):
    """Adds a payment method or replaces the one with the same id."""
    method = db.get(PaymentMethod, req.id)
    if method is None:
        method = PaymentMethod(id=req.id)
        db.add(method)
    for field, value in req.model_dump().items():
        setattr(method, field, value)
    db.commit()
    db.refresh(method)
    return serialize_payment_method(method)
