import logging
from typing import Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from core.config import Settings, get_settings
from core.responses import envelope, raise_for_outcome
from db.database import get_db
from db.models import User
from db.schemas import OrderTrackingOut
from routes.auth_routes import get_current_user
from services.notifications import Notifier, get_notifier
from services.orders import OrderService
from utils.mobile_utils import national_mobile
from utils.paging import paging

log = logging.getLogger(__name__)

router = APIRouter()


class CreateOrderRequest(BaseModel):
    shipping_address: str = Field(min_length=10, max_length=500)
    payment_method: Literal["cod", "online"] = "cod"
    notes: Optional[str] = Field(default=None, max_length=500)


class CancelOrderRequest(BaseModel):
    order_id: int = Field(ge=1)
    reason: str = Field(default="", max_length=500)


class ReorderRequest(BaseModel):
    order_id: int = Field(ge=1)


def get_orders(db: Session = Depends(get_db), settings: Settings = Depends(get_settings)) -> OrderService:
    return OrderService(db, settings)


@router.post("/create")
def create(payload: CreateOrderRequest, request: Request, background: BackgroundTasks,
           user: User = Depends(get_current_user), orders: OrderService = Depends(get_orders),
           notifier: Notifier = Depends(get_notifier)):
    outcome = orders.create_order(user.id, payload.shipping_address.strip(), payload.payment_method, payload.notes)
    raise_for_outcome(outcome)
    background.add_task(notifier.order_placed, outcome.data)
    return envelope(request, {"message": outcome.message, "order": outcome.data})


@router.get("/list")
def list_orders(request: Request, limit: int = 10, offset: int = 0,
                user: User = Depends(get_current_user), orders: OrderService = Depends(get_orders)):
    limit, offset = paging(limit, offset, 50)
    rows = orders.get_user_orders(user.id, limit, offset)
    return envelope(request, {
        "orders": rows,
        "pagination": {"limit": limit, "offset": offset, "count": len(rows)},
    })


@router.get("/detail")
def detail(request: Request, id: int = 0, order_number: str = "",
           user: User = Depends(get_current_user), orders: OrderService = Depends(get_orders)):
    if id > 0:
        order = orders.get_order_by_id(id)
    elif order_number.strip():
        order = orders.get_order_by_number(order_number.strip())
    else:
        raise HTTPException(status_code=400, detail="Order ID or order number required")
    # someone else's order is reported exactly like a missing one
    if not order or order.user_id != user.id:
        raise HTTPException(status_code=404, detail="Order not found")
    return envelope(request, {"order": order})


@router.get("/track")
def track(request: Request, order_number: str = "", mobile: str = "",
          orders: OrderService = Depends(get_orders)):
    if not order_number.strip() or not mobile.strip():
        raise HTTPException(status_code=400, detail="Order number and mobile number required")
    order = orders.get_order_by_number(order_number.strip())
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    try:
        matches = national_mobile(mobile) == order.customer_mobile
    except ValueError:
        matches = False
    # a wrong mobile answers like an unknown order number
    if not matches:
        raise HTTPException(status_code=404, detail="Order not found")

    tracking = OrderTrackingOut(
        order_number=order.order_number,
        status=order.status,
        payment_status=order.payment_status,
        created_at=order.created_at,
        final_amount=order.final_amount,
        items=[{"product_name": i.product_name, "quantity": i.quantity, "weight": i.product_weight}
               for i in order.items],
    )
    return envelope(request, {"order": tracking})


@router.post("/cancel")
def cancel(payload: CancelOrderRequest, request: Request, background: BackgroundTasks,
           user: User = Depends(get_current_user), orders: OrderService = Depends(get_orders),
           notifier: Notifier = Depends(get_notifier)):
    order = orders.get_order_by_id(payload.order_id)
    if not order or order.user_id != user.id:
        raise HTTPException(status_code=404, detail="Order not found")

    outcome = orders.cancel_order(payload.order_id, payload.reason.strip())
    raise_for_outcome(outcome)
    background.add_task(notifier.order_status_changed, outcome.data, "cancelled")
    return envelope(request, {"message": outcome.message})


@router.post("/reorder")
def reorder(payload: ReorderRequest, request: Request,
            user: User = Depends(get_current_user), orders: OrderService = Depends(get_orders)):
    outcome = orders.reorder(user.id, payload.order_id)
    raise_for_outcome(outcome)
    return envelope(request, {"message": outcome.message, **outcome.data})
