from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from core.config import Settings, get_settings
from core.responses import envelope, raise_for_outcome
from db.database import get_db
from db.models import User
from routes.auth_routes import get_current_user
from services.cart import CartService

router = APIRouter()


class AddItemRequest(BaseModel):
    product_id: int = Field(ge=1)
    quantity: int = Field(default=1, ge=1, le=50)


class UpdateItemRequest(BaseModel):
    product_id: int = Field(ge=1)
    quantity: int = Field(ge=0, le=50)


def get_cart(db: Session = Depends(get_db), settings: Settings = Depends(get_settings)) -> CartService:
    return CartService(db, settings)


@router.post("/add")
def add(payload: AddItemRequest, request: Request,
        user: User = Depends(get_current_user), cart: CartService = Depends(get_cart)):
    outcome = cart.add_item(user.id, payload.product_id, payload.quantity)
    raise_for_outcome(outcome)
    return envelope(request, {"message": outcome.message, "cart_count": cart.item_count(user.id)})


@router.put("/update")
def update(payload: UpdateItemRequest, request: Request,
           user: User = Depends(get_current_user), cart: CartService = Depends(get_cart)):
    outcome = cart.update_item(user.id, payload.product_id, payload.quantity)
    raise_for_outcome(outcome)
    return envelope(request, {"message": outcome.message, "cart_summary": cart.get_cart_summary(user.id)})


@router.delete("/remove")
def remove(request: Request, product_id: int,
           user: User = Depends(get_current_user), cart: CartService = Depends(get_cart)):
    outcome = cart.remove_item(user.id, product_id)
    raise_for_outcome(outcome)
    return envelope(request, {"message": outcome.message, "cart_count": cart.item_count(user.id)})


@router.get("/list")
def list_items(request: Request, user: User = Depends(get_current_user), cart: CartService = Depends(get_cart)):
    items = cart.get_cart_items(user.id)
    return envelope(request, {"items": items, "count": len(items)})


@router.get("/summary")
def summary(request: Request, user: User = Depends(get_current_user), cart: CartService = Depends(get_cart)):
    return envelope(request, cart.get_cart_summary(user.id))


@router.delete("/clear")
def clear(request: Request, user: User = Depends(get_current_user), cart: CartService = Depends(get_cart)):
    cart.clear_cart(user.id)
    return envelope(request, {"message": "Cart cleared successfully"})


@router.get("/count")
def count(request: Request, user: User = Depends(get_current_user), cart: CartService = Depends(get_cart)):
    return envelope(request, {"count": cart.item_count(user.id)})


@router.get("/validate")
def validate(request: Request, user: User = Depends(get_current_user), cart: CartService = Depends(get_cart)):
    return envelope(request, cart.validate_cart(user.id))
