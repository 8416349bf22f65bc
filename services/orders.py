import logging
import time
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from core.config import Settings, settings as default_settings
from db.models import Order, OrderItem, User
from db.schemas import OrderItemOut, OrderOut
from services.cart import CartService
from services.catalog import CatalogService
from services.results import Outcome, CONFLICT, FAILED, INVALID, NOT_FOUND
from utils.dates import period_starts

log = logging.getLogger(__name__)

ORDER_FLOW = ["pending", "confirmed", "processing", "shipped", "delivered"]
ORDER_STATUSES = ORDER_FLOW + ["cancelled"]
PAYMENT_STATUSES = ["pending", "paid", "failed", "refunded"]
PAYMENT_METHODS = ["cod", "online"]
NOT_CANCELLABLE = {"shipped", "delivered", "cancelled"}


class StockExhausted(Exception):
    """A conditional stock decrement matched no row."""


def order_view(order: Order, with_items: bool = True) -> OrderOut:
    user = order.user
    return OrderOut(
        id=order.id,
        order_number=order.order_number,
        user_id=order.user_id,
        total_amount=order.total_amount,
        discount_amount=order.discount_amount,
        shipping_amount=order.shipping_amount,
        final_amount=order.final_amount,
        payment_method=order.payment_method,
        status=order.status,
        payment_status=order.payment_status,
        shipping_address=order.shipping_address,
        notes=order.notes,
        created_at=order.created_at,
        updated_at=order.updated_at,
        customer_name=user.name if user else None,
        customer_mobile=user.mobile if user else None,
        customer_email=user.email if user else None,
        item_count=len(order.items),
        items=[OrderItemOut.model_validate(i) for i in order.items] if with_items else [],
    )


class OrderService:
    def __init__(self, db: Session, settings: Settings = default_settings):
        self.db = db
        self.settings = settings
        self.cart = CartService(db, settings)
        self.catalog = CatalogService(db)

    # ------------- numbering -------------
    def generate_order_number(self) -> str:
        """
        ``<prefix><YYYYMMDD><4 hex>``, e.g. ``KK20261017A3F9``.

        Uniqueness is best effort: a lookup catches most collisions and the
        Unix timestamp is appended when one is found. The UNIQUE column is the
        final guard; a residual race fails the insert and the whole order
        transaction rolls back.
        """
        number = "{}{}{}".format(
            self.settings.ORDER_NUMBER_PREFIX,
            datetime.now(timezone.utc).strftime("%Y%m%d"),
            uuid.uuid4().hex[-4:].upper(),
        )
        if self.db.scalar(select(Order.id).where(Order.order_number == number)) is not None:
            number = f"{number}{int(time.time())}"
        log.debug("Order number generated: %s", number)
        return number

    # ------------- checkout -------------
    def create_order(self, user_id: int, shipping_address: str, payment_method: str = "cod",
                     notes: Optional[str] = None) -> Outcome:
        if payment_method not in PAYMENT_METHODS:
            return Outcome.fail("Payment method must be cod or online", INVALID)

        validation = self.cart.validate_cart(user_id)
        if not validation.valid:
            log.warning("Order refused for user %s: %s", user_id, validation.errors)
            return Outcome.fail(", ".join(validation.errors), INVALID)
        summary = validation.summary

        shipping = summary.shipping_amount
        final = summary.total_amount
        if payment_method == "cod":
            shipping += self.settings.COD_CHARGES
            final += self.settings.COD_CHARGES

        try:
            order = Order(
                order_number=self.generate_order_number(),
                user_id=user_id,
                total_amount=summary.subtotal + summary.discount_amount,
                discount_amount=summary.discount_amount,
                shipping_amount=shipping,
                final_amount=final,
                payment_method=payment_method,
                shipping_address=shipping_address,
                notes=notes,
            )
            self.db.add(order)
            self.db.flush()

            for line in summary.items:
                self.db.add(OrderItem(
                    order_id=order.id,
                    product_id=line.product_id,
                    product_name=line.name,
                    product_weight=line.weight,
                    price=line.final_price,
                    quantity=line.quantity,
                    total_amount=line.line_total,
                ))
                if not self.catalog.update_stock(line.product_id, -line.quantity):
                    raise StockExhausted(f"insufficient stock for product {line.product_id}")

            self.cart.clear_cart(user_id, commit=False)
            self.db.commit()
        except StockExhausted as e:
            self.db.rollback()
            log.warning("Order creation rolled back for user %s: %s", user_id, e)
            return Outcome.fail("Failed to create order", FAILED)
        except SQLAlchemyError:
            self.db.rollback()
            log.exception("Order creation failed for user %s", user_id)
            return Outcome.fail("Failed to create order", FAILED)

        log.info("Order %s (%s) created for user %s, final amount %s",
                 order.id, order.order_number, user_id, final)
        return Outcome.ok("Order created successfully", self.get_order_by_id(order.id))

    # ------------- lookups -------------
    def _load(self):
        return select(Order).options(selectinload(Order.items), selectinload(Order.user))

    def get_order_by_id(self, order_id: int) -> Optional[OrderOut]:
        order = self.db.scalars(self._load().where(Order.id == order_id)).first()
        return order_view(order) if order else None

    def get_order_by_number(self, order_number: str) -> Optional[OrderOut]:
        order = self.db.scalars(self._load().where(Order.order_number == order_number)).first()
        return order_view(order) if order else None

    def get_user_orders(self, user_id: int, limit: int = 10, offset: int = 0) -> List[OrderOut]:
        orders = self.db.scalars(
            self._load()
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(limit).offset(offset)
        ).all()
        return [order_view(o) for o in orders]

    def get_all_orders(self, limit: int = 50, offset: int = 0, status: str = "", search: str = "") -> List[OrderOut]:
        stmt = self._load().join(User, Order.user_id == User.id)
        if status:
            stmt = stmt.where(Order.status == status)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(
                Order.order_number.ilike(pattern), User.name.ilike(pattern), User.mobile.ilike(pattern)
            ))
        orders = self.db.scalars(
            stmt.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).offset(offset)
        ).all()
        return [order_view(o, with_items=False) for o in orders]

    # ------------- state changes -------------
    def update_status(self, order_id: int, status: str) -> Outcome:
        """Move an order forward along ORDER_FLOW. Cancellation goes through cancel_order."""
        if status not in ORDER_FLOW:
            return Outcome.fail(f"Invalid order status: {status}", INVALID)
        order = self.db.get(Order, order_id)
        if not order:
            return Outcome.fail("Order not found", NOT_FOUND)
        if order.status == "cancelled" or ORDER_FLOW.index(status) <= ORDER_FLOW.index(order.status):
            return Outcome.fail(f"Cannot move order from {order.status} to {status}", CONFLICT)

        previous = order.status
        # compare-and-set: a concurrent change (a cancel included) wins and this one is refused
        moved = self.db.execute(
            update(Order).where(Order.id == order_id, Order.status == previous).values(status=status)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if moved.rowcount == 0:
            log.warning("Order %s changed while moving %s -> %s", order_id, previous, status)
            return Outcome.fail(f"Cannot move order from {previous} to {status}", CONFLICT)
        log.info("Order %s status %s -> %s", order_id, previous, status)
        return Outcome.ok("Order status updated", self.get_order_by_id(order_id))

    def update_payment_status(self, order_id: int, payment_status: str) -> Outcome:
        if payment_status not in PAYMENT_STATUSES:
            return Outcome.fail(f"Invalid payment status: {payment_status}", INVALID)
        result = self.db.execute(
            update(Order).where(Order.id == order_id).values(payment_status=payment_status)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount == 0:
            return Outcome.fail("Order not found", NOT_FOUND)
        log.info("Order %s payment status -> %s", order_id, payment_status)
        return Outcome.ok("Payment status updated")

    def cancel_order(self, order_id: int, reason: str = "") -> Outcome:
        order = self.db.scalars(self._load().where(Order.id == order_id)).first()
        if not order:
            return Outcome.fail("Order not found", NOT_FOUND)
        if order.status in NOT_CANCELLABLE:
            log.warning("Order %s cannot be cancelled from status %s", order_id, order.status)
            return Outcome.fail("Order cannot be cancelled", CONFLICT)

        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        note = f"Cancelled: {reason} ({stamp})" if reason else f"Cancelled ({stamp})"
        try:
            # only the request that flips the status restores stock
            claimed = self.db.execute(
                update(Order)
                .where(Order.id == order_id, Order.status.notin_(sorted(NOT_CANCELLABLE)))
                .values(
                    status="cancelled",
                    notes=case((Order.notes.is_(None), note), else_=Order.notes + "\n" + note),
                )
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount == 0:
                self.db.rollback()
                log.warning("Order %s was cancelled or shipped concurrently", order_id)
                return Outcome.fail("Order cannot be cancelled", CONFLICT)
            for item in order.items:
                if not self.catalog.update_stock(item.product_id, item.quantity):
                    log.warning("Could not restore %d units of product %s for order %s",
                                item.quantity, item.product_id, order_id)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            log.exception("Cancelling order %s failed", order_id)
            return Outcome.fail("Failed to cancel order", FAILED)

        log.info("Order %s cancelled (%s)", order_id, reason or "no reason given")
        return Outcome.ok("Order cancelled successfully", self.get_order_by_id(order_id))

    def reorder(self, user_id: int, order_id: int) -> Outcome:
        original = self.get_order_by_id(order_id)
        if not original or original.user_id != user_id:
            return Outcome.fail("Order not found", NOT_FOUND)

        self.cart.clear_cart(user_id)
        added, skipped = self.cart.merge_items(user_id, [(i.product_id, i.quantity) for i in original.items])
        names = {i.product_id: i.product_name for i in original.items}
        unavailable = [names[product_id] for product_id in skipped]

        message = f"Added {added} items to cart"
        if unavailable:
            message += ". Some items are no longer available: " + ", ".join(unavailable)
        log.info("Reorder of %s for user %s: %d added, %d unavailable", order_id, user_id, added, len(unavailable))
        return Outcome.ok(message, {"items_added": added, "unavailable_items": unavailable})

    def order_statistics(self) -> dict:
        def count(*conds) -> int:
            return self.db.scalar(select(func.count(Order.id)).where(*conds)) or 0

        def revenue(*conds):
            return self.db.scalar(
                select(func.sum(Order.final_amount)).where(Order.payment_status == "paid", *conds)
            ) or 0

        day, month = period_starts()
        stats = {"total_orders": count()}
        for status, n in self.db.execute(select(Order.status, func.count(Order.id)).group_by(Order.status)):
            stats[f"orders_{status}"] = n
        stats["orders_today"] = count(Order.created_at >= day)
        stats["orders_month"] = count(Order.created_at >= month)
        stats["total_revenue"] = revenue()
        stats["revenue_today"] = revenue(Order.created_at >= day)
        stats["revenue_month"] = revenue(Order.created_at >= month)
        log.debug("Order statistics: %s", stats)
        return stats
