import logging
from decimal import Decimal
from typing import Iterable, List, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, joinedload

from core.config import Settings, settings as default_settings
from db.models import CartItem, Product
from db.schemas import CartLineOut, CartSummaryOut, CartValidationOut
from services.catalog import CatalogService, pricing
from services.results import Outcome, INVALID, NOT_FOUND, UNAVAILABLE

log = logging.getLogger(__name__)

ZERO = Decimal("0")


class CartService:
    def __init__(self, db: Session, settings: Settings = default_settings):
        self.db = db
        self.settings = settings
        self.catalog = CatalogService(db)

    def _row(self, user_id: int, product_id: int):
        return self.db.scalars(
            select(CartItem).where(CartItem.user_id == user_id, CartItem.product_id == product_id)
        ).first()

    def add_item(self, user_id: int, product_id: int, quantity: int = 1) -> Outcome:
        if quantity < 1:
            return Outcome.fail("Quantity must be at least 1", INVALID)
        if not self.catalog.check_availability(product_id, quantity):
            log.warning("Product %s not available for user %s (requested %d)", product_id, user_id, quantity)
            return Outcome.fail("Product not available in requested quantity", UNAVAILABLE)

        existing = self._row(user_id, product_id)
        if existing:
            new_quantity = existing.quantity + quantity
            if not self.catalog.check_availability(product_id, new_quantity):
                return Outcome.fail("Cannot add more items. Stock limit reached", UNAVAILABLE)
            existing.quantity = new_quantity
            log.info("Cart line user=%s product=%s now %d", user_id, product_id, new_quantity)
        else:
            self.db.add(CartItem(user_id=user_id, product_id=product_id, quantity=quantity))
            log.info("Cart line user=%s product=%s added with %d", user_id, product_id, quantity)
        self.db.commit()
        return Outcome.ok("Item added to cart")

    def update_item(self, user_id: int, product_id: int, quantity: int) -> Outcome:
        if quantity <= 0:
            return self.remove_item(user_id, product_id)
        if not self.catalog.check_availability(product_id, quantity):
            return Outcome.fail("Product not available in requested quantity", UNAVAILABLE)

        result = self.db.execute(
            update(CartItem)
            .where(CartItem.user_id == user_id, CartItem.product_id == product_id)
            .values(quantity=quantity)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount == 0:
            log.warning("No cart line to update for user=%s product=%s", user_id, product_id)
            return Outcome.fail("Cart item not found", NOT_FOUND)
        return Outcome.ok("Cart updated")

    def remove_item(self, user_id: int, product_id: int) -> Outcome:
        result = self.db.execute(
            delete(CartItem)
            .where(CartItem.user_id == user_id, CartItem.product_id == product_id)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount == 0:
            return Outcome.fail("Cart item not found", NOT_FOUND)
        log.info("Cart line user=%s product=%s removed", user_id, product_id)
        return Outcome.ok("Item removed from cart")

    def clear_cart(self, user_id: int, commit: bool = True) -> int:
        """Delete every line of the user's cart. Pass ``commit=False`` to stay inside a caller's transaction."""
        result = self.db.execute(
            delete(CartItem).where(CartItem.user_id == user_id).execution_options(synchronize_session=False)
        )
        if commit:
            self.db.commit()
        log.info("Cart of user %s cleared (%d lines)", user_id, result.rowcount)
        return result.rowcount

    def get_cart_items(self, user_id: int) -> List[CartLineOut]:
        rows = self.db.scalars(
            select(CartItem)
            .join(Product, CartItem.product_id == Product.id)
            .where(CartItem.user_id == user_id, Product.is_active.is_(True))
            .options(joinedload(CartItem.product))
            .order_by(CartItem.id)
        ).all()

        lines = []
        for row in rows:
            p = row.product
            derived = pricing(p.price, p.discount_price)
            lines.append(CartLineOut(
                product_id=p.id,
                name=p.name,
                weight=p.weight,
                image_url=p.image_url,
                quantity=row.quantity,
                price=p.price,
                discount_price=p.discount_price,
                line_total=derived["final_price"] * row.quantity,
                stock_quantity=p.stock_quantity,
                in_stock=p.stock_quantity >= row.quantity,
                **derived,
            ))
        return lines

    def get_cart_summary(self, user_id: int) -> CartSummaryOut:
        items = self.get_cart_items(user_id)
        subtotal = sum((i.line_total for i in items), ZERO)
        discount = sum(((i.price - i.final_price) * i.quantity for i in items if i.has_discount), ZERO)

        shipping = ZERO
        if subtotal > 0 and subtotal < self.settings.FREE_SHIPPING_THRESHOLD:
            shipping = self.settings.SHIPPING_CHARGES

        summary = CartSummaryOut(
            item_count=len(items),
            total_quantity=sum(i.quantity for i in items),
            subtotal=subtotal,
            discount_amount=discount,
            shipping_amount=shipping,
            total_amount=subtotal + shipping,
            has_out_of_stock=any(not i.in_stock for i in items),
            meets_minimum_order=subtotal >= self.settings.MIN_ORDER_AMOUNT,
            items=items,
        )
        log.debug("Cart summary user=%s items=%d total=%s", user_id, summary.item_count, summary.total_amount)
        return summary

    def validate_cart(self, user_id: int) -> CartValidationOut:
        summary = self.get_cart_summary(user_id)
        errors = []
        if summary.item_count == 0:
            errors.append("Cart is empty")
        else:
            if not summary.meets_minimum_order:
                errors.append(f"Minimum order amount is {self.settings.CURRENCY_SYMBOL}{self.settings.MIN_ORDER_AMOUNT}")
            for item in summary.items:
                if not self.catalog.check_availability(item.product_id, item.quantity):
                    errors.append(f"'{item.name}' is not available in requested quantity")

        log.info("Cart of user %s validated: valid=%s errors=%d", user_id, not errors, len(errors))
        return CartValidationOut(valid=not errors, errors=errors, summary=summary)

    def item_count(self, user_id: int) -> int:
        total = self.db.scalar(select(func.sum(CartItem.quantity)).where(CartItem.user_id == user_id))
        return int(total or 0)

    def merge_items(self, user_id: int, items: Iterable[Tuple[int, int]]) -> Tuple[int, List[int]]:
        """Add (product_id, quantity) pairs to the cart. Returns (added count, skipped product ids)."""
        added, skipped = 0, []
        for product_id, quantity in items:
            if self.add_item(user_id, product_id, quantity):
                added += 1
            else:
                skipped.append(product_id)
        return added, skipped
