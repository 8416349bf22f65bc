import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from db.models import Category, Product
from db.schemas import CategoryOut, ProductOut
from services.results import Outcome, INVALID, NOT_FOUND

log = logging.getLogger(__name__)

PRODUCT_FIELDS = ("name", "description", "short_description", "price", "discount_price", "weight",
                  "stock_quantity", "category_id", "image_url", "featured", "is_active")


def pricing(price: Decimal, discount_price: Optional[Decimal]) -> dict:
    """Derived price fields shared by every product and cart-line view."""
    has_discount = discount_price is not None and discount_price < price
    if has_discount and price > 0:
        percentage = ((price - discount_price) / price * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    else:
        percentage = Decimal("0")
    return {
        "has_discount": has_discount,
        "discount_percentage": int(percentage),
        "final_price": discount_price if has_discount else price,
    }


def product_view(product: Product) -> ProductOut:
    return ProductOut(
        id=product.id,
        name=product.name,
        description=product.description,
        short_description=product.short_description,
        price=product.price,
        discount_price=product.discount_price,
        weight=product.weight,
        stock_quantity=product.stock_quantity,
        category_id=product.category_id,
        category_name=product.category.name if product.category else None,
        image_url=product.image_url,
        featured=product.featured,
        in_stock=product.stock_quantity > 0,
        **pricing(product.price, product.discount_price),
    )


class CatalogService:
    def __init__(self, db: Session):
        self.db = db

    def _active(self):
        return select(Product).where(Product.is_active.is_(True))

    def _newest_featured_first(self, stmt):
        return stmt.order_by(Product.featured.desc(), Product.created_at.desc(), Product.id.desc())

    def list_products(self, limit: int = 50, offset: int = 0, featured_only: bool = False) -> List[ProductOut]:
        stmt = self._active()
        if featured_only:
            stmt = stmt.where(Product.featured.is_(True))
        stmt = self._newest_featured_first(stmt).limit(limit).offset(offset)
        products = self.db.scalars(stmt).all()
        log.debug("Listed %d products (limit=%d offset=%d featured=%s)", len(products), limit, offset, featured_only)
        return [product_view(p) for p in products]

    def featured_products(self, limit: int = 6) -> List[ProductOut]:
        return self.list_products(limit, 0, featured_only=True)

    def get_product(self, product_id: int) -> Optional[ProductOut]:
        product = self.db.scalars(self._active().where(Product.id == product_id)).first()
        return product_view(product) if product else None

    def products_by_category(self, category_id: int, limit: int = 50, offset: int = 0) -> List[ProductOut]:
        stmt = self._newest_featured_first(self._active().where(Product.category_id == category_id))
        return [product_view(p) for p in self.db.scalars(stmt.limit(limit).offset(offset)).all()]

    def search_products(self, term: str, limit: int = 50, offset: int = 0) -> List[ProductOut]:
        pattern = f"%{term}%"
        stmt = (
            self._active()
            .outerjoin(Category, Product.category_id == Category.id)
            .where(or_(
                Product.name.ilike(pattern),
                Product.description.ilike(pattern),
                Product.short_description.ilike(pattern),
                Category.name.ilike(pattern),
            ))
        )
        products = self.db.scalars(self._newest_featured_first(stmt).limit(limit).offset(offset)).all()
        log.debug("Search %r matched %d products", term, len(products))
        return [product_view(p) for p in products]

    def related_products(self, product_id: int, limit: int = 4) -> List[ProductOut]:
        product = self.db.get(Product, product_id)
        if not product or not product.is_active or product.category_id is None:
            return []
        stmt = self._active().where(Product.category_id == product.category_id, Product.id != product_id)
        return [product_view(p) for p in self.db.scalars(self._newest_featured_first(stmt).limit(limit)).all()]

    def _categories(self):
        return (
            select(Category, func.count(Product.id))
            .outerjoin(Product, (Product.category_id == Category.id) & Product.is_active.is_(True))
            .where(Category.is_active.is_(True))
            .group_by(Category.id)
        )

    def list_categories(self) -> List[CategoryOut]:
        rows = self.db.execute(self._categories().order_by(Category.name)).all()
        return [CategoryOut(id=c.id, name=c.name, description=c.description, product_count=n) for c, n in rows]

    def get_category(self, category_id: int) -> Optional[CategoryOut]:
        row = self.db.execute(self._categories().where(Category.id == category_id)).first()
        if not row:
            return None
        c, n = row
        return CategoryOut(id=c.id, name=c.name, description=c.description, product_count=n)

    def check_availability(self, product_id: int, quantity: int) -> bool:
        stock = self.db.scalar(
            select(Product.stock_quantity).where(Product.id == product_id, Product.is_active.is_(True))
        )
        if stock is None:
            log.warning("Availability check for unknown or inactive product %s", product_id)
            return False
        return stock >= quantity

    def update_stock(self, product_id: int, delta: int) -> bool:
        """
        Apply ``delta`` to a product's stock in one conditional UPDATE.

        The guard lives in the WHERE clause, so concurrent decrements cannot take
        stock below zero. Runs inside the caller's transaction; does not commit.
        """
        result = self.db.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock_quantity + delta >= 0)
            .values(stock_quantity=Product.stock_quantity + delta)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            log.warning("Stock update refused for product %s (delta=%d)", product_id, delta)
            return False
        product = self.db.identity_map.get(self.db.identity_key(Product, product_id))
        if product is not None:
            self.db.expire(product, ["stock_quantity"])
        log.info("Stock of product %s changed by %d", product_id, delta)
        return True

    def create_product(self, data: dict) -> Outcome:
        product = Product(
            name=data["name"],
            description=data.get("description"),
            short_description=data.get("short_description"),
            price=Decimal(str(data["price"])),
            discount_price=Decimal(str(data["discount_price"])) if data.get("discount_price") is not None else None,
            weight=data.get("weight"),
            stock_quantity=data.get("stock_quantity", 0),
            category_id=data.get("category_id"),
            image_url=data.get("image_url"),
            featured=data.get("featured", False),
        )
        self.db.add(product)
        self.db.commit()
        self.db.refresh(product)
        log.info("Product %s created (%s)", product.id, product.name)
        return Outcome.ok("Product created", product_view(product))

    def update_product(self, product_id: int, data: dict) -> Outcome:
        changes = {k: v for k, v in data.items() if k in PRODUCT_FIELDS and v is not None}
        if not changes:
            log.warning("No valid fields to update for product %s", product_id)
            return Outcome.fail("No valid fields to update", INVALID)
        if changes.get("stock_quantity", 0) < 0:
            return Outcome.fail("Stock quantity cannot be negative", INVALID)
        product = self.db.get(Product, product_id)
        if not product:
            return Outcome.fail("Product not found", NOT_FOUND)

        for field in ("price", "discount_price"):
            if field in changes:
                changes[field] = Decimal(str(changes[field]))
        for field, value in changes.items():
            setattr(product, field, value)
        self.db.commit()
        self.db.refresh(product)
        log.info("Product %s updated fields %s", product_id, sorted(changes))
        return Outcome.ok("Product updated", product_view(product))

    def product_statistics(self) -> dict:
        def count(*conds) -> int:
            return self.db.scalar(select(func.count(Product.id)).where(Product.is_active.is_(True), *conds)) or 0

        return {
            "total_products": count(),
            "featured_products": count(Product.featured.is_(True)),
            "out_of_stock": count(Product.stock_quantity == 0),
            "low_stock": count(Product.stock_quantity > 0, Product.stock_quantity < 10),
            "total_categories": self.db.scalar(
                select(func.count(Category.id)).where(Category.is_active.is_(True))
            ) or 0,
        }
