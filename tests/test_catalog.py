from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from db.database import make_engine
from db.models import Base, Product
from services.catalog import CatalogService, pricing
from services.results import INVALID, NOT_FOUND


def test_pricing_with_real_discount():
    derived = pricing(Decimal("200.00"), Decimal("150.00"))
    assert derived == {"has_discount": True, "discount_percentage": 25, "final_price": Decimal("150.00")}


def test_pricing_rounds_percentage_half_up():
    # 1/3 off -> 33.33..%, 2/3 off -> 66.66..%
    assert pricing(Decimal("300"), Decimal("200"))["discount_percentage"] == 33
    assert pricing(Decimal("300"), Decimal("100"))["discount_percentage"] == 67


def test_discount_not_lower_than_price_is_ignored():
    for discount in (None, Decimal("200"), Decimal("250")):
        derived = pricing(Decimal("200"), discount)
        assert derived["has_discount"] is False
        assert derived["discount_percentage"] == 0
        assert derived["final_price"] == Decimal("200")


def test_product_views_carry_derived_fields(db, make_product):
    make_product(name="Ghee", price="500", discount_price="450", stock=0)
    make_product(name="Honey", price="300", stock=3)

    products = {p.name: p for p in CatalogService(db).list_products()}
    assert products["Ghee"].in_stock is False
    assert products["Ghee"].has_discount is True
    assert products["Ghee"].final_price == Decimal("450")
    assert products["Honey"].in_stock is True
    assert products["Honey"].has_discount is False
    for p in products.values():
        assert p.in_stock == (p.stock_quantity > 0)
        if p.has_discount:
            assert p.discount_price < p.price


def test_list_hides_inactive_and_puts_featured_first(db, make_product):
    make_product(name="Plain")
    make_product(name="Star", featured=True)
    make_product(name="Hidden", is_active=False)

    catalog = CatalogService(db)
    names = [p.name for p in catalog.list_products()]
    assert names[0] == "Star"
    assert "Hidden" not in names
    assert [p.name for p in catalog.featured_products()] == ["Star"]


def test_get_product_ignores_inactive(db, make_product):
    hidden = make_product(name="Hidden", is_active=False)
    assert CatalogService(db).get_product(hidden.id) is None


def test_search_matches_category_name(db, make_category, make_product):
    oils = make_category("Oils")
    make_product(name="Mustard Seeds", category=oils)
    make_product(name="Jaggery")

    found = CatalogService(db).search_products("oils")
    assert [p.name for p in found] == ["Mustard Seeds"]
    assert found[0].category_name == "Oils"


def test_related_products_share_category_and_exclude_self(db, make_category, make_product):
    oils, sweets = make_category("Oils"), make_category("Sweets")
    mustard = make_product(name="Mustard Oil", category=oils)
    make_product(name="Coconut Oil", category=oils)
    make_product(name="Jaggery", category=sweets)

    related = CatalogService(db).related_products(mustard.id)
    assert [p.name for p in related] == ["Coconut Oil"]


def test_categories_count_active_products_only(db, make_category, make_product):
    oils = make_category("Oils")
    make_category("Retired", is_active=False)
    make_product(name="Mustard Oil", category=oils)
    make_product(name="Old Oil", category=oils, is_active=False)

    catalog = CatalogService(db)
    categories = catalog.list_categories()
    assert [(c.name, c.product_count) for c in categories] == [("Oils", 1)]
    assert catalog.get_category(oils.id).product_count == 1


def test_check_availability(db, make_product):
    product = make_product(stock=3)
    hidden = make_product(name="Hidden", stock=50, is_active=False)
    catalog = CatalogService(db)
    assert catalog.check_availability(product.id, 3) is True
    assert catalog.check_availability(product.id, 4) is False
    assert catalog.check_availability(hidden.id, 1) is False
    assert catalog.check_availability(999, 1) is False


def test_update_stock_is_conditional(db, make_product):
    product = make_product(stock=5)
    catalog = CatalogService(db)

    assert catalog.update_stock(product.id, -3) is True
    db.commit()
    assert product.stock_quantity == 2

    assert catalog.update_stock(product.id, -3) is False
    db.commit()
    assert product.stock_quantity == 2

    assert catalog.update_stock(product.id, 4) is True
    db.commit()
    assert product.stock_quantity == 6


def test_concurrent_decrements_never_oversell(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, autoflush=False)

    with Session() as s:
        product = Product(name="Limited Ghee", price=Decimal("900"), stock_quantity=5)
        s.add(product)
        s.commit()
        product_id = product.id

    def buy_one(_):
        with Session() as s:
            ok = CatalogService(s).update_stock(product_id, -1)
            if ok:
                s.commit()
            else:
                s.rollback()
            return ok

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(buy_one, range(12)))

    assert results.count(True) == 5
    with Session() as s:
        assert s.scalar(select(Product.stock_quantity).where(Product.id == product_id)) == 0
    engine.dispose()


def test_create_product_and_statistics(db, make_category):
    oils = make_category("Oils")
    catalog = CatalogService(db)
    outcome = catalog.create_product({"name": "Sesame Oil", "price": 250, "discount_price": 220,
                                      "stock_quantity": 4, "category_id": oils.id, "featured": True})
    assert outcome.success
    assert outcome.data.final_price == Decimal("220")
    catalog.create_product({"name": "Sold Out", "price": 100, "stock_quantity": 0})

    stats = catalog.product_statistics()
    assert stats == {"total_products": 2, "featured_products": 1, "out_of_stock": 1,
                     "low_stock": 1, "total_categories": 1}


def test_update_product(db, make_category, make_product):
    oils, ghee = make_category("Oils"), make_category("Ghee")
    product = make_product(name="Mustard Oil", price="200", stock=5, category=oils)
    catalog = CatalogService(db)

    outcome = catalog.update_product(product.id, {
        "price": 240, "discount_price": "210", "category_id": ghee.id, "stock_quantity": 12, "sku": "ignored",
    })
    assert outcome.success
    updated = outcome.data
    assert (updated.price, updated.final_price, updated.discount_percentage) == (Decimal("240"), Decimal("210"), 13)
    assert updated.category_name == "Ghee"
    assert updated.stock_quantity == 12

    assert catalog.update_product(product.id, {"is_active": False}).success
    assert catalog.get_product(product.id) is None

    assert catalog.update_product(product.id, {"sku": "x", "name": None}).reason == INVALID
    assert catalog.update_product(product.id, {"stock_quantity": -1}).reason == INVALID
    assert catalog.update_product(999, {"name": "Ghost"}).reason == NOT_FOUND
