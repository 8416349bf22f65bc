from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from core.responses import envelope
from db.database import get_db
from services.catalog import CatalogService
from utils.paging import clamp, paging

router = APIRouter()


@router.get("/list")
def list_products(request: Request, limit: int = 20, offset: int = 0, featured: bool = False,
                  db: Session = Depends(get_db)):
    limit, offset = paging(limit, offset, 100)
    products = CatalogService(db).list_products(limit, offset, featured_only=featured)
    return envelope(request, {
        "products": products,
        "pagination": {"limit": limit, "offset": offset, "count": len(products)},
    })


@router.get("/featured")
def featured(request: Request, limit: int = 6, db: Session = Depends(get_db)):
    products = CatalogService(db).featured_products(clamp(limit, 1, 20))
    return envelope(request, {"products": products, "count": len(products)})


@router.get("/detail")
def detail(request: Request, id: int = 0, db: Session = Depends(get_db)):
    if id <= 0:
        raise HTTPException(status_code=400, detail="Invalid product ID")
    catalog = CatalogService(db)
    product = catalog.get_product(id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return envelope(request, {"product": product, "related_products": catalog.related_products(id, 4)})


@router.get("/search")
def search(request: Request, q: str = "", limit: int = 20, offset: int = 0, db: Session = Depends(get_db)):
    term = q.strip()
    if not term:
        raise HTTPException(status_code=400, detail="Search term required")
    if len(term) < 2:
        raise HTTPException(status_code=400, detail="Search term must be at least 2 characters")
    limit, offset = paging(limit, offset, 100)
    products = CatalogService(db).search_products(term, limit, offset)
    return envelope(request, {
        "products": products,
        "search_term": term,
        "pagination": {"limit": limit, "offset": offset, "count": len(products)},
    })


@router.get("/categories")
def categories(request: Request, db: Session = Depends(get_db)):
    rows = CatalogService(db).list_categories()
    return envelope(request, {"categories": rows, "count": len(rows)})


@router.get("/by-category")
def by_category(request: Request, category_id: int = 0, limit: int = 20, offset: int = 0,
                db: Session = Depends(get_db)):
    if category_id <= 0:
        raise HTTPException(status_code=400, detail="Invalid category ID")
    catalog = CatalogService(db)
    category = catalog.get_category(category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    limit, offset = paging(limit, offset, 100)
    products = catalog.products_by_category(category_id, limit, offset)
    return envelope(request, {
        "products": products,
        "category": category,
        "pagination": {"limit": limit, "offset": offset, "count": len(products)},
    })


@router.get("/related")
def related(request: Request, product_id: int = 0, limit: int = 4, db: Session = Depends(get_db)):
    if product_id <= 0:
        raise HTTPException(status_code=400, detail="Invalid product ID")
    products = CatalogService(db).related_products(product_id, clamp(limit, 1, 20))
    return envelope(request, {"products": products, "count": len(products)})
