# backend/routes/products.py
import re
from typing import Optional, List
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import or_
from sqlalchemy.orm import Session

from database import get_db
from utils.tokenJWT import require_admin
from utils.audit import write_log, client_ip
from models.users import User
from models.product import Product, Category
from services.catalog import adjust_stock
from services.errors import InsufficientStock
import schemas.product as product_schemas

router = APIRouter(tags=["Products"])


# ---- HELPERS ----
def _norm_sku(sku: Optional[str]) -> Optional[str]:
    if sku is None:
        return None
    s = sku.strip().upper()
    return s if s else None

def _slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.strip().lower()).strip("-")

def _sku_taken(db: Session, sku: str, exclude_id: Optional[int] = None) -> bool:
    q = db.query(Product.id).filter(Product.sku == sku)
    if exclude_id is not None:
        q = q.filter(Product.id != exclude_id)
    return q.first() is not None


# =========================
# PRODUCT LIST (storefront)
# =========================
@router.get("/products", response_model=product_schemas.ProductListPage)
def list_products(
    search: Optional[str] = Query(None),
    category: Optional[str] = Query(None, description="Category id or slug"),
    brand: Optional[str] = Query(None),
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    in_stock: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(12, ge=1, le=100),
    sort_by: str = Query("created_at"),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
):
    query = db.query(Product).filter(Product.active.is_(True))

    if search:
        like = f"%{search}%"
        query = query.filter(or_(
            Product.name.ilike(like), Product.brand.ilike(like), Product.description.ilike(like)
        ))
    if category:
        if category.isdigit():
            query = query.filter(Product.category_id == int(category))
        else:
            query = query.join(Category).filter(Category.slug == category)
    if brand:
        query = query.filter(Product.brand.ilike(brand))
    if min_price is not None:
        query = query.filter(Product.price >= min_price)
    if max_price is not None:
        query = query.filter(Product.price <= max_price)
    if in_stock:
        query = query.filter(Product.stock > 0)

    allowed = {
        "id": Product.id, "name": Product.name, "price": Product.price,
        "sold": Product.sold, "created_at": Product.created_at,
    }
    sort_col = allowed.get(sort_by.lower(), Product.created_at)
    query = query.order_by(sort_col.asc() if order == "asc" else sort_col.desc(), Product.id.asc())

    total = query.count()
    items: List[Product] = query.offset((page - 1) * page_size).limit(page_size).all()
    return {"items": items, "total": total, "page": page, "page_size": page_size}


# =========================
# STOREFRONT SHELVES
# =========================
@router.get("/products/best-sellers", response_model=List[product_schemas.ProductOut])
def best_sellers(limit: int = Query(8, ge=1, le=50), db: Session = Depends(get_db)):
    return (
        db.query(Product)
        .filter(Product.active.is_(True), Product.sold > 0)
        .order_by(Product.sold.desc(), Product.id.asc())
        .limit(limit)
        .all()
    )


@router.get("/products/new-arrivals", response_model=List[product_schemas.ProductOut])
def new_arrivals(limit: int = Query(8, ge=1, le=50), db: Session = Depends(get_db)):
    return (
        db.query(Product)
        .filter(Product.active.is_(True))
        .order_by(Product.created_at.desc(), Product.id.desc())
        .limit(limit)
        .all()
    )


# =========================
# SINGLE PRODUCT
# =========================
@router.get("/products/{product_id}", response_model=product_schemas.ProductOut)
def get_product(product_id: int, db: Session = Depends(get_db)):
    product = db.query(Product).filter(Product.id == product_id, Product.active.is_(True)).first()
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@router.get("/products/{product_id}/related", response_model=List[product_schemas.ProductOut])
def related_products(product_id: int, limit: int = Query(4, ge=1, le=20), db: Session = Depends(get_db)):
    product = db.query(Product).filter(Product.id == product_id, Product.active.is_(True)).first()
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")

    # Same category first, then same brand
    matches = []
    if product.category_id is not None:
        matches.append(Product.category_id == product.category_id)
    if product.brand:
        matches.append(Product.brand == product.brand)
    if not matches:
        return []
    return (
        db.query(Product)
        .filter(Product.active.is_(True), Product.id != product.id, or_(*matches))
        .order_by(Product.sold.desc(), Product.id.asc())
        .limit(limit)
        .all()
    )


# =========================
# CREATE PRODUCT (admin)
# =========================
@router.post("/products", response_model=product_schemas.ProductOut, status_code=201)
def add_product(
    payload: product_schemas.ProductCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    sku = _norm_sku(payload.sku)
    if not sku:
        raise HTTPException(status_code=400, detail="SKU is required")
    if _sku_taken(db, sku):
        raise HTTPException(status_code=409, detail="Product SKU already exists")
    if payload.category_id is not None and not db.get(Category, payload.category_id):
        raise HTTPException(status_code=404, detail="Category not found")

    data = payload.model_dump()
    data["sku"] = sku
    new_product = Product(**data)
    db.add(new_product)
    db.commit()
    db.refresh(new_product)

    write_log(
        db, user_id=current_user.id, action="PRODUCT_CREATE", resource="products",
        resource_id=new_product.id, ip=client_ip(request), meta={"sku": new_product.sku},
    )
    db.refresh(new_product)
    return new_product


# =========================
# PARTIAL UPDATE (admin)
# =========================
@router.patch("/products/{product_id}", response_model=product_schemas.ProductOut)
def edit_product(
    product_id: int,
    payload: product_schemas.ProductEditRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    p = db.query(Product).filter(Product.id == product_id).first()
    if not p:
        raise HTTPException(status_code=404, detail="Product not found")

    changes = payload.model_dump(exclude_unset=True)
    if "sku" in changes:
        changes["sku"] = _norm_sku(changes["sku"])
        if not changes["sku"]:
            raise HTTPException(status_code=400, detail="SKU is required")
        if _sku_taken(db, changes["sku"], exclude_id=p.id):
            raise HTTPException(status_code=409, detail="Product SKU already exists")
    if changes.get("category_id") is not None and not db.get(Category, changes["category_id"]):
        raise HTTPException(status_code=404, detail="Category not found")

    price = changes.get("price", p.price)
    discount_price = changes.get("discount_price", p.discount_price)
    if discount_price is not None and discount_price > price:
        raise HTTPException(status_code=400, detail="discount_price must not exceed price")

    for key, value in changes.items():
        setattr(p, key, value)
    db.commit()
    db.refresh(p)

    write_log(
        db, user_id=current_user.id, action="PRODUCT_UPDATE", resource="products",
        resource_id=p.id, ip=client_ip(request), meta={"fields": sorted(changes)},
    )
    db.refresh(p)
    return p


# =========================
# STOCK CORRECTION (admin)
# =========================
@router.put("/products/{product_id}/stock", response_model=product_schemas.ProductOut)
def update_stock(
    product_id: int,
    payload: product_schemas.StockUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    p = db.query(Product).filter(Product.id == product_id).first()
    if not p:
        raise HTTPException(status_code=404, detail="Product not found")

    before = p.stock
    if payload.operation == "add":
        delta = payload.quantity
    elif payload.operation == "subtract":
        delta = -payload.quantity
    else:
        delta = payload.quantity - before

    if delta and not adjust_stock(db, p.id, delta):
        db.rollback()
        raise InsufficientStock(p.name, -delta, p.stock, product_id=p.id)
    db.commit()
    db.refresh(p)

    write_log(
        db, user_id=current_user.id, action="PRODUCT_STOCK_UPDATE", resource="products",
        resource_id=p.id, ip=client_ip(request),
        meta={"operation": payload.operation, "quantity": payload.quantity,
              "before": before, "after": p.stock, "reason": payload.reason},
    )
    db.refresh(p)
    return p


# =========================
# CATEGORIES
# =========================
@router.get("/categories", response_model=List[product_schemas.CategoryOut])
def list_categories(db: Session = Depends(get_db)):
    return db.query(Category).filter(Category.active.is_(True)).order_by(Category.name).all()


@router.post("/categories", response_model=product_schemas.CategoryOut, status_code=201)
def add_category(
    payload: product_schemas.CategoryCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    name = payload.name.strip()
    slug = _slugify(payload.slug or name)
    if not slug:
        raise HTTPException(status_code=400, detail="Invalid category name")

    exists = db.query(Category).filter(or_(Category.name == name, Category.slug == slug)).first()
    if exists:
        raise HTTPException(status_code=409, detail="Category already exists")

    category = Category(name=name, slug=slug, description=payload.description)
    db.add(category)
    db.commit()
    db.refresh(category)

    write_log(
        db, user_id=current_user.id, action="CATEGORY_CREATE", resource="categories",
        resource_id=category.id, ip=client_ip(request), meta={"slug": category.slug},
    )
    db.refresh(category)
    return category
