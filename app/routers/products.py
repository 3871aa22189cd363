import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.core.api_docs import error_responses
from app.core.deps import get_db
from app.core.money import to_money
from app.core.permissions import ALL_ROLES, MANAGER_ROLES, require_platform_roles
from app.core.security_current import PlatformAccess, get_current_user
from app.models.product import Product
from app.models.user import User
from app.schemas.common import PaginationMeta
from app.schemas.product import ProductCreate, ProductListOut, ProductOut, ProductUpdate
from app.services.audit_service import log_audit_event

router = APIRouter(prefix="/products", tags=["products"])
MAX_PRODUCT_PAGE_SIZE = 500


def product_out(product: Product) -> ProductOut:
    return ProductOut(
        id=product.id,
        name=product.name,
        description=product.description,
        category=product.category,
        sku=product.sku,
        image_url=product.image_url,
        price=float(to_money(product.price)),
        currency=product.currency,
        is_active=product.is_active,
        created_at=product.created_at,
        updated_at=product.updated_at,
    )


def _ensure_sku_available(db: Session, platform_id: str, sku: str, exclude_id: str | None = None) -> None:
    stmt = select(Product.id).where(
        Product.platform_id == platform_id,
        func.lower(Product.sku) == sku.lower(),
    )
    if exclude_id:
        stmt = stmt.where(Product.id != exclude_id)
    if db.execute(stmt).scalar_one_or_none():
        raise HTTPException(status_code=409, detail="SKU already exists")


@router.post(
    "",
    response_model=ProductOut,
    status_code=201,
    summary="Create product",
    responses=error_responses(400, 401, 402, 403, 404, 409, 422, 500),
)
def create_product(
    payload: ProductCreate,
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles(*MANAGER_ROLES)),
    actor: User = Depends(get_current_user),
):
    platform = access.platform
    if payload.sku:
        _ensure_sku_available(db, platform.id, payload.sku)

    product = Product(
        id=str(uuid.uuid4()),
        platform_id=platform.id,
        name=payload.name,
        description=payload.description,
        category=payload.category,
        sku=payload.sku,
        image_url=payload.image_url,
        price=to_money(payload.price),
        currency=payload.currency,
        is_active=payload.is_active,
    )
    db.add(product)
    log_audit_event(
        db,
        platform_id=platform.id,
        actor_user_id=actor.id,
        action="product.create",
        target_type="product",
        target_id=product.id,
        metadata_json={"name": product.name, "price": float(product.price)},
    )
    db.commit()
    db.refresh(product)
    return product_out(product)


@router.get(
    "",
    response_model=ProductListOut,
    summary="List products",
    responses=error_responses(401, 402, 403, 404, 422, 500),
)
def list_products(
    q: str | None = Query(default=None, max_length=100),
    category: str | None = Query(default=None, max_length=100),
    is_active: bool | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=MAX_PRODUCT_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles(*ALL_ROLES)),
):
    normalized_q = q.strip() if q and q.strip() else None
    normalized_category = category.strip() if category and category.strip() else None

    count_stmt = select(func.count(Product.id)).where(Product.platform_id == access.platform.id)
    data_stmt = select(Product).where(Product.platform_id == access.platform.id)
    if normalized_q:
        pattern = f"%{normalized_q.lower()}%"
        condition = or_(func.lower(Product.name).like(pattern), func.lower(Product.sku).like(pattern))
        count_stmt = count_stmt.where(condition)
        data_stmt = data_stmt.where(condition)
    if normalized_category:
        count_stmt = count_stmt.where(Product.category == normalized_category)
        data_stmt = data_stmt.where(Product.category == normalized_category)
    if is_active is not None:
        count_stmt = count_stmt.where(Product.is_active.is_(is_active))
        data_stmt = data_stmt.where(Product.is_active.is_(is_active))

    total_count = int(db.execute(count_stmt).scalar_one())
    rows = db.execute(
        data_stmt.order_by(Product.created_at.desc(), Product.id.asc()).offset(offset).limit(limit)
    ).scalars().all()
    items = [product_out(row) for row in rows]
    count = len(items)
    return ProductListOut(
        items=items,
        pagination=PaginationMeta(
            total=total_count,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total_count,
        ),
        q=normalized_q,
        category=normalized_category,
        is_active=is_active,
    )


@router.patch(
    "/{product_id}",
    response_model=ProductOut,
    summary="Update product",
    responses=error_responses(400, 401, 402, 403, 404, 409, 422, 500),
)
def update_product(
    product_id: str,
    payload: ProductUpdate,
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles(*MANAGER_ROLES)),
    actor: User = Depends(get_current_user),
):
    product = db.execute(
        select(Product).where(Product.id == product_id, Product.platform_id == access.platform.id)
    ).scalar_one_or_none()
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")

    changes = payload.model_dump(exclude_unset=True)
    if changes.get("sku"):
        _ensure_sku_available(db, access.platform.id, changes["sku"], exclude_id=product.id)
    if "name" in changes and changes["name"] is None:
        raise HTTPException(status_code=400, detail="name cannot be empty")
    if "price" in changes:
        if changes["price"] is None:
            raise HTTPException(status_code=400, detail="price cannot be empty")
        changes["price"] = to_money(changes["price"])
    if "is_active" in changes and changes["is_active"] is None:
        changes.pop("is_active")

    for field_name, value in changes.items():
        setattr(product, field_name, value)

    log_audit_event(
        db,
        platform_id=access.platform.id,
        actor_user_id=actor.id,
        action="product.update",
        target_type="product",
        target_id=product.id,
        metadata_json={"fields": sorted(changes)},
    )
    db.commit()
    db.refresh(product)
    return product_out(product)
