from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.api_docs import error_responses
from app.core.deps import get_db
from app.core.money import to_money
from app.core.observability import log_event
from app.core.rate_limit import client_ip, enforce_storefront_rate_limit
from app.core.subscription_gate import get_storefront_platform
from app.models.platform import Platform
from app.models.product import Product
from app.routers.tracking import request_host, tracking_result_out
from app.schemas.common import PaginationMeta
from app.schemas.order import StorefrontOrderCreate, StorefrontOrderOut
from app.schemas.product import PublicProductListOut, PublicProductOut
from app.services.audit_service import log_audit_event
from app.services.order_service import CustomerDetails, OrderLine, create_order
from app.services.tracking_service import report_order_purchase
from app.services.whatsapp_service import send_order_confirmation

router = APIRouter(
    prefix="/storefront/{subdomain}",
    tags=["storefront"],
    dependencies=[Depends(enforce_storefront_rate_limit)],
)


@router.get(
    "/products",
    response_model=PublicProductListOut,
    summary="Public product catalog",
    responses=error_responses(403, 404, 422, 429, 500),
)
def list_public_products(
    category: str | None = Query(default=None, max_length=100),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    platform: Platform = Depends(get_storefront_platform),
):
    filters = [Product.platform_id == platform.id, Product.is_active.is_(True)]
    normalized_category = category.strip() if category and category.strip() else None
    if normalized_category:
        filters.append(Product.category == normalized_category)

    total_count = int(db.execute(select(func.count(Product.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(Product).where(*filters).order_by(Product.created_at.desc(), Product.id.asc()).offset(offset).limit(limit)
    ).scalars().all()
    items = [
        PublicProductOut(
            id=row.id,
            name=row.name,
            description=row.description,
            category=row.category,
            image_url=row.image_url,
            price=float(to_money(row.price)),
            currency=row.currency,
        )
        for row in rows
    ]
    count = len(items)
    return PublicProductListOut(
        items=items,
        pagination=PaginationMeta(
            total=total_count,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total_count,
        ),
    )


@router.post(
    "/orders",
    response_model=StorefrontOrderOut,
    status_code=201,
    summary="Place a storefront order",
    description=(
        "Creates a pending order priced from the catalog, reports the purchase to the configured "
        "ad platforms and sends a WhatsApp confirmation when a session is connected. "
        "Tracking or messaging failures never fail the order."
    ),
    responses=error_responses(400, 403, 404, 422, 429, 500),
)
def place_storefront_order(
    payload: StorefrontOrderCreate,
    request: Request,
    db: Session = Depends(get_db),
    platform: Platform = Depends(get_storefront_platform),
):
    attribution = payload.attribution.model_dump(exclude_none=True)
    attribution["client_ip_address"] = client_ip(request)
    user_agent = request.headers.get("user-agent")
    if user_agent:
        attribution["client_user_agent"] = user_agent
    host = request_host(request)
    if host:
        attribution["host"] = host

    order, items = create_order(
        db,
        platform_id=platform.id,
        customer=CustomerDetails(
            name=payload.customer_name,
            phone=payload.customer_phone,
            email=payload.customer_email,
            city=payload.customer_city,
            address=payload.customer_address,
        ),
        lines=[OrderLine(product_id=item.product_id, quantity=item.quantity) for item in payload.items],
        source=payload.source,
        notes=payload.notes,
        attribution=attribution,
    )
    db.flush()

    log_audit_event(
        db,
        platform_id=platform.id,
        actor_user_id=None,
        action="order.create",
        target_type="order",
        target_id=order.id,
        metadata_json={"order_number": order.order_number, "source": order.source},
    )
    tracking = report_order_purchase(db, platform.id, order, items)
    message = send_order_confirmation(db, platform, order, items)
    db.commit()
    db.refresh(order)

    log_event(
        "storefront.order_created",
        platform_id=platform.id,
        order_id=order.id,
        order_number=order.order_number,
        total_amount=float(order.total_amount),
        whatsapp_status=message.status if message else None,
    )
    return StorefrontOrderOut(
        id=order.id,
        order_number=order.order_number,
        status=order.status,
        total_amount=float(order.total_amount),
        currency=order.currency,
        tracking=tracking_result_out(tracking),
        whatsapp_message_status=message.status if message else None,
    )
