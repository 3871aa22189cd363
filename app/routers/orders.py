from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.api_docs import error_responses
from app.core.deps import get_db
from app.core.money import to_money
from app.core.permissions import ALL_ROLES, require_platform_roles
from app.core.security_current import PlatformAccess, get_current_user
from app.models.order import Order, OrderItem
from app.models.user import User
from app.schemas.common import PaginationMeta
from app.schemas.order import (
    OrderCreate,
    OrderDetailOut,
    OrderItemOut,
    OrderListOut,
    OrderOut,
    OrderStatusUpdateIn,
)
from app.services.audit_service import log_audit_event
from app.services.order_service import (
    CustomerDetails,
    OrderLine,
    create_order,
    ensure_transition_allowed,
    get_order_items,
    normalize_order_status,
)

router = APIRouter(prefix="/orders", tags=["orders"])


def _order_fields(order: Order) -> dict:
    return {
        "id": order.id,
        "order_number": order.order_number,
        "customer_name": order.customer_name,
        "customer_phone": order.customer_phone,
        "customer_email": order.customer_email,
        "customer_city": order.customer_city,
        "customer_address": order.customer_address,
        "status": order.status,
        "source": order.source,
        "total_amount": float(to_money(order.total_amount)),
        "currency": order.currency,
        "notes": order.notes,
        "created_at": order.created_at,
        "updated_at": order.updated_at,
    }


def _order_detail_out(order: Order, items: list[OrderItem]) -> OrderDetailOut:
    return OrderDetailOut(
        **_order_fields(order),
        items=[
            OrderItemOut(
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price=float(to_money(item.unit_price)),
                line_total=float(to_money(item.line_total)),
            )
            for item in items
        ],
    )


def _get_order(db: Session, platform_id: str, order_id: str) -> Order:
    order = db.execute(
        select(Order).where(Order.id == order_id, Order.platform_id == platform_id)
    ).scalar_one_or_none()
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@router.post(
    "",
    response_model=OrderDetailOut,
    status_code=201,
    summary="Create manual order",
    responses=error_responses(400, 401, 402, 403, 404, 422, 500),
)
def create_manual_order(
    payload: OrderCreate,
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles(*ALL_ROLES)),
    actor: User = Depends(get_current_user),
):
    order, items = create_order(
        db,
        platform_id=access.platform.id,
        customer=CustomerDetails(
            name=payload.customer_name,
            phone=payload.customer_phone,
            email=payload.customer_email,
            city=payload.customer_city,
            address=payload.customer_address,
        ),
        lines=[OrderLine(product_id=item.product_id, quantity=item.quantity) for item in payload.items],
        source="manual",
        notes=payload.notes,
    )
    log_audit_event(
        db,
        platform_id=access.platform.id,
        actor_user_id=actor.id,
        action="order.create",
        target_type="order",
        target_id=order.id,
        metadata_json={
            "order_number": order.order_number,
            "total_amount": float(order.total_amount),
            "item_count": len(items),
        },
    )
    db.commit()
    db.refresh(order)
    return _order_detail_out(order, items)


@router.get(
    "",
    response_model=OrderListOut,
    summary="List orders",
    responses=error_responses(400, 401, 402, 403, 404, 422, 500),
)
def list_orders(
    status: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles(*ALL_ROLES)),
):
    normalized_status = normalize_order_status(status) if status else None
    count_stmt = select(func.count(Order.id)).where(Order.platform_id == access.platform.id)
    data_stmt = select(Order).where(Order.platform_id == access.platform.id)
    if normalized_status:
        count_stmt = count_stmt.where(Order.status == normalized_status)
        data_stmt = data_stmt.where(Order.status == normalized_status)

    total_count = int(db.execute(count_stmt).scalar_one())
    rows = db.execute(
        data_stmt.order_by(Order.created_at.desc(), Order.id.desc()).offset(offset).limit(limit)
    ).scalars().all()
    items = [OrderOut(**_order_fields(row)) for row in rows]
    count = len(items)
    return OrderListOut(
        items=items,
        pagination=PaginationMeta(
            total=total_count,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total_count,
        ),
        status=normalized_status,
    )


@router.get(
    "/{order_id}",
    response_model=OrderDetailOut,
    summary="Get order",
    responses=error_responses(401, 402, 403, 404, 500),
)
def get_order(
    order_id: str,
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles(*ALL_ROLES)),
):
    order = _get_order(db, access.platform.id, order_id)
    return _order_detail_out(order, get_order_items(db, order.id))


@router.patch(
    "/{order_id}/status",
    response_model=OrderDetailOut,
    summary="Update order status",
    responses=error_responses(400, 401, 402, 403, 404, 422, 500),
)
def update_order_status(
    order_id: str,
    payload: OrderStatusUpdateIn,
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles(*ALL_ROLES)),
    actor: User = Depends(get_current_user),
):
    order = _get_order(db, access.platform.id, order_id)
    next_status = normalize_order_status(payload.status)
    previous_status = order.status
    ensure_transition_allowed(previous_status, next_status)

    order.status = next_status
    if payload.note:
        order.notes = f"{order.notes} | {payload.note}"[:500] if order.notes else payload.note
    log_audit_event(
        db,
        platform_id=access.platform.id,
        actor_user_id=actor.id,
        action="order.status.update",
        target_type="order",
        target_id=order.id,
        metadata_json={"from_status": previous_status, "to_status": next_status},
    )
    db.commit()
    db.refresh(order)
    return _order_detail_out(order, get_order_items(db, order.id))
