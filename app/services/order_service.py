import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from fastapi import HTTPException
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core.money import ZERO_MONEY, to_money
from app.models.order import Order, OrderItem
from app.models.platform import Platform
from app.models.product import Product

ALLOWED_ORDER_STATUSES = {
    "pending",
    "confirmed",
    "processing",
    "shipped",
    "delivered",
    "cancelled",
    "refunded",
    "returned",
}
ALLOWED_ORDER_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"processing", "shipped", "cancelled"},
    "processing": {"shipped", "cancelled"},
    "shipped": {"delivered", "returned"},
    "delivered": {"returned", "refunded"},
    "cancelled": set(),
    "refunded": set(),
    "returned": set(),
}
ORDER_SOURCES = {"manual", "landing_page", "storefront"}


@dataclass(frozen=True)
class OrderLine:
    product_id: str
    quantity: int


@dataclass(frozen=True)
class CustomerDetails:
    name: str
    phone: str
    email: str | None = None
    city: str | None = None
    address: str | None = None


def format_order_number(sequence: int) -> str:
    return f"ORD-{sequence:06d}"


def next_order_number(db: Session, platform_id: str) -> str:
    """Reserve the platform's next sequence value inside the caller's transaction.

    The increment runs first so its row lock serialises concurrent checkouts;
    the value read back is this transaction's own.
    """
    db.execute(
        update(Platform)
        .where(Platform.id == platform_id)
        .values(next_order_number=Platform.next_order_number + 1)
    )
    reserved = db.execute(
        select(Platform.next_order_number).where(Platform.id == platform_id)
    ).scalar_one()
    return format_order_number(reserved - 1)


def normalize_order_status(status: str) -> str:
    normalized = status.strip().lower()
    if normalized not in ALLOWED_ORDER_STATUSES:
        allowed = ", ".join(sorted(ALLOWED_ORDER_STATUSES))
        raise HTTPException(status_code=400, detail=f"Invalid order status. Allowed: {allowed}")
    return normalized


def ensure_transition_allowed(current_status: str, next_status: str) -> None:
    if current_status == next_status:
        return
    allowed_next = ALLOWED_ORDER_TRANSITIONS.get(current_status, set())
    if next_status not in allowed_next:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot transition order from '{current_status}' to '{next_status}'",
        )


def _active_products(db: Session, platform_id: str, product_ids: list[str]) -> dict[str, Product]:
    rows = db.execute(
        select(Product).where(
            Product.platform_id == platform_id,
            Product.id.in_(product_ids),
            Product.is_active.is_(True),
        )
    ).scalars().all()
    return {product.id: product for product in rows}


def create_order(
    db: Session,
    *,
    platform_id: str,
    customer: CustomerDetails,
    lines: list[OrderLine],
    source: str,
    notes: str | None = None,
    attribution: dict[str, Any] | None = None,
) -> tuple[Order, list[OrderItem]]:
    """Create an order priced from the catalog, never from client-supplied prices."""
    if not lines:
        raise HTTPException(status_code=400, detail="Order has no items")
    if source not in ORDER_SOURCES:
        raise HTTPException(status_code=400, detail=f"Invalid order source '{source}'")

    quantity_by_product: dict[str, int] = {}
    for line in lines:
        quantity_by_product[line.product_id] = quantity_by_product.get(line.product_id, 0) + line.quantity

    products = _active_products(db, platform_id, list(quantity_by_product))
    missing = [product_id for product_id in quantity_by_product if product_id not in products]
    if missing:
        raise HTTPException(status_code=404, detail=f"Product not found: {missing[0]}")

    currencies = {products[product_id].currency for product_id in quantity_by_product}
    if len(currencies) > 1:
        raise HTTPException(status_code=400, detail="Order items must share one currency")

    total: Decimal = ZERO_MONEY
    items: list[OrderItem] = []
    order_id = str(uuid.uuid4())
    for product_id, quantity in quantity_by_product.items():
        product = products[product_id]
        unit_price = to_money(product.price)
        line_total = to_money(unit_price * quantity)
        total += line_total
        items.append(
            OrderItem(
                id=str(uuid.uuid4()),
                order_id=order_id,
                product_id=product.id,
                product_name=product.name,
                quantity=quantity,
                unit_price=unit_price,
                line_total=line_total,
            )
        )

    order = Order(
        id=order_id,
        platform_id=platform_id,
        order_number=next_order_number(db, platform_id),
        customer_name=customer.name,
        customer_phone=customer.phone,
        customer_email=customer.email,
        customer_city=customer.city,
        customer_address=customer.address,
        status="pending",
        source=source,
        total_amount=to_money(total),
        currency=currencies.pop(),
        notes=notes,
        attribution_json=attribution or None,
    )
    db.add(order)
    db.add_all(items)
    return order, items


def get_order_items(db: Session, order_id: str) -> list[OrderItem]:
    return db.execute(select(OrderItem).where(OrderItem.order_id == order_id)).scalars().all()
