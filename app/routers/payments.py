from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.api_docs import error_responses
from app.core.deps import get_db
from app.core.permissions import require_platform_roles_any_status
from app.core.security_current import PlatformAccess, get_current_user
from app.models.payment import ZainCashPayment
from app.models.platform import Platform
from app.models.user import User
from app.schemas.payment import SubscriptionPaymentIn, ZainCashCallbackOut, ZainCashPaymentOut
from app.services.audit_service import log_audit_event
from app.services.zaincash_service import (
    ZainCashError,
    ZainCashService,
    complete_payment,
    get_payment_by_order_id,
    get_zaincash_service,
    handle_callback,
    refresh_payment_status,
    start_subscription_payment,
)

router = APIRouter(prefix="/payments/zaincash", tags=["payments"])


def _payment_out(payment: ZainCashPayment) -> ZainCashPaymentOut:
    return ZainCashPaymentOut(
        order_id=payment.order_id,
        amount=payment.amount,
        service_type=payment.service_type,
        subscription_plan=payment.subscription_plan,
        transaction_id=payment.transaction_id,
        payment_status=payment.payment_status,
        payment_url=payment.payment_url,
        simulated=bool((payment.response_json or {}).get("simulated")),
        paid_at=payment.paid_at,
        expires_at=payment.expires_at,
        created_at=payment.created_at,
    )


def _callback_out(db: Session, payment: ZainCashPayment) -> ZainCashCallbackOut:
    platform = db.get(Platform, payment.platform_id)
    return ZainCashCallbackOut(
        order_id=payment.order_id,
        payment_status=payment.payment_status,
        subscription_plan=payment.subscription_plan,
        subscription_end_date=platform.subscription_end_date if platform else None,
    )


def _log_payment_outcome(db: Session, payment: ZainCashPayment, *, actor_user_id: str | None, via: str) -> None:
    log_audit_event(
        db,
        platform_id=payment.platform_id,
        actor_user_id=actor_user_id,
        action=f"payment.zaincash.{payment.payment_status}",
        target_type="zain_cash_payment",
        target_id=payment.id,
        metadata_json={"order_id": payment.order_id, "plan": payment.subscription_plan, "via": via},
    )


def _get_platform_payment(db: Session, platform_id: str, order_id: str) -> ZainCashPayment:
    payment = get_payment_by_order_id(db, order_id)
    if not payment or payment.platform_id != platform_id:
        raise HTTPException(status_code=404, detail="Payment not found")
    return payment


@router.post(
    "/subscription",
    response_model=ZainCashPaymentOut,
    status_code=201,
    summary="Start a subscription payment",
    description="Creates a ZainCash transaction for the plan's renewal price. Reachable while expired.",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def start_zaincash_subscription_payment(
    payload: SubscriptionPaymentIn,
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles_any_status("owner")),
    actor: User = Depends(get_current_user),
    service: ZainCashService = Depends(get_zaincash_service),
):
    platform = access.platform
    try:
        payment = start_subscription_payment(
            db,
            service,
            platform=platform,
            plan=payload.plan,
            customer_name=payload.customer_name or platform.owner_name,
            customer_phone=payload.customer_phone or platform.phone_number,
            customer_email=payload.customer_email or platform.contact_email,
        )
    except ZainCashError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    log_audit_event(
        db,
        platform_id=platform.id,
        actor_user_id=actor.id,
        action="payment.zaincash.start",
        target_type="zain_cash_payment",
        target_id=payment.id,
        metadata_json={"plan": payment.subscription_plan, "amount": payment.amount, "order_id": payment.order_id},
    )
    db.commit()
    db.refresh(payment)
    return _payment_out(payment)


@router.get(
    "/callback",
    response_model=ZainCashCallbackOut,
    summary="ZainCash redirect callback",
    description="Verifies the signed token, records the outcome and renews the platform on success.",
    responses=error_responses(400, 422, 500),
)
def zaincash_callback(
    token: str = Query(min_length=1),
    db: Session = Depends(get_db),
    service: ZainCashService = Depends(get_zaincash_service),
):
    try:
        payment = handle_callback(db, service, token)
    except ZainCashError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    _log_payment_outcome(db, payment, actor_user_id=None, via="callback")
    db.commit()
    db.refresh(payment)
    return _callback_out(db, payment)


@router.get(
    "/{order_id}",
    response_model=ZainCashPaymentOut,
    summary="Get payment",
    responses=error_responses(401, 403, 404, 500),
)
def get_zaincash_payment(
    order_id: str,
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles_any_status("owner", "admin")),
):
    return _payment_out(_get_platform_payment(db, access.platform.id, order_id))


@router.post(
    "/{order_id}/verify",
    response_model=ZainCashPaymentOut,
    summary="Check payment status with ZainCash",
    description="Polls the wallet for a pending live payment, for when the redirect callback never arrived.",
    responses=error_responses(400, 401, 403, 404, 500),
)
def verify_zaincash_payment(
    order_id: str,
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles_any_status("owner")),
    actor: User = Depends(get_current_user),
    service: ZainCashService = Depends(get_zaincash_service),
):
    payment = _get_platform_payment(db, access.platform.id, order_id)
    try:
        changed = refresh_payment_status(db, service, payment)
    except ZainCashError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if changed:
        _log_payment_outcome(db, payment, actor_user_id=actor.id, via="status_check")
        db.commit()
        db.refresh(payment)
    return _payment_out(payment)


@router.post(
    "/{order_id}/simulate",
    response_model=ZainCashCallbackOut,
    summary="Complete a simulated payment",
    description="Available only while ZainCash runs in simulation mode.",
    responses=error_responses(400, 401, 403, 404, 500),
)
def simulate_zaincash_payment(
    order_id: str,
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles_any_status("owner")),
    actor: User = Depends(get_current_user),
    service: ZainCashService = Depends(get_zaincash_service),
):
    if not service.simulation:
        raise HTTPException(status_code=404, detail="Payment simulation is disabled")

    payment = _get_platform_payment(db, access.platform.id, order_id)
    if not (payment.response_json or {}).get("simulated"):
        raise HTTPException(status_code=400, detail="Payment is not simulated")
    if complete_payment(db, payment, succeeded=True, details={"callback_status": "success", "simulated": True}):
        _log_payment_outcome(db, payment, actor_user_id=actor.id, via="simulation")
    db.commit()
    db.refresh(payment)
    return _callback_out(db, payment)
