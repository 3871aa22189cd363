"""ZainCash wallet payments for subscription renewals.

ZainCash signs and verifies every request with an HS256 JWT built from the
merchant secret. In simulation mode (and, in test mode, when the sandbox is
unreachable) transactions are created locally and confirmed through the
simulation endpoint instead of the wallet redirect.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import quote

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core import http
from app.core.config import settings
from app.core.id_utils import generate_base36_token
from app.core.observability import log_event
from app.core.security import TokenValidationError, sign_external_token, verify_external_token
from app.models.payment import ZainCashPayment
from app.models.platform import Platform
from app.services.subscription_service import PAID_PLANS, renew_subscription

SERVICE_DESCRIPTIONS = {
    "basic": "Smart Commerce Platform - Basic Plan",
    "premium": "Smart Commerce Platform - Premium Plan",
    "enterprise": "Smart Commerce Platform - Enterprise Plan",
}
SUCCESS_STATUSES = ("success", "completed")
FAILED_STATUSES = ("failed", "cancelled")


class ZainCashError(RuntimeError):
    pass


@dataclass(frozen=True)
class ZainCashTransactionData:
    amount: int
    service_type: str
    order_id: str
    redirect_url: str
    customer_name: str
    customer_phone: str
    subscription_plan: str
    customer_email: str | None = None


@dataclass(frozen=True)
class ZainCashTransaction:
    transaction_id: str
    payment_url: str
    simulated: bool = False


def service_description(plan: str) -> str:
    return SERVICE_DESCRIPTIONS.get(plan, "Smart Commerce Platform Subscription")


def generate_order_id(platform_name: str, plan: str) -> str:
    millis = int(datetime.now(timezone.utc).timestamp() * 1000)
    return f"{platform_name[:10]}_{plan}_{millis}_{generate_base36_token(6)}".lower()


class ZainCashService:
    def __init__(
        self,
        *,
        http_client: httpx.Client | None = None,
        test_mode: bool | None = None,
        simulation: bool | None = None,
    ):
        self._http_client = http_client
        self.test_mode = settings.zaincash_test_mode if test_mode is None else test_mode
        self.simulation = settings.zaincash_simulation if simulation is None else simulation

    @property
    def api_base_url(self) -> str:
        return settings.zaincash_test_api_url if self.test_mode else settings.zaincash_live_api_url

    @property
    def pay_base_url(self) -> str:
        return settings.zaincash_test_api_url if self.test_mode else settings.zaincash_live_pay_url

    def _secret(self) -> str:
        if not settings.zaincash_merchant_secret:
            raise ZainCashError("ZainCash credentials not configured")
        return settings.zaincash_merchant_secret

    def _post_form(self, path: str, data: dict[str, str]) -> httpx.Response:
        url = f"{self.api_base_url}{path}"
        headers = {"Accept": "application/json", "Accept-Language": "ar,en-US;q=0.9,en;q=0.8"}
        if self._http_client is not None:
            return self._http_client.post(url, data=data, headers=headers)
        with http.build_http_client() as client:
            return client.post(url, data=data, headers=headers)

    def _simulated(self, order_id: str) -> ZainCashTransaction:
        millis = int(datetime.now(timezone.utc).timestamp() * 1000)
        transaction_id = f"sim_{millis}_{generate_base36_token(9)}"
        payment_url = (
            f"{settings.zaincash_simulation_base_url.rstrip('/')}/register-platform"
            f"?payment_simulation=true&transaction_id={transaction_id}&order_id={quote(order_id, safe='')}"
        )
        return ZainCashTransaction(transaction_id=transaction_id, payment_url=payment_url, simulated=True)

    def create_transaction(self, data: ZainCashTransactionData) -> ZainCashTransaction:
        if data.amount < settings.zaincash_min_amount_iqd:
            raise ZainCashError(f"Amount must be at least {settings.zaincash_min_amount_iqd} IQD")

        if self.simulation:
            transaction = self._simulated(data.order_id)
            self._log(data.order_id, success=True, simulated=True)
            return transaction

        token = sign_external_token(
            {
                "amount": data.amount,
                "serviceType": data.service_type,
                "msisdn": settings.zaincash_msisdn,
                "orderId": data.order_id,
                "redirectUrl": data.redirect_url,
            },
            secret=self._secret(),
            ttl_seconds=settings.zaincash_token_ttl_seconds,
        )
        form = {"token": token, "merchantId": settings.zaincash_merchant_id or "", "lang": "ar"}

        try:
            response = self._post_form("/transaction/init", form)
        except httpx.TransportError as exc:
            if self.test_mode:
                # Sandbox unreachable: keep the renewal flow usable in test mode.
                self._log(data.order_id, success=True, simulated=True, error=str(exc))
                return self._simulated(data.order_id)
            self._log(data.order_id, success=False, error=str(exc))
            raise ZainCashError(f"ZainCash unreachable: {exc}") from exc

        if not response.is_success:
            self._log(data.order_id, success=False, status_code=response.status_code)
            raise ZainCashError(f"ZainCash API error: {response.status_code}")

        try:
            result = response.json()
        except ValueError as exc:
            raise ZainCashError("ZainCash returned an invalid response") from exc

        transaction_id = result.get("id") if isinstance(result, dict) else None
        if not transaction_id:
            error = result.get("err") if isinstance(result, dict) else None
            message = str(error) if error else "Failed to create ZainCash transaction"
            self._log(data.order_id, success=False, error=message)
            raise ZainCashError(message)

        self._log(data.order_id, success=True)
        return ZainCashTransaction(
            transaction_id=str(transaction_id),
            payment_url=f"{self.pay_base_url}/transaction/pay?id={transaction_id}",
        )

    def verify_payment_token(self, token: str) -> dict[str, Any]:
        try:
            return verify_external_token(token, secret=self._secret())
        except TokenValidationError as exc:
            raise ZainCashError("Invalid payment token") from exc

    def check_transaction_status(self, transaction_id: str) -> dict[str, Any]:
        token = sign_external_token(
            {"id": transaction_id, "msisdn": settings.zaincash_msisdn},
            secret=self._secret(),
            ttl_seconds=settings.zaincash_token_ttl_seconds,
        )
        try:
            response = self._post_form(
                "/transaction/get",
                {"token": token, "merchantId": settings.zaincash_merchant_id or ""},
            )
        except httpx.TransportError as exc:
            raise ZainCashError(f"ZainCash unreachable: {exc}") from exc
        if not response.is_success:
            raise ZainCashError(f"ZainCash API error: {response.status_code}")
        try:
            result = response.json()
        except ValueError as exc:
            raise ZainCashError("ZainCash returned an invalid response") from exc
        if not isinstance(result, dict):
            raise ZainCashError("ZainCash returned an invalid response")
        return result

    def _log(self, order_id: str, *, success: bool, **fields: Any) -> None:
        log_event(
            "zaincash.transaction",
            level=logging.INFO if success else logging.WARNING,
            order_id=order_id,
            success=success,
            test_mode=self.test_mode,
            **fields,
        )


def get_zaincash_service() -> ZainCashService:
    return ZainCashService()


def start_subscription_payment(
    db: Session,
    service: ZainCashService,
    *,
    platform: Platform,
    plan: str,
    customer_name: str,
    customer_phone: str,
    customer_email: str | None = None,
) -> ZainCashPayment:
    if plan not in PAID_PLANS:
        raise ZainCashError(f"Unsupported subscription plan '{plan}'")

    order_id = generate_order_id(platform.subdomain, plan)
    amount = settings.subscription_prices()[plan]
    redirect_url = f"{settings.zaincash_redirect_base_url.rstrip('/')}/payments/zaincash/callback"
    transaction = service.create_transaction(
        ZainCashTransactionData(
            amount=amount,
            service_type=service_description(plan),
            order_id=order_id,
            redirect_url=redirect_url,
            customer_name=customer_name,
            customer_phone=customer_phone,
            customer_email=customer_email,
            subscription_plan=plan,
        )
    )

    payment = ZainCashPayment(
        id=str(uuid.uuid4()),
        platform_id=platform.id,
        order_id=order_id,
        amount=amount,
        service_type=service_description(plan),
        subscription_plan=plan,
        transaction_id=transaction.transaction_id,
        payment_status="pending",
        customer_name=customer_name,
        customer_phone=customer_phone,
        customer_email=customer_email,
        payment_url=transaction.payment_url,
        redirect_url=redirect_url,
        response_json={"simulated": transaction.simulated},
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=settings.zaincash_token_ttl_seconds),
    )
    db.add(payment)
    return payment


def get_payment_by_order_id(db: Session, order_id: str) -> ZainCashPayment | None:
    return db.execute(select(ZainCashPayment).where(ZainCashPayment.order_id == order_id)).scalar_one_or_none()


def complete_payment(db: Session, payment: ZainCashPayment, *, succeeded: bool, details: dict[str, Any] | None = None) -> Platform | None:
    """Apply a final payment outcome; a success renews the paying platform."""
    if payment.payment_status in SUCCESS_STATUSES:
        return None

    payment.response_json = {**(payment.response_json or {}), **(details or {})}
    if not succeeded:
        payment.payment_status = "failed"
        return None

    payment.payment_status = "success"
    payment.paid_at = datetime.now(timezone.utc)
    platform = db.execute(select(Platform).where(Platform.id == payment.platform_id)).scalar_one()
    renew_subscription(platform, plan=payment.subscription_plan)
    log_event(
        "subscription.renewed",
        platform_id=platform.id,
        plan=payment.subscription_plan,
        order_id=payment.order_id,
    )
    return platform


def handle_callback(db: Session, service: ZainCashService, token: str) -> ZainCashPayment:
    payload = service.verify_payment_token(token)
    order_id = payload.get("orderid") or payload.get("orderId")
    if not order_id:
        raise ZainCashError("Payment token has no order id")

    payment = get_payment_by_order_id(db, str(order_id))
    if not payment:
        raise ZainCashError("Payment not found")

    status = str(payload.get("status", "")).lower()
    complete_payment(
        db,
        payment,
        succeeded=status in SUCCESS_STATUSES,
        details={"callback_status": status, "transaction_id": payload.get("id"), "message": payload.get("msg")},
    )
    return payment


def refresh_payment_status(db: Session, service: ZainCashService, payment: ZainCashPayment) -> bool:
    """Poll ZainCash for a pending live payment. Returns True when the outcome became final."""
    if payment.payment_status != "pending" or (payment.response_json or {}).get("simulated"):
        return False
    if not payment.transaction_id:
        raise ZainCashError("Payment has no transaction id")

    remote = service.check_transaction_status(payment.transaction_id)
    status = str(remote.get("status", "")).lower()
    if status in SUCCESS_STATUSES:
        complete_payment(db, payment, succeeded=True, details={"polled_status": status})
        return True
    if status in FAILED_STATUSES:
        complete_payment(db, payment, succeeded=False, details={"polled_status": status})
        return True
    return False
