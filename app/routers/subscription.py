from fastapi import APIRouter, Depends

from app.core.api_docs import error_responses
from app.core.config import settings
from app.core.security_current import PlatformAccess, get_current_platform_access
from app.routers.platforms import subscription_out
from app.schemas.platform import SubscriptionStatusOut

router = APIRouter(prefix="/subscription", tags=["subscription"])


@router.get(
    "/status",
    response_model=SubscriptionStatusOut,
    summary="Subscription status",
    description="Current plan, expiry state and renewal prices. Reachable while the subscription is expired.",
    responses=error_responses(401, 404, 500),
)
def get_subscription_status(access: PlatformAccess = Depends(get_current_platform_access)):
    snapshot = subscription_out(access.platform)
    return SubscriptionStatusOut(
        **snapshot.model_dump(),
        renewal_prices_iqd=settings.subscription_prices(),
    )
