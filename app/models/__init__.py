from app.models.user import User
from app.models.platform import Platform, PlatformMembership
from app.models.audit_log import AuditLog
from app.models.product import Product
from app.models.order import Order, OrderItem
from app.models.ad_settings import AdPlatformSettings
from app.models.pixel import PixelEventLog
from app.models.integration import (
    IntegrationDeliveryAttempt,
    IntegrationOutboxEvent,
    OutboundMessage,
    WhatsAppSession,
)
from app.models.payment import ZainCashPayment
from app.models.refresh_token import RefreshToken
