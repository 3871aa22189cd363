import json
from typing import List, Union
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Sanadi Backend"
    env: str = "dev"
    secret_key: str
    access_token_expire_minutes: int = 60
    refresh_token_expire_days: int = 14

    # DATABASE
    database_url: str
    db_pool_size: int = Field(default=10, ge=1, le=100)
    db_max_overflow: int = Field(default=20, ge=0, le=200)
    db_pool_timeout_seconds: int = Field(default=30, ge=1, le=300)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86_400)

    # AUTH HARDENING
    auth_rate_limit_max_attempts: int = Field(default=5, ge=1)
    auth_rate_limit_window_seconds: int = Field(default=300, ge=1)
    auth_rate_limit_lock_seconds: int = Field(default=900, ge=1)
    storefront_public_rate_limit_requests: int = Field(default=120, ge=1)
    storefront_public_rate_limit_window_seconds: int = Field(default=60, ge=1)
    api_timeout_hint_ms: int = Field(default=300000, ge=1000, le=1_800_000)

    # SUBSCRIPTIONS
    subscription_period_days: int = Field(default=30, ge=1, le=3660)
    subscription_warning_days: int = Field(default=7, ge=1, le=60)
    subscription_price_basic_iqd: int = Field(default=1000, ge=250)
    subscription_price_premium_iqd: int = Field(default=69000, ge=250)
    subscription_price_enterprise_iqd: int = Field(default=99000, ge=250)

    # CURRENCY / LOCALE
    iqd_to_usd_rate: float = Field(default=1310.0, gt=0)
    default_phone_country_code: str = "964"

    # AD PLATFORMS
    integration_http_timeout_seconds: float = Field(default=15.0, gt=0, le=120)
    facebook_graph_base_url: str = "https://graph.facebook.com"
    facebook_graph_api_version: str = "v18.0"
    facebook_test_event_code: str | None = None
    facebook_capi_batch_size: int = Field(default=1000, ge=1, le=1000)
    tiktok_events_url: str = "https://business-api.tiktok.com/open_api/v1.3/event/track/"
    integration_outbox_max_attempts: int = Field(default=5, ge=1, le=20)
    integration_outbox_retry_seconds: int = Field(default=300, ge=1, le=86400)

    # ZAINCASH
    zaincash_test_mode: bool = True
    zaincash_simulation: bool = True
    zaincash_test_api_url: str = "https://test.zaincash.iq"
    zaincash_live_api_url: str = "https://api.zaincash.iq"
    zaincash_live_pay_url: str = "https://zaincash.iq"
    zaincash_merchant_id: str | None = None
    zaincash_merchant_secret: str | None = None
    zaincash_msisdn: str | None = None
    zaincash_token_ttl_seconds: int = Field(default=4 * 60 * 60, ge=60, le=86400)
    zaincash_min_amount_iqd: int = Field(default=250, ge=1)
    zaincash_redirect_base_url: str = "http://localhost:8000"
    zaincash_simulation_base_url: str = "http://localhost:3000"

    # WHATSAPP
    messaging_provider_default: str = "whatsapp_stub"

    # CORS
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    cors_origin_regex: str | None = None

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            if not v.strip():
                return []
            if v.startswith("["):
                parsed = json.loads(v)
                if not isinstance(parsed, list):
                    raise ValueError("CORS_ORIGINS JSON value must be a list")
                return [str(i).strip() for i in parsed if str(i).strip()]
            return [i.strip() for i in v.split(",") if i.strip()]
        if isinstance(v, list):
            return [str(i).strip() for i in v if str(i).strip()]
        raise ValueError(v)

    @field_validator(
        "facebook_test_event_code",
        "zaincash_merchant_id",
        "zaincash_merchant_secret",
        "zaincash_msisdn",
        mode="before",
    )
    @classmethod
    def normalize_optional_strings(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = str(value).strip()
        return cleaned or None

    @model_validator(mode="after")
    def validate_production_safety(self) -> "Settings":
        env_value = self.env.lower().strip()
        if env_value not in {"prod", "production"}:
            return self

        weak_secrets = {
            "",
            "change_me",
            "change_me_please_to_a_long_random_string",
            "dev-secret-key-change-before-prod",
        }
        if self.secret_key.strip() in weak_secrets or len(self.secret_key.strip()) < 32:
            raise ValueError("SECRET_KEY must be a strong random value in production")

        if "*" in self.cors_origins:
            raise ValueError("CORS_ORIGINS cannot contain '*' in production")
        if self.cors_origin_regex:
            raise ValueError("CORS_ORIGIN_REGEX cannot be set in production")

        if self.zaincash_simulation:
            raise ValueError("ZAINCASH_SIMULATION cannot be enabled in production")

        return self

    def subscription_prices(self) -> dict[str, int]:
        return {
            "basic": self.subscription_price_basic_iqd,
            "premium": self.subscription_price_premium_iqd,
            "enterprise": self.subscription_price_enterprise_iqd,
        }

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        enable_decoding=False,
    )


settings = Settings()
