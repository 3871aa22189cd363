import httpx

from app.core.config import settings


def build_http_client(timeout: float | None = None) -> httpx.Client:
    return httpx.Client(
        timeout=timeout or settings.integration_http_timeout_seconds,
        headers={"User-Agent": settings.app_name},
    )
