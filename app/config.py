"""
Chart Sync Application Configuration
=====================================

PURPOSE:
    Pydantic-Settings based configuration for the Shopify → Hanteo album
    sales sync service. All settings can be overridden via environment
    variables (CHARTSYNC_ prefix) or a local .env file.

NOTES:
    Required credentials default to None so the module imports cleanly in
    scripts and tests; startup calls missing_required() and refuses to run
    with an incomplete configuration.
"""

import logging
from typing import List, Literal, Optional

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

APP_VERSION = "1.2.0"


class Settings(BaseSettings):
    """Settings for the commerce (source) and reporting (sink) integrations."""

    app_name: str = "chart-sync"
    environment: Literal["development", "production", "test"] = "development"
    port: int = 3000
    log_level: str = "INFO"
    log_dir: str = "logs"

    # Shopify Admin API (source)
    shopify_store_domain: Optional[str] = None
    shopify_admin_access_token: Optional[str] = None
    shopify_api_version: str = "2024-01"
    shopify_webhook_secret: Optional[str] = None
    shopify_page_size: int = 250  # REST maximum

    # Hanteo Chart API (sink)
    hanteo_env: Literal["test", "production"] = "test"
    hanteo_test_url: Optional[str] = None
    hanteo_prod_url: Optional[str] = None
    hanteo_test_client_key: Optional[str] = None
    hanteo_prod_client_key: Optional[str] = None
    hanteo_family_code: Optional[str] = None
    hanteo_branch_code: Optional[str] = None

    hanteo_max_batch_size: int = 100           # documented ceiling per POST
    hanteo_retry_attempts: int = 3             # retries after the first attempt
    hanteo_retry_delay_s: float = 1.0
    hanteo_retry_factor: float = 2.0
    hanteo_retry_max_delay_s: float = 30.0
    hanteo_batch_delay_s: float = 1.0          # pause between chunks
    hanteo_token_safety_margin_s: int = 300    # 5 minutes
    # opVal = "{order}-{line}" when True, "{order}-{line}-{millis}" when False
    hanteo_stable_dedup_token: bool = True

    # Shared HTTP behaviour
    request_timeout_s: float = 30.0

    # Pipeline cadence
    catalog_cache_ttl_s: int = 3600
    product_sync_interval_s: int = 3600
    order_sweep_interval_s: int = 1800
    order_sweep_hours_ago: int = 2
    scheduler_enabled: bool = True

    # Manual trigger auth (enforced in production only)
    sync_api_key: Optional[str] = None

    # Public base URL used when registering webhooks
    webhook_base_url: Optional[str] = None

    class Config:
        env_file = ".env"
        env_prefix = "CHARTSYNC_"

    @property
    def hanteo_base_url(self) -> Optional[str]:
        url = self.hanteo_prod_url if self.hanteo_env == "production" else self.hanteo_test_url
        return url.rstrip("/") if url else None

    @property
    def hanteo_client_key(self) -> Optional[str]:
        if self.hanteo_env == "production":
            return self.hanteo_prod_client_key
        return self.hanteo_test_client_key

    @property
    def shopify_admin_url(self) -> str:
        return f"https://{self.shopify_store_domain}/admin/api/{self.shopify_api_version}"

    def missing_required(self) -> List[str]:
        """Return the names of required settings that are not configured.

        The Hanteo URL and client key are checked for the active hanteo_env only.
        """
        required = {
            "shopify_store_domain": self.shopify_store_domain,
            "shopify_admin_access_token": self.shopify_admin_access_token,
            "hanteo_family_code": self.hanteo_family_code,
            "hanteo_branch_code": self.hanteo_branch_code,
        }
        if self.hanteo_env == "production":
            required["hanteo_prod_url"] = self.hanteo_prod_url
            required["hanteo_prod_client_key"] = self.hanteo_prod_client_key
        else:
            required["hanteo_test_url"] = self.hanteo_test_url
            required["hanteo_test_client_key"] = self.hanteo_test_client_key
        return [name for name, value in required.items() if not value]


settings = Settings()

logger.info("chart-sync reporting environment: %s", settings.hanteo_env)
