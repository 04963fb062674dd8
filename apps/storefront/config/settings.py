import os
from typing import Dict, List, Optional

from dotenv import load_dotenv

from apps.storefront.services.loyalty.loyalty_config import LoyaltyConfig

load_dotenv()


def enabled(name: str, default: str = "false") -> bool:
    return (os.getenv(name, default) or "").lower() == "true"


def _csv(name: str) -> List[str]:
    raw = os.getenv(name, "") or ""
    return [x.strip() for x in raw.split(",") if x.strip()]


SUPABASE_URL = (os.getenv("SUPABASE_URL") or "").strip()
SUPABASE_KEY = (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_ANON_KEY") or "").strip()

STOREFRONT_VERSION = os.getenv("STOREFRONT_VERSION", "0.1.0")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ALLOW_ORIGINS = _csv("CORS_ALLOW_ORIGINS")

LOYALTY_ENABLED = enabled("LOYALTY_ENABLED", "true")
REQUEST_LOGGING = enabled("REQUEST_LOGGING", "true")

# env var -> LoyaltyConfig field
LOYALTY_ENV_FIELDS: Dict[str, str] = {
    "LOYALTY_POINTS_PER_CURRENCY_UNIT": "points_per_currency_unit",
    "LOYALTY_POINTS_TO_CURRENCY_RATIO": "points_to_currency_ratio",
    "LOYALTY_DISCOUNT_PER_RATIO": "discount_per_ratio",
    "LOYALTY_SHIPPING_POINTS_COST": "shipping_points_cost",
    "LOYALTY_MIN_POINTS_USE": "min_points_use",
    "LOYALTY_FREE_SHIPPING_THRESHOLD": "free_shipping_threshold",
    "LOYALTY_SHIPPING_FEE": "shipping_fee",
    "LOYALTY_MAX_POINTS_PERCENTAGE": "max_points_percentage",
}


def load_loyalty_config(environ: Optional[Dict[str, str]] = None) -> LoyaltyConfig:
    env = os.environ if environ is None else environ
    overrides = {field: env[key] for key, field in LOYALTY_ENV_FIELDS.items() if env.get(key)}
    return LoyaltyConfig.from_dict(overrides)
