from functools import lru_cache

from fastapi import Depends

from apps.storefront.config import settings
from apps.storefront.db import get_supabase
from apps.storefront.repositories.loyalty_repository import LoyaltyRepository
from apps.storefront.services.errors import LoyaltyError
from apps.storefront.services.loyalty.loyalty_engine import LoyaltyEngine
from apps.storefront.services.loyalty.loyalty_service import LoyaltyService


@lru_cache(maxsize=1)
def get_engine() -> LoyaltyEngine:
    return LoyaltyEngine(settings.load_loyalty_config())


def require_loyalty_enabled() -> None:
    if not settings.LOYALTY_ENABLED:
        raise LoyaltyError("Loyalty program is disabled", 503, "loyalty_disabled")


def get_repository() -> LoyaltyRepository:
    supabase = get_supabase()
    if not supabase:
        raise LoyaltyError("Supabase client unavailable", 500, "supabase_unavailable")
    return LoyaltyRepository(supabase)


def get_loyalty_service(
    repo: LoyaltyRepository = Depends(get_repository),
    engine: LoyaltyEngine = Depends(get_engine),
) -> LoyaltyService:
    return LoyaltyService(repo, engine=engine)
