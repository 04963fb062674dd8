from typing import Optional

from supabase import Client, create_client

from apps.storefront.config import settings


def get_supabase() -> Optional[Client]:
    if not (settings.SUPABASE_URL and settings.SUPABASE_KEY):
        return None
    return create_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)
