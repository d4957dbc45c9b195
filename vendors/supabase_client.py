# vendors/supabase_client.py — shared Supabase client

import logging
from functools import lru_cache

from supabase import Client, create_client

from app.settings import get_settings

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_client() -> Client:
    """
    Build the process-wide Supabase client from settings.

    Raises:
        RuntimeError: If SUPABASE_URL or SUPABASE_KEY is missing
    """
    settings = get_settings()
    if not settings.SUPABASE_URL or not settings.SUPABASE_KEY:
        raise RuntimeError(
            "SUPABASE_URL and SUPABASE_KEY must be set to use the Supabase backend. "
            "See env.sample for reference."
        )
    logger.info(f"Connecting to Supabase at {settings.SUPABASE_URL}")
    return create_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)
