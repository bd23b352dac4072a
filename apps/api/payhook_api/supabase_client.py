"""Supabase client for server-side payment reconciliation.

SECURITY NOTICE:
- The service key bypasses RLS; webhook deliveries carry no user session, so
  the payment store needs it. NEVER expose it to clients.
- Keys are never logged.

KEY NAMING TRANSITION:
- New Supabase UI: SB_SECRET_KEY
- Legacy: SUPABASE_SERVICE_ROLE_KEY (fallback)
"""

import logging
from functools import lru_cache

from supabase import Client, create_client

from payhook_api.config.env import get_supabase_service_key, get_supabase_url

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_supabase_admin_client() -> Client:
    """Get the process-wide Supabase admin client (created on first use).

    Returns:
        Client: Supabase client authenticated with the service key

    Raises:
        ValueError: If environment variables not set
    """
    url = get_supabase_url()
    service_key = get_supabase_service_key()

    logger.info(
        "Initializing Supabase admin client",
        extra={"supabase_url": url, "key_type": "service"},
    )

    return create_client(url, service_key)


def reset_supabase_client() -> None:
    """Drop the cached client. Tests only."""
    get_supabase_admin_client.cache_clear()
