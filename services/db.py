import logging

from supabase import Client, create_client

from services.config import Config

_logger = logging.getLogger("db")

_client = None


def get_supabase() -> Client:
    global _client
    if _client is None:
        if not Config.supabase_url or not Config.supabase_key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY are required.")
        _client = create_client(Config.supabase_url, Config.supabase_key)
        _logger.info("Supabase client created for %s", Config.supabase_url)
    return _client


def set_supabase(client) -> None:
    """Swap the shared client (tests, scripts)."""
    global _client
    _client = client
