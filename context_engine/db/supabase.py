"""Supabase client construction for the durable store."""

import logging

from supabase import Client, create_client

from context_engine.core.config import Settings
from context_engine.core.exceptions import PersistenceError

logger = logging.getLogger(__name__)


def create_supabase_client(settings: Settings) -> Client:
    """Create a Supabase client from application settings.

    The client is built once at process start and handed to the store
    explicitly; there is no module-level singleton.

    Args:
        settings: Application settings with Supabase credentials.

    Returns:
        Initialized Supabase client.

    Raises:
        PersistenceError: If client initialization fails.
    """
    try:
        client = create_client(
            settings.SUPABASE_URL,
            settings.SUPABASE_SERVICE_ROLE_KEY.get_secret_value(),
        )
    except Exception as e:
        logger.exception("Failed to initialize Supabase client")
        raise PersistenceError(
            f"Failed to initialize database connection: {e}", operation="connect"
        ) from e

    logger.info("Supabase client initialized successfully")
    return client
