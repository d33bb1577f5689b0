"""
Database operations module.
Handles Supabase client initialization, logging setup, and shared row helpers.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional, Protocol

from supabase import Client, create_client
from tenacity import retry, stop_after_attempt, wait_exponential

# Use a dedicated DB logger
logger = logging.getLogger("rs_db")


# ==============================================================
# 🧩 Protocol-based Dependency Injection
# ==============================================================


class SupabaseLike(Protocol):
    """Protocol to allow fake/mocked Supabase clients in tests."""

    def table(self, name: str) -> Any: ...


# Global Supabase client
supabase_client: Optional[SupabaseLike] = None


def set_supabase_client(client: Optional[SupabaseLike]) -> None:
    """Dependency injection hook for tests."""
    global supabase_client
    supabase_client = client
    logger.info("[DB] Supabase client overridden")


def get_supabase() -> Optional[SupabaseLike]:
    """Return the current module-level client (None when not initialized)."""
    return supabase_client


def setup_logging():
    """Configure logging for the application.

    This function should be called at application startup.
    It configures the logging format and level.
    """
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=4, max=10),
    reraise=True,
)
def init_supabase() -> Optional[Client]:
    """Initialize Supabase client with retry logic and proper error handling.

    Returns:
        Optional[Client]: Supabase client if initialization succeeds, None otherwise

    Note:
        - Retries up to 3 times with exponential backoff
        - Returns None when the environment is not configured
    """
    global supabase_client

    # Return existing client if already initialized
    if supabase_client is not None:
        return supabase_client

    url: str = os.environ.get("NEXT_PUBLIC_SUPABASE_URL", "")
    key: str = os.environ.get("NEXT_PUBLIC_SUPABASE_ANON_KEY", "")
    if not url or not key:
        logger.warning(
            "Missing Supabase environment variables - running without Supabase"
        )
        return None

    try:
        client = create_client(url, key)
        supabase_client = client
        logger.info("Supabase client initialized successfully")
        return client

    except Exception as e:
        logger.error(f"Failed to initialize Supabase client: {e}")
        return None


# --- General DB Helpers ---
def upsert_row(
    client: SupabaseLike,
    table: str,
    payload: Dict[str, Any],
    conflict_fields: Optional[List[str]] = None,
) -> List[Dict[str, Any]]:
    """Inserts or updates a row in a given table.

    Args:
        client: Supabase (or fake) client.
        table (str): The name of the table.
        payload (dict): The data to insert or update.
        conflict_fields (List[str], optional): Columns to use for conflict resolution.

    Returns:
        The rows returned by the store (empty when nothing was written).

    Raises:
        Whatever the client raises; callers decide how to surface it.
    """
    query = client.table(table)
    if conflict_fields:
        query = query.upsert(payload, on_conflict=",".join(conflict_fields))
    else:
        query = query.insert(payload)
    response = query.execute()
    logger.debug(f"[DB] Upsert response for table {table}: {response.data}")
    return response.data or []
