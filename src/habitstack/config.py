# src/habitstack/config.py
import os
from typing import Optional

from dotenv import load_dotenv
from supabase import Client, create_client

load_dotenv()

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")

LOCAL_STORE_PATH = os.getenv("HABITSTACK_LOCAL_STORE", "habitstack_local.json")
LOG_FILE = os.getenv("HABITSTACK_LOG_FILE", "logs/habitstack.log")
LOG_LEVEL = os.getenv("HABITSTACK_LOG_LEVEL", "INFO")
STREAK_LOOKBACK_DAYS = int(os.getenv("HABITSTACK_STREAK_LOOKBACK_DAYS", "365"))

DEFAULT_STACK_NAME = "My First Stack"
DEFAULT_STACK_DESCRIPTION = "Getting started with habits"

_client: Optional[Client] = None


def supabase_configured() -> bool:
    return bool(SUPABASE_URL and SUPABASE_KEY)


def get_client() -> Client:
    """Return the shared Supabase client, creating it on first use."""
    global _client
    if _client is None:
        if not supabase_configured():
            raise RuntimeError("SUPABASE_URL and SUPABASE_KEY must be set")
        _client = create_client(SUPABASE_URL, SUPABASE_KEY)
    return _client
