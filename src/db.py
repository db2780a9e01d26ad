from supabase import Client, create_client

from src.config import settings


supabase: Client = create_client(settings.supabase_url, settings.supabase_service_role_key)


def is_unique_violation(exc: Exception) -> bool:
    # PostgREST surfaces unique violations as 409 / SQLSTATE 23505.
    text = str(exc).lower()
    return "duplicate" in text or "unique" in text or "23505" in text
