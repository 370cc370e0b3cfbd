"""Service-role Supabase client factory."""

from supabase import Client, create_client

from logworker.config import Settings


def create_supabase_client(settings: Settings) -> Client:
    """Build a Supabase client using the service role key.

    The caller owns the client and passes it to the store and blob storage.
    """
    if not settings.supabase_url or not settings.supabase_service_role_key:
        raise RuntimeError(
            "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set"
        )
    return create_client(
        settings.supabase_url,
        settings.supabase_service_role_key,
    )
