import logging
from typing import Optional
from supabase import create_async_client, AsyncClient
from app.core.config import settings

logger = logging.getLogger(__name__)

class SupabaseManager:
    """
    Lazily created Supabase clients.

    Billing writes (payment records, the premium flag) bypass RLS, so the
    stores ask for the service client; the anon client is the fallback.
    """
    client: Optional[AsyncClient] = None
    service_client: Optional[AsyncClient] = None

    @classmethod
    async def get_client(cls) -> AsyncClient:
        if cls.client is None:
            url: str = settings.SUPABASE_URL
            key: str = settings.SUPABASE_KEY
            if not url or not key:
                raise ValueError("Supabase URL and Key must be provided in the environment variables.")
            cls.client = await create_async_client(url, key)
        return cls.client

    @classmethod
    async def get_service_client(cls) -> AsyncClient:
        if cls.service_client is None:
            url: str = settings.SUPABASE_URL
            key: Optional[str] = settings.SUPABASE_SERVICE_ROLE_KEY

            if not key:
                logger.warning("SUPABASE_SERVICE_ROLE_KEY not found. Billing tables will be accessed with SUPABASE_KEY; RLS may reject writes.")
                return await cls.get_client()

            logger.info("Initializing Supabase client with Service Role Key.")
            cls.service_client = await create_async_client(url, key)

        return cls.service_client

    @classmethod
    def reset(cls) -> None:
        cls.client = None
        cls.service_client = None

db = SupabaseManager()
