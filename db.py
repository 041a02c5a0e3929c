import os
import logging
from supabase import create_async_client, AsyncClient
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

url: str = os.environ.get("SUPABASE_URL")
key: str = os.environ.get("SUPABASE_KEY")
log_level: str = os.environ.get("LOG_LEVEL", "INFO").upper()

if not url or not key:
    # Requests will fail at the first query, but the app can still boot for docs/tests
    logger.warning("SUPABASE_URL or SUPABASE_KEY not set in environment.")

async def get_supabase() -> AsyncClient:
    return await create_async_client(url or "", key or "")
