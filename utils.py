import logging
from fastapi import Header, HTTPException, Depends
from db import get_supabase, AsyncClient
from typing import Optional

logger = logging.getLogger(__name__)

SIGN_IN_PATH = "/auth/sign-in"

def auth_error(message: str) -> HTTPException:
    # Clients send the customer back to sign-in on any 401
    return HTTPException(status_code=401, detail={"message": message, "redirect": SIGN_IN_PATH})

async def verify_customer(
    authorization: Optional[str] = Header(None),
    sbase: AsyncClient = Depends(get_supabase)
) -> str:
    """
    Verifies the bearer token with Supabase Auth.
    Returns the customer's user_id (UUID string).
    """
    if not authorization:
        raise auth_error("Missing Authorization Header")

    token = authorization.replace("Bearer ", "")

    try:
        user_res = await sbase.auth.get_user(token)
    except Exception as e:
        logger.warning("Auth Error: %s", e)
        raise auth_error("Authentication Failed")

    if not user_res or not user_res.user:
        raise auth_error("Invalid Token")

    return str(user_res.user.id)
