"""Actor identification for posting endpoints."""
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from app.utils.logger import get_logger

logger = get_logger(__name__)

ACTOR_HEADER = "X-Actor-Id"


async def get_actor_id(x_actor_id: Optional[str] = Header(None, alias=ACTOR_HEADER)) -> Optional[str]:
    """
    Id of the authenticated user making the request.

    Authentication happens upstream; the gateway forwards the user id in the
    X-Actor-Id header.
    """
    if x_actor_id is None:
        return None
    actor_id = x_actor_id.strip()
    return actor_id or None


async def get_required_actor_id(actor_id: Optional[str] = Depends(get_actor_id)) -> str:
    """Actor id for endpoints that change financial state."""
    if actor_id is None:
        logger.warning("Request without actor id rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"{ACTOR_HEADER} header is required",
        )
    return actor_id
