"""
Caller identity for API routes.

Token issuance and verification live in the auth service in front of this
backend. It forwards the authenticated user either on request.state.user_id
(when mounted in-process) or in the X-User-Id header.
"""
from typing import Optional

from fastapi import Header, HTTPException, Request


async def get_current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Authenticated user id forwarded by the auth service"),
) -> str:
    """
    Resolve the authenticated user id.

    Raises:
        HTTPException 401: No authenticated user on the request
    """
    user_id = getattr(request.state, "user_id", None) or x_user_id
    if user_id:
        return user_id

    raise HTTPException(
        status_code=401,
        detail={
            "error": "unauthorized",
            "message": "Missing authenticated user",
        },
    )
