"""Request identity: the caller's user id, taken from the ``x-user-id`` header.

The id is trusted as given: there are no passwords or tokens.  Handlers
that need a real user look the id up themselves.
"""

from fastapi import HTTPException
from starlette.requests import Request

USER_ID_HEADER = "x-user-id"


def get_user_id_from_request(request: Request) -> str | None:
    """Extract the caller's user id from the request headers."""
    user_id = request.headers.get(USER_ID_HEADER, "").strip()
    return user_id or None


async def require_user(request: Request) -> str:
    """FastAPI dependency that returns the caller's user id or raises 401."""
    user_id = get_user_id_from_request(request)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user_id
