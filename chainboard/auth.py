from fastapi import Header, HTTPException

from .config import settings
from .models import RequestContext, UserId


def get_current_user(authorization: str = Header(...)) -> RequestContext:
    """Resolve the caller from the bearer token.

    Account management lives outside this service, so the token is taken to
    be the caller's numeric user id.
    """
    prefix = "Bearer "
    if not authorization.startswith(prefix):
        raise HTTPException(status_code=401, detail="invalid_token")
    token = authorization[len(prefix) :].strip()
    if not token.isdigit() or int(token) <= 0:
        raise HTTPException(status_code=401, detail="invalid_token")
    user_id = UserId(int(token))
    return RequestContext(user_id=user_id, is_admin=user_id in settings.admin_user_ids)
