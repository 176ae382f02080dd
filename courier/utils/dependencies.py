from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from courier.utils.security import user_id_from_token


# auto_error=False so a missing header reaches the envelope handler instead of a bare 403
bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    return user_id_from_token(credentials.credentials if credentials else None)
