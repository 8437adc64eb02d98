from dataclasses import dataclass, field
from typing import FrozenSet
from fastapi import Depends, Request,HTTPException,status
from fastapi.security import HTTPBearer

from stockreserve.auth.constants import logger
from stockreserve.auth.utils import decode_access_token, roles_from_claims
from stockreserve.config.admin_config import admin_config


@dataclass(frozen=True)
class Caller:
    id: str
    roles: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return admin_config.ADMIN_ROLE in self.roles


class Authentication(HTTPBearer):
    def __init__(self,auto_error=True):
        super().__init__(auto_error=auto_error)

    async def __call__(self, request:Request) -> Caller:
        auth_creds=await super().__call__(request)
        if auth_creds is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,detail="Not authenticated")

        claims=decode_access_token(auth_creds.credentials)
        if not claims or not claims.get("sub"):
            logger.warning("auth.invalid_token", extra={"path": request.url.path})
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,detail="Invalid or expired token provided.")

        caller = Caller(id=str(claims["sub"]), roles=frozenset(roles_from_claims(claims)))
        request.state.caller_id = caller.id
        return caller


authenticate = Authentication()


def require_role(role: str):
    async def _checker(caller: Caller = Depends(authenticate)) -> Caller:
        if role not in caller.roles:
            logger.warning("auth.forbidden", extra={"caller_id": caller.id, "required_role": role})
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,detail="Caller doesn't have the required role")
        return caller
    return _checker


require_admin = require_role(admin_config.ADMIN_ROLE)
