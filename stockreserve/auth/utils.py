from datetime import datetime, timedelta, timezone
import secrets
from typing import Any, Dict, List, Optional, Sequence
from jose import jwt, JWTError
from stockreserve.config.settings import config_settings

ACCESS_TOKEN_EXPIRE_MINUTES = int(config_settings.ACCESS_TOKEN_EXPIRE_MINUTES)


def create_access_token(caller_id, roles: Sequence[str] = (), expires_dur: float = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    """Mint a bearer token. Used by internal callers (checkout, ops scripts) and tests."""
    now=datetime.now(timezone.utc)
    expiry= now + (timedelta(minutes=expires_dur))

    payload = {
        "sub": str(caller_id),
        "iat": int(now.timestamp()),
        "exp": int(expiry.timestamp()),
        "jti": secrets.token_hex(16),
        "roles": list(roles),
    }
    return jwt.encode(claims=payload,key=config_settings.JWT_SECRET,algorithm=config_settings.JWT_ALGO)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Verify signature and expiry; None when the token can't be trusted."""
    try:
        return jwt.decode(token, key=config_settings.JWT_SECRET, algorithms=[config_settings.JWT_ALGO])
    except JWTError:
        return None


def roles_from_claims(claims: Dict[str, Any]) -> List[str]:
    roles = claims.get("roles") or []
    if isinstance(roles, str):
        return [roles]
    return [str(r) for r in roles]
