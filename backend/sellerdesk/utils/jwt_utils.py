import os
import time
import logging
from typing import Optional, Dict, Any

import jwt

logger = logging.getLogger(__name__)


def _secret() -> str:
    return os.getenv("SECRET_KEY") or "dev-secret-change-me"


def _issuer() -> Optional[str]:
    return (os.getenv("JWT_ISSUER") or "").strip() or None


def _audience() -> Optional[str]:
    return (os.getenv("JWT_AUDIENCE") or "").strip() or None


def create_token(
    user_id: str,
    *,
    admin: bool = False,
    ttl_seconds: int = 60 * 60 * 24 * 7,
    extra_claims: Optional[Dict[str, Any]] = None,
) -> str:
    now = int(time.time())
    payload: Dict[str, Any] = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + int(ttl_seconds),
        "type": "access",
    }
    if admin:
        payload["admin"] = True
    if _issuer():
        payload["iss"] = _issuer()
    if _audience():
        payload["aud"] = _audience()
    if extra_claims:
        payload.update(extra_claims)
    return jwt.encode(payload, _secret(), algorithm="HS256")


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    options = {"require": ["sub", "exp"]}
    try:
        return jwt.decode(
            token,
            _secret(),
            algorithms=["HS256"],
            issuer=_issuer(),
            audience=_audience(),
            options=options,
        )
    except jwt.PyJWTError as e:
        logger.info("token_rejected reason=%s", type(e).__name__)
        return None


def get_bearer_token(auth_header: str) -> Optional[str]:
    if not auth_header:
        return None
    parts = auth_header.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip() or None
    return None
