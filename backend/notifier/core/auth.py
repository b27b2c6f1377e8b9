import hmac
import logging
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException

from notifier.core.config import get_settings

logger = logging.getLogger(__name__)

ALLOWED_ROLES = {"OWNER", "ADMIN", "OPERATOR", "SUPPORT", "VIEWER"}


@dataclass
class CurrentUser:
    id: str
    role: str
    tenant_id: str
    email: Optional[str] = None


def _app_metadata(payload: dict) -> dict:
    # SECURITY: role and tenant come only from server-managed app_metadata;
    # user_metadata is user-editable and cannot be trusted.
    meta = payload.get("app_metadata") or {}
    return meta if isinstance(meta, dict) else {}


def _extract_role(payload: dict) -> Optional[str]:
    raw = _app_metadata(payload).get("role")
    if raw is None:
        return None
    role = str(raw).strip().upper()
    if role not in ALLOWED_ROLES:
        return None
    return role


def _decode(token: str, settings) -> Optional[dict]:
    audience = (settings.supabase_jwt_audience or "").strip()
    decode_kwargs = {}
    options = {"verify_aud": bool(audience)}
    if audience:
        decode_kwargs["audience"] = audience
    try:
        return jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=["HS256"],
            options=options,
            **decode_kwargs,
        )
    except jwt.InvalidTokenError:
        return None


def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> CurrentUser:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(401, "Missing bearer token")

    settings = get_settings()
    if not settings.supabase_jwt_secret:
        raise HTTPException(500, "SUPABASE_JWT_SECRET is not configured")

    payload = _decode(authorization.split(" ", 1)[1].strip(), settings)
    if payload is None:
        raise HTTPException(401, "Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(401, "Invalid token")

    role = _extract_role(payload)
    if not role:
        raise HTTPException(403, "Missing role")

    tenant_id = str(_app_metadata(payload).get("tenant_id") or "").strip()
    if not tenant_id:
        raise HTTPException(403, "Missing tenant")

    return CurrentUser(id=user_id, role=role, tenant_id=tenant_id, email=payload.get("email"))


def require_roles(*roles: str):
    def _dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in roles:
            raise HTTPException(403, "Forbidden")
        return user

    return _dependency


def require_scheduler_token(
    x_scheduler_token: Optional[str] = Header(None, alias="X-Scheduler-Token"),
) -> None:
    """Batch endpoints: shared secret from the external scheduler. Unknown callers get 404."""
    settings = get_settings()
    if not settings.scheduler_token:
        raise HTTPException(404, "Not found")
    if not x_scheduler_token or not hmac.compare_digest(x_scheduler_token, settings.scheduler_token):
        logger.warning("Scheduler endpoint: invalid or missing token")
        raise HTTPException(404, "Not found")
