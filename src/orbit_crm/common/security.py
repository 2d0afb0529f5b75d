"""API key authentication dependencies."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException

from orbit_crm.common.exceptions import UnauthorizedError, ValidationError


@dataclass
class UserContext:
    """Resolved caller info available to request handlers."""
    user_id: str
    tenant_id: Optional[str] = None
    role: str = "member"
    email: str = ""
    full_name: str = ""


async def require_api_key(
    x_orbit_api_key: str = Header(..., alias="X-Orbit-Api-Key"),
) -> str:
    """FastAPI dependency that validates the admin (cron) API key from header."""
    from orbit_crm.common.config import get_settings

    settings = get_settings()
    if x_orbit_api_key != settings.api_key:
        raise HTTPException(status_code=403, detail="Invalid API key")
    return x_orbit_api_key


async def require_super_admin(
    x_orbit_api_key: str = Header(..., alias="X-Orbit-Api-Key"),
) -> str:
    """FastAPI dependency that validates super-admin API key from header."""
    from orbit_crm.common.config import get_settings

    settings = get_settings()
    if x_orbit_api_key != settings.super_admin_key:
        raise HTTPException(status_code=403, detail="Invalid super-admin key")
    return x_orbit_api_key


async def require_user(
    x_orbit_api_key: str = Header(None, alias="X-Orbit-Api-Key"),
) -> UserContext:
    """Resolve the calling user from their personal API key.

    The tenant may still be unset for users who have not finished
    onboarding; handlers that need one use ``require_tenant_user``.
    """
    if not x_orbit_api_key:
        raise UnauthorizedError()

    from orbit_crm.deps import get_db, get_tenant_service
    svc = get_tenant_service()
    db = get_db()
    async with db.get_session() as session:
        profile = await svc.resolve_by_raw_key(session, x_orbit_api_key)
        if profile is None:
            raise UnauthorizedError()
        return UserContext(
            user_id=profile.id,
            tenant_id=profile.tenant_id,
            role=profile.role,
            email=profile.email,
            full_name=profile.full_name or "",
        )


async def require_tenant_user(
    x_orbit_api_key: str = Header(None, alias="X-Orbit-Api-Key"),
) -> UserContext:
    user = await require_user(x_orbit_api_key)
    if not user.tenant_id:
        raise ValidationError("No organization found")
    return user
