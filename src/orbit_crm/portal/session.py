"""Client portal cookie-based session authentication."""

from dataclasses import asdict, dataclass

from fastapi import Request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from orbit_crm.common.exceptions import UnauthorizedError

COOKIE_NAME = "portal_session"
COOKIE_PATH = "/portal"
_REQUIRED = ("contact_id", "contact_email", "tenant_id")


@dataclass
class PortalSession:
    contact_id: str
    contact_email: str
    contact_name: str
    tenant_id: str
    authenticated_at: str


def _get_serializer() -> URLSafeTimedSerializer:
    from orbit_crm.common.config import get_settings
    return URLSafeTimedSerializer(get_settings().secret_key, salt="portal-session")


def create_session_cookie(session: PortalSession) -> str:
    """Sign a session payload and return the cookie value."""
    return _get_serializer().dumps(asdict(session))


def verify_session_cookie(cookie: str) -> PortalSession | None:
    """Verify and decode a session cookie. Returns the session or None."""
    from orbit_crm.common.config import get_settings

    try:
        payload = _get_serializer().loads(cookie, max_age=get_settings().portal_session_max_age)
    except (BadSignature, SignatureExpired):
        return None
    if not isinstance(payload, dict) or not all(payload.get(k) for k in _REQUIRED):
        return None
    return PortalSession(
        contact_id=payload["contact_id"],
        contact_email=payload["contact_email"],
        contact_name=payload.get("contact_name", ""),
        tenant_id=payload["tenant_id"],
        authenticated_at=payload.get("authenticated_at", ""),
    )


def get_portal_session(request: Request) -> PortalSession | None:
    cookie = request.cookies.get(COOKIE_NAME)
    if not cookie:
        return None
    return verify_session_cookie(cookie)


async def require_portal_session(request: Request) -> PortalSession:
    """FastAPI dependency for routes behind the portal cookie."""
    session = get_portal_session(request)
    if session is None:
        raise UnauthorizedError("Portal session required")
    return session
