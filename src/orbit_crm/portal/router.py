"""Client portal routes.

``/api/portal/*`` is used by staff (API key); ``/portal/*`` is used by the
contact through the signed ``portal_session`` cookie.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response

from orbit_crm.common.security import UserContext, require_tenant_user
from orbit_crm.documents.service import content_disposition
from orbit_crm.portal.schemas import (
    PortalDashboard,
    PortalInviteRequest,
    PortalInviteResponse,
    PortalToggleRequest,
    PortalToggleResponse,
    PortalVerifyResponse,
)
from orbit_crm.portal.session import (
    COOKIE_NAME,
    COOKIE_PATH,
    PortalSession,
    create_session_cookie,
    require_portal_session,
)

router = APIRouter()


def _get_service():
    from orbit_crm.deps import get_portal_service
    return get_portal_service()


def _get_limiter():
    from orbit_crm.deps import get_invite_limiter
    return get_invite_limiter()


def _get_db():
    from orbit_crm.deps import get_db
    return get_db()


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


# ── Staff endpoints ──

@router.post("/api/portal/toggle", response_model=PortalToggleResponse)
async def toggle_portal(body: PortalToggleRequest, user: UserContext = Depends(require_tenant_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        contact = await svc.toggle_access(session, user.tenant_id, body.contact_id, body.enabled)
        return PortalToggleResponse(
            portal_enabled=contact.portal_enabled, portal_token=contact.portal_token
        )


@router.post("/api/portal/invite", response_model=PortalInviteResponse)
async def invite(
    body: PortalInviteRequest,
    request: Request,
    user: UserContext = Depends(require_tenant_user),
):
    limit = await _get_limiter().check(user.user_id)
    limit.raise_for_limit()

    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        contact = await svc.invite(
            session, user.tenant_id, body.contact_id,
            ip_address=_client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
        return PortalInviteResponse(email=contact.email)


@router.get("/api/portal/verify", response_model=PortalVerifyResponse)
async def verify(token: str, user: UserContext = Depends(require_tenant_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        return PortalVerifyResponse(**await svc.verify_token(session, user.tenant_id, token))


# ── Contact-facing endpoints ──

@router.get("/portal/auth/{token}")
async def exchange(token: str):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        portal = await svc.exchange_token(session, token)

    settings = svc.settings
    response = RedirectResponse("/portal/dashboard", status_code=302)
    response.set_cookie(
        COOKIE_NAME,
        create_session_cookie(portal),
        max_age=settings.portal_session_max_age,
        path=COOKIE_PATH,
        httponly=True,
        secure=settings.portal_cookie_secure,
        samesite="lax",
    )
    return response


@router.get("/portal/api/dashboard", response_model=PortalDashboard)
async def dashboard(portal: PortalSession = Depends(require_portal_session)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        data = await svc.dashboard(session, portal)
        return PortalDashboard.model_validate(data, from_attributes=True)


@router.get("/portal/api/documents/{document_id}/download")
async def download_document(
    document_id: str, portal: PortalSession = Depends(require_portal_session)
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        doc, content = await svc.get_shared_document(session, portal, document_id)
    return Response(
        content,
        media_type=doc.mime_type or "application/octet-stream",
        headers={"Content-Disposition": content_disposition(doc.name)},
    )


@router.post("/portal/logout")
async def logout():
    response = JSONResponse({"success": True})
    response.delete_cookie(COOKIE_NAME, path=COOKIE_PATH)
    return response
