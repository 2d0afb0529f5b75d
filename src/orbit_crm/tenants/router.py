"""Organization admin router (super-admin) and the caller's token balance."""

from fastapi import APIRouter, Depends, HTTPException

from orbit_crm.common.security import UserContext, require_super_admin, require_tenant_user
from orbit_crm.pricing import TIERS, usage_status
from orbit_crm.tenants.schemas import (
    OrganizationCreate,
    OrganizationResponse,
    ProfileCreate,
    ProfileCreateResponse,
    TokenBalanceResponse,
    TokenPackGrant,
)

router = APIRouter()


def _get_service():
    from orbit_crm.deps import get_tenant_service
    return get_tenant_service()


def _get_db():
    from orbit_crm.deps import get_db
    return get_db()


@router.post("/api/organizations", response_model=OrganizationResponse, status_code=201)
async def create_organization(body: OrganizationCreate, _=Depends(require_super_admin)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        org = await svc.create_organization(session, **body.model_dump())
        return OrganizationResponse.model_validate(org)


@router.get("/api/organizations/{tenant_id}", response_model=OrganizationResponse)
async def get_organization(tenant_id: str, _=Depends(require_super_admin)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        org = await svc.get_organization(session, tenant_id)
        if org is None:
            raise HTTPException(status_code=404, detail="Organization not found")
        return OrganizationResponse.model_validate(org)


@router.post(
    "/api/organizations/{tenant_id}/users",
    response_model=ProfileCreateResponse,
    status_code=201,
)
async def create_user(tenant_id: str, body: ProfileCreate, _=Depends(require_super_admin)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        if await svc.get_organization(session, tenant_id) is None:
            raise HTTPException(status_code=404, detail="Organization not found")
        profile, raw_key = await svc.create_profile(
            session,
            email=body.email,
            tenant_id=tenant_id,
            full_name=body.full_name,
            role=body.role,
        )
        return ProfileCreateResponse(
            id=profile.id,
            tenant_id=profile.tenant_id,
            email=profile.email,
            full_name=profile.full_name,
            role=profile.role,
            created_at=profile.created_at,
            api_key=raw_key,
        )


@router.post("/api/organizations/{tenant_id}/token-packs", response_model=OrganizationResponse)
async def grant_token_pack(
    tenant_id: str, body: TokenPackGrant, _=Depends(require_super_admin)
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        org = await svc.grant_token_pack(session, tenant_id, body.pack_id)
        return OrganizationResponse.model_validate(org)


@router.get("/api/tokens/balance", response_model=TokenBalanceResponse)
async def token_balance(user: UserContext = Depends(require_tenant_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        balance = await svc.get_balance(session, user.tenant_id)

    tier_cfg = TIERS[balance["tier"]]
    total = balance["token_balance"] + balance["token_pack_balance"]
    return TokenBalanceResponse(
        **balance,
        total_available=total,
        allocation=tier_cfg.token_allocation,
        daily_cap=tier_cfg.daily_cap,
        status=usage_status(total, tier_cfg.token_allocation),
    )
