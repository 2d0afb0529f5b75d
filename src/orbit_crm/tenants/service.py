"""Organization and user management, including token balance mutation."""

import hashlib
import logging
import secrets

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from orbit_crm.common.exceptions import NotFoundError, ValidationError
from orbit_crm.pricing import TIERS, TOKEN_PACKS, can_purchase_pack, normalize_tier
from orbit_crm.tenants.models import OrganizationModel, ProfileModel

logger = logging.getLogger(__name__)


def _hash_api_key(raw_key: str) -> str:
    """SHA-256 hash of a raw API key for storage."""
    return hashlib.sha256(raw_key.encode()).hexdigest()


class TenantService:
    """Organization, profile and balance operations."""

    async def create_organization(
        self,
        session: AsyncSession,
        name: str,
        subscription_tier: str = "free",
        token_balance: int | None = None,
        token_pack_balance: int = 0,
        token_daily_balance: int | None = None,
        settings: dict | None = None,
    ) -> OrganizationModel:
        """Create an organization, seeding balances from its tier by default."""
        if subscription_tier not in TIERS:
            raise ValidationError(f"Unknown subscription tier: {subscription_tier}")
        tier = TIERS[subscription_tier]
        org = OrganizationModel(
            name=name,
            subscription_tier=subscription_tier,
            token_balance=tier.token_allocation if token_balance is None else token_balance,
            token_pack_balance=token_pack_balance,
            token_daily_balance=tier.daily_cap if token_daily_balance is None else token_daily_balance,
            settings=settings or {},
        )
        session.add(org)
        await session.flush()
        return org

    async def get_organization(
        self, session: AsyncSession, tenant_id: str
    ) -> OrganizationModel | None:
        return await session.get(OrganizationModel, tenant_id)

    async def create_profile(
        self,
        session: AsyncSession,
        email: str,
        tenant_id: str | None = None,
        full_name: str | None = None,
        role: str = "member",
    ) -> tuple[ProfileModel, str]:
        """Create a user and generate their API key. Returns (model, raw_api_key)."""
        raw_api_key = f"orb_{secrets.token_urlsafe(32)}"
        profile = ProfileModel(
            email=email.strip().lower(),
            tenant_id=tenant_id,
            full_name=full_name,
            role=role,
            api_key_hash=_hash_api_key(raw_api_key),
        )
        session.add(profile)
        await session.flush()
        return profile, raw_api_key

    async def list_profiles(
        self, session: AsyncSession, tenant_id: str
    ) -> list[ProfileModel]:
        result = await session.execute(
            select(ProfileModel).where(ProfileModel.tenant_id == tenant_id)
        )
        return list(result.scalars().all())

    async def resolve_by_raw_key(
        self, session: AsyncSession, raw_api_key: str
    ) -> ProfileModel | None:
        """Resolve a user from a raw API key by hashing and looking up."""
        result = await session.execute(
            select(ProfileModel).where(
                ProfileModel.api_key_hash == _hash_api_key(raw_api_key)
            )
        )
        return result.scalar_one_or_none()

    # ── Token balances ──

    async def get_balance(self, session: AsyncSession, tenant_id: str) -> dict:
        org = await self.get_organization(session, tenant_id)
        if org is None:
            raise NotFoundError("Organization not found")
        return {
            "tier": normalize_tier(org.subscription_tier),
            "token_balance": org.token_balance,
            "token_pack_balance": org.token_pack_balance,
            "token_daily_balance": org.token_daily_balance,
        }

    async def check_and_deduct_tokens(
        self, session: AsyncSession, tenant_id: str, tokens: int
    ) -> dict:
        """Atomically deduct effective tokens from an organization.

        Draws from the pack balance first, then the monthly balance, and
        decrements the daily balance. All counters clamp at zero. The whole
        mutation is one UPDATE statement, so concurrent settlements against
        the same organization cannot lose updates.
        """
        if tokens < 0:
            raise ValidationError("Token amount must be non-negative")

        pack = OrganizationModel.token_pack_balance
        monthly = OrganizationModel.token_balance
        daily = OrganizationModel.token_daily_balance
        overflow = tokens - pack

        result = await session.execute(
            update(OrganizationModel)
            .where(OrganizationModel.id == tenant_id)
            .values(
                token_pack_balance=case((pack >= tokens, pack - tokens), else_=0),
                token_balance=case(
                    (pack >= tokens, monthly),
                    (monthly >= overflow, monthly - overflow),
                    else_=0,
                ),
                token_daily_balance=case((daily >= tokens, daily - tokens), else_=0),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError("Organization not found")

        await session.flush()
        org = await self.get_organization(session, tenant_id)
        await session.refresh(org)
        return {
            "deducted": tokens,
            "token_balance": org.token_balance,
            "token_pack_balance": org.token_pack_balance,
            "token_daily_balance": org.token_daily_balance,
        }

    async def grant_token_pack(
        self, session: AsyncSession, tenant_id: str, pack_id: str
    ) -> OrganizationModel:
        """Credit a purchased token pack to an organization.

        The tier's ``max_packs`` caps grants per billing period; the cap is
        re-checked inside the UPDATE so concurrent grants cannot overshoot it.
        """
        if pack_id not in TOKEN_PACKS:
            raise ValidationError(f"Unknown token pack: {pack_id}")
        org = await self.get_organization(session, tenant_id)
        if org is None:
            raise NotFoundError("Organization not found")
        tier = normalize_tier(org.subscription_tier)
        if not can_purchase_pack(tier, pack_id):
            raise ValidationError(
                f"The {pack_id} pack is not available on the {tier} plan"
            )
        limit = TIERS[tier].max_packs
        limit_reached = ValidationError(
            f"The {tier} plan allows {limit} token pack(s) per billing period"
        )
        if not can_purchase_pack(tier, pack_id, org.token_packs_granted or 0):
            raise limit_reached

        pack = TOKEN_PACKS[pack_id]
        stmt = (
            update(OrganizationModel)
            .where(OrganizationModel.id == tenant_id)
            .values(
                token_pack_balance=OrganizationModel.token_pack_balance + pack.tokens,
                token_packs_granted=OrganizationModel.token_packs_granted + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if limit != -1:
            stmt = stmt.where(OrganizationModel.token_packs_granted < limit)
        result = await session.execute(stmt)
        if result.rowcount == 0:
            raise limit_reached
        logger.info("Token pack granted", extra={"tenant_id": tenant_id, "tokens": pack.tokens})
        await session.flush()
        await session.refresh(org)
        return org
