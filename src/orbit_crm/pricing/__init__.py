"""Subscription tiers, AI model entitlements and token accounting."""

from orbit_crm.pricing.tiers import (
    FREE_DAILY_CAP,
    MODELS,
    TIER_ORDER,
    TIERS,
    TOKEN_PACKS,
    ModelConfig,
    TierConfig,
    TokenPack,
    calculate_effective_tokens,
    can_access_model,
    can_purchase_pack,
    get_available_models,
    get_suggested_upgrade,
    has_tokens,
    normalize_tier,
    reset_info,
    tier_rank,
    usage_status,
)

__all__ = [
    "FREE_DAILY_CAP",
    "MODELS",
    "TIER_ORDER",
    "TIERS",
    "TOKEN_PACKS",
    "ModelConfig",
    "TierConfig",
    "TokenPack",
    "calculate_effective_tokens",
    "can_access_model",
    "can_purchase_pack",
    "get_available_models",
    "get_suggested_upgrade",
    "has_tokens",
    "normalize_tier",
    "reset_info",
    "tier_rank",
    "usage_status",
]
