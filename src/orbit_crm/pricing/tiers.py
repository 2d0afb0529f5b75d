"""Tier definitions, model entitlements and token accounting for OrbitCRM.

Four subscription tiers, ordered free < pro < business < enterprise:

    free        EUR 0    1,000 tokens/mo    100 tokens/day cap   GPT-4o Mini only
    pro         EUR 29   50,000 tokens/mo   no daily cap         GPT-4o, Gemini, Sonnet
    business    EUR 79   200,000 tokens/mo  no daily cap         all models except Opus 4
    enterprise  EUR 199  500,000 tokens/mo  no daily cap         all models

Balances are charged in *effective* tokens: real tokens times the model's
multiplier, rounded up. Opus 4 at x10 means 500K effective tokens buy about
50K real Opus tokens.
"""

import math
from dataclasses import dataclass, field

# ── Tiers ──
TIER_ORDER: list[str] = ["free", "pro", "business", "enterprise"]


@dataclass(frozen=True)
class TierConfig:
    id: str
    name: str
    price: int  # EUR per month
    token_allocation: int  # monthly effective token pool
    daily_cap: int  # 0 = no daily cap
    max_users: int  # -1 = unlimited
    storage_gb: int
    max_packs: int  # -1 = unlimited
    features: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ModelConfig:
    id: str
    name: str
    provider: str  # openai | anthropic | google
    minimum_tier: str
    token_multiplier: int
    description: str = ""


@dataclass(frozen=True)
class TokenPack:
    id: str
    name: str
    tokens: int
    price: int  # EUR one-time
    available_from: str


TIERS: dict[str, TierConfig] = {
    "free": TierConfig(
        id="free", name="Free", price=0,
        token_allocation=1_000, daily_cap=100,
        max_users=1, storage_gb=1, max_packs=0,
        features=["CRM, Tasks, Invoicing", "GPT-4o Mini", "Client portal (read-only)"],
    ),
    "pro": TierConfig(
        id="pro", name="Pro", price=29,
        token_allocation=50_000, daily_cap=0,
        max_users=1, storage_gb=10, max_packs=1,
        features=["GPT-4o, Claude 3.5 Sonnet, Gemini Pro", "AI Knowledge Base", "Document Vault (10 GB)"],
    ),
    "business": TierConfig(
        id="business", name="Business", price=79,
        token_allocation=200_000, daily_cap=0,
        max_users=10, storage_gb=50, max_packs=-1,
        features=["Up to 10 users", "Team collaboration", "Document Vault (50 GB)"],
    ),
    "enterprise": TierConfig(
        id="enterprise", name="Enterprise", price=199,
        token_allocation=500_000, daily_cap=0,
        max_users=-1, storage_gb=200, max_packs=-1,
        features=["Claude Opus 4", "Unlimited users", "Document Vault (200 GB)"],
    ),
}

# ── Models ──
MODELS: dict[str, ModelConfig] = {
    "gpt-4o-mini": ModelConfig(
        id="gpt-4o-mini", name="GPT-4o Mini", provider="openai",
        minimum_tier="free", token_multiplier=1,
        description="Fast and efficient, great for everyday tasks",
    ),
    "gpt-4o": ModelConfig(
        id="gpt-4o", name="GPT-4o", provider="openai",
        minimum_tier="pro", token_multiplier=3,
        description="Balanced quality and speed",
    ),
    "claude-3-5-sonnet": ModelConfig(
        id="claude-3-5-sonnet", name="Claude 3.5 Sonnet", provider="anthropic",
        minimum_tier="pro", token_multiplier=3,
        description="Excellent for writing, analysis, and long documents",
    ),
    "claude-opus-4": ModelConfig(
        id="claude-opus-4", name="Claude Opus 4", provider="anthropic",
        minimum_tier="enterprise", token_multiplier=10,
        description="Most capable model for complex reasoning",
    ),
    "gemini-pro": ModelConfig(
        id="gemini-pro", name="Gemini Pro", provider="google",
        minimum_tier="pro", token_multiplier=2,
        description="Google AI with broad up-to-date knowledge",
    ),
}

DEFAULT_MODEL = "gpt-4o-mini"

# ── Token packs (add-ons) ──
TOKEN_PACKS: dict[str, TokenPack] = {
    "starter": TokenPack("starter", "Starter Pack", 25_000, 10, "pro"),
    "plus": TokenPack("plus", "Plus Pack", 100_000, 35, "pro"),
    "power": TokenPack("power", "Power Pack", 500_000, 150, "business"),
}

FREE_DAILY_CAP = TIERS["free"].daily_cap


def tier_rank(tier: str) -> int:
    return TIER_ORDER.index(tier)


def normalize_tier(tier: str | None) -> str:
    """Map a stored tier value onto a known tier, defaulting to free."""
    tier = (tier or "free").lower()
    return tier if tier in TIERS else "free"


def can_access_model(tier: str, model_id: str) -> bool:
    """Check if a tier can access a model.

    Unknown tiers or models raise; callers validate both first.
    """
    return tier_rank(tier) >= tier_rank(MODELS[model_id].minimum_tier)


def get_available_models(tier: str) -> list[ModelConfig]:
    return [m for m in MODELS.values() if can_access_model(tier, m.id)]


def calculate_effective_tokens(real_tokens: int, model_id: str) -> int:
    """Effective token cost after applying the model multiplier.

    This is what gets charged against the organization's balance.
    """
    return math.ceil(real_tokens * MODELS[model_id].token_multiplier)


def has_tokens(monthly_balance: int, pack_balance: int, required: int) -> bool:
    return (monthly_balance + pack_balance) >= required


def get_suggested_upgrade(current_tier: str) -> str | None:
    """Return the next tier up for an upgrade prompt, or None at the top."""
    idx = tier_rank(current_tier)
    return TIER_ORDER[idx + 1] if idx < len(TIER_ORDER) - 1 else None


def can_purchase_pack(tier: str, pack_id: str, granted: int = 0) -> bool:
    """True when the tier offers the pack and ``granted`` is still under ``max_packs``."""
    pack = TOKEN_PACKS[pack_id]
    limit = TIERS[tier].max_packs
    if limit != -1 and granted >= limit:
        return False
    return tier_rank(tier) >= tier_rank(pack.available_from)


def reset_info(tier: str) -> str:
    if tier == "free":
        return (
            "Your daily allowance resets at midnight UTC. "
            "Monthly allocation resets on the 1st."
        )
    return "Your monthly allocation resets on the 1st of next month."


def usage_status(total_available: int, allocation: int) -> str:
    """Classify remaining balance as healthy (>20%), warning (5-20%) or critical."""
    pct = (total_available / allocation) * 100 if allocation > 0 else 100
    if pct > 20:
        return "healthy"
    if pct > 5:
        return "warning"
    return "critical"
