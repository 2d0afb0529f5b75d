"""OrbitCRM: multi-tenant CRM API with metered AI chat and a client portal."""

from orbit_crm.pricing import calculate_effective_tokens, can_access_model
from orbit_crm.ratelimit.limiter import InMemoryRateLimiter, RateLimitResult

__all__ = [
    "InMemoryRateLimiter",
    "RateLimitResult",
    "calculate_effective_tokens",
    "can_access_model",
]
__version__ = "0.1.0"
