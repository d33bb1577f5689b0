"""
Application constants for RosterSync.
Centralized configuration for tables, platforms, and sync defaults.
"""

# =============================================================================
# DATABASE TABLE CONSTANTS
# =============================================================================
PROFILE_CACHE_TABLE = "analytics_profile_cache"
PLATFORM_LINKS_TABLE = "influencer_platforms"
INFLUENCERS_TABLE = "influencers"
USERS_TABLE = "users"

# Conflict key used for cache upserts (one live entry per key)
PROFILE_CACHE_CONFLICT_FIELDS = ["platform", "external_user_id", "owner_id"]

# =============================================================================
# PLATFORMS
# =============================================================================
SUPPORTED_PLATFORMS = ("instagram", "tiktok", "youtube")

# =============================================================================
# PROVIDER (Modash) DEFAULTS
# =============================================================================
PROVIDER_BASE_URL = "https://api.modash.io"
PROVIDER_TIMEOUT_SECONDS = 30.0

# Token bucket: 10 requests per second
RATE_LIMIT_CAPACITY = 10
RATE_LIMIT_INTERVAL_SECONDS = 1.0

# Credit ledger fallbacks when /user/info omits fields
DEFAULT_CREDIT_LIMIT = 3000

# =============================================================================
# CACHE / STALENESS
# =============================================================================
CACHE_TTL_DAYS = 28  # 4 weeks

# Tiered refresh intervals (days)
TIER_TTL_DAYS = {
    "GOLD": 28,
    "SILVER": 42,
    "PARTNERED": 42,
    "BRONZE": 56,
}

# Sweep order: lower runs first; untiered creators go last
TIER_SWEEP_ORDER = {
    "GOLD": 0,
    "SILVER": 1,
    "PARTNERED": 2,
    "BRONZE": 3,
}

# =============================================================================
# BULK SWEEP
# =============================================================================
BULK_ITEM_DELAY_SECONDS = 0.5
BULK_ERROR_SAMPLE_SIZE = 10
SWEEP_INTERVAL_SECONDS = 3600

# =============================================================================
# AUTHORIZATION
# =============================================================================
ELEVATED_ROLES = frozenset({"STAFF", "ADMIN"})
