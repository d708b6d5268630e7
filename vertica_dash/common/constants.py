"""
Common constants used across the application.
"""

# Probe queries
VALIDATION_QUERY = "SELECT 1 as test"
HEALTH_CHECK_QUERY = "SELECT 1 as result"

# Cache key namespaces
CACHE_PREFIX_ADVERTISERS = "bp:advertisers"
CACHE_PREFIX_CAMPAIGNS = "bp:campaigns"
CACHE_PREFIX_WINDOWS = "bp:windows"

# Per-resource cache TTLs (seconds)
ADVERTISERS_TTL_SECONDS = 3600
CAMPAIGNS_TTL_SECONDS = 300
WINDOWS_TTL_SECONDS = 300
DEFAULT_RESPONSE_TTL_SECONDS = 300

# HTTP cache headers
DEFAULT_CACHE_CONTROL = "public, s-maxage=300, stale-while-revalidate=600"
ADVERTISERS_CACHE_CONTROL = "public, s-maxage=3600, stale-while-revalidate=7200"

# Burst protection feature flag attribute
BURST_PROTECTION_ATTRIBUTE = "spending-burst-protection:is-enabled-for-publisher"
