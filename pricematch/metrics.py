"""Prometheus metrics for the price resolution service."""

from prometheus_client import Counter, Histogram, Info

# Application info
app_info = Info("pricematch", "Price resolution service info")
app_info.info({"version": "0.1.0", "name": "pricematch"})

# Resolution metrics
resolutions_total = Counter(
    "resolutions_total",
    "Total number of product name resolutions by terminal source",
    ["source"],
)

resolution_duration_seconds = Histogram(
    "resolution_duration_seconds",
    "Time spent resolving a product name",
    ["source"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
)

# Cache metrics
cache_lookups_total = Counter(
    "resolution_cache_lookups_total",
    "Resolution cache lookups by outcome",
    ["outcome"],  # hit, negative, miss, expired
)

cache_write_errors_total = Counter(
    "resolution_cache_write_errors_total",
    "Failed resolution cache writes",
)

# Tier failure metrics
tier_errors_total = Counter(
    "resolution_tier_errors_total",
    "Errors swallowed at a resolution tier boundary",
    ["tier", "error_type"],  # error_type: rate_limited, quota_exceeded, transport, malformed, store
)

# External service metrics
llm_calls_total = Counter(
    "llm_calls_total",
    "Total number of LLM calls",
    ["status"],
)

web_fetches_total = Counter(
    "web_price_fetches_total",
    "Web price fetch attempts by outcome",
    ["status"],  # found, not_found, error
)


def record_resolution(source: str, duration: float):
    """Record a completed resolution."""
    resolutions_total.labels(source=source).inc()
    resolution_duration_seconds.labels(source=source).observe(duration)


def record_cache_lookup(outcome: str):
    """Record a resolution cache lookup."""
    cache_lookups_total.labels(outcome=outcome).inc()


def record_tier_error(tier: str, error_type: str):
    """Record an error that was absorbed by a tier."""
    tier_errors_total.labels(tier=tier, error_type=error_type).inc()


def record_llm_call(status: str):
    """Record an LLM call outcome."""
    llm_calls_total.labels(status=status).inc()


def record_web_fetch(status: str):
    """Record a web price fetch outcome."""
    web_fetches_total.labels(status=status).inc()
