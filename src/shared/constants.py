"""Shared constants across the application."""

# Claim store key layout: <prefix>processing:<pid>
CLAIM_NAMESPACE = "processing:"
CLAIM_OWNER_NAMESPACE = "owner:"
CLAIM_VALUE_SEPARATOR = "|"
DEFAULT_CLAIM_PREFIX = "cj:"
DEFAULT_CLAIM_PATTERN = "cj:processing:*"

# SCAN batch hint for claim enumeration
CLAIM_SCAN_COUNT = 1000

# Keys tried, in order, when resolving the upstream product id from a payload
PID_PAYLOAD_KEYS = ("pid", "productId", "product_id", "id")

# Internal payload key carrying the claim token of a dispatched item
CLAIM_TOKEN_FIELD = "_claim_token"

# Upstream catalog limits
CATALOG_MAX_PAGE_SIZE = 100

# Batch sizes
IMPORT_CHUNK_SIZE = 25
ENRICHMENT_DISPATCH_CHUNK_SIZE = 50
VARIANT_SYNC_BATCH_SIZE = 500

# Error sampling inside a chunk
MAX_ERROR_SAMPLES = 5

# Stored removal reasons are truncated to this length
REMOVED_REASON_MAX_LENGTH = 500

# Import run records
IMPORT_RUN_PREFIX = "cj_catalog:import_run:"
IMPORT_ACTIVE_RUN_PREFIX = "cj_catalog:import_active:"
IMPORT_RUN_TTL_SECONDS = 2 * 24 * 60 * 60

# Metrics
CLAIM_METRIC_NAME = "cj_claims_total"
