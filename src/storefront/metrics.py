from prometheus_client import Counter, Histogram

# --- Metrics ---
PAGE_REQUESTS = Counter('storefront_page_requests_total', 'Rendered page requests', ['page'])
TARGET_REQUESTS = Counter('storefront_target_requests_total', 'Target delivery calls', ['outcome'])
TARGET_LATENCY = Histogram('storefront_target_latency_seconds', 'Target delivery latency in seconds', buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0])
ECID_MINTS = Counter('storefront_ecid_mint_total', 'ECID minting attempts via demdex', ['outcome'])
A4T_HITS = Counter('storefront_a4t_hits_total', 'A4T display hits', ['outcome'])
