"""Per-service response parsing and normalization."""
