"""Small HTTP-related constants shared across burstgate.

This module is intentionally tiny to avoid circular imports and drift.
"""

from __future__ import annotations

# Retryable status codes shared by remote error mapping and core retry.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})

# "No data" rather than failure: the executor yields an empty result.
NOT_FOUND_STATUS_CODE = 404
