"""Small HTTP-related constants shared across Switchyard.

This module is intentionally tiny to avoid circular imports and drift.
"""

from __future__ import annotations

# Worth retrying against the same provider with backoff.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})

# Status codes that mean "this provider is not serving right now".
CONNECTION_STATUS_CODES: frozenset[int] = frozenset({503})

# Availability probes must stay cheap.
PROBE_TIMEOUT_S: float = 3.0

# Non-streaming generation default; streaming is unbounded unless the caller says otherwise.
GENERATE_TIMEOUT_S: float = 120.0
