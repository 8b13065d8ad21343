"""Fingerprinting utilities for cache entries.

Canonical keys are JSON strings; storage backends address entries by their
SHA256 digest so keys of any length map to safe, fixed-width names.
"""

import hashlib


def compute_fingerprint(key: str) -> str:
    """
    Compute stable fingerprint of a canonical cache key.

    Args:
        key: Canonical request key

    Returns:
        SHA256 hex digest (64 chars)

    Example:
        >>> len(compute_fingerprint('{"gender":"female"}'))
        64
    """
    return hashlib.sha256(key.encode("utf-8")).hexdigest()
