"""
Content hashing for drift detection and checkpoint matching.

Both the ``meta.md5`` and ``metacheckpoints.md5`` columns hold the MD5 hex
digest of the exact text that was recorded. The same function is used to
hash a whole migration (drift detection) and a single sub-statement
(checkpoint skip key), so a value computed here can always be compared
against a stored one.

Examples:
    >>> len(compute_checksum("CREATE TABLE t (id INT);"))
    32

Tags:
    hashing, checksum, drift-detection, ratchet
"""

import hashlib


def compute_checksum(content: str) -> str:
    """Return the MD5 hex digest of ``content`` encoded as UTF-8."""
    return hashlib.md5(content.encode("utf-8")).hexdigest()


def checksum_matches(content: str, checksum: str) -> bool:
    """Whether ``checksum`` is the digest of ``content`` (case-insensitive)."""
    return compute_checksum(content) == checksum.lower()


__all__ = [
    "compute_checksum",
    "checksum_matches",
]
