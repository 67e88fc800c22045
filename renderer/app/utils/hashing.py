"""
Content hashing for rendered documents.

The hash is returned to callers alongside the rendered binary so that
downstream consumers can detect changes between renders without
comparing the bytes themselves.

IMPORTANT DESIGN RULE:
- This module hashes bytes, and bytes only.
"""

import hashlib
from typing import Union


def compute_content_hash(content: Union[bytes, bytearray]) -> str:
    """
    Compute a human-readable SHA-256 hash of rendered output.

    Returns:
        A hash string with an explicit algorithm prefix.
        Example: ``SHA-256:3b7c0e4c...``
    """
    if not isinstance(content, (bytes, bytearray)):
        raise TypeError(
            "compute_content_hash expects bytes, "
            f"got {type(content).__name__}"
        )

    digest = hashlib.sha256(content).hexdigest()
    return f"SHA-256:{digest}"
