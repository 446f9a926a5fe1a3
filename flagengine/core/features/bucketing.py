"""
Deterministic bucketing.

A context lands in one of 100 buckets per flag. The flag key is mixed
into the hash input, so the same context gets independent buckets for
different flags. There is no process-local state: every instance of the
service computes the same bucket.
"""

import hashlib

BUCKET_COUNT = 100


def bucket(flag_key: str, context_id: str) -> int:
    """
    Map (flag_key, context_id) to an integer in [0, 100).

    Uses consistent hashing so a context always gets the same bucket
    for the same flag.
    """
    hash_input = f"{flag_key}:{context_id}".encode("utf-8")
    digest = hashlib.md5(hash_input, usedforsecurity=False).digest()
    hash_value = int.from_bytes(digest[:8], "big")
    return hash_value % BUCKET_COUNT
