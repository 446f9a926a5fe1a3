"""
Variant allocation.

Variants own contiguous half-open ranges of [0, 100) in list order:

    control:50, treatment:50  ->  control=[0, 50)  treatment=[50, 100)

Reordering variants or editing weights moves the boundaries, which can
move a bucket into a different variant.
"""

from typing import Sequence

from .bucketing import BUCKET_COUNT
from .interfaces import Variant


def variant_ranges(variants: Sequence[Variant]) -> list[tuple[str, int, int]]:
    """Return (key, start, end) for each variant, end exclusive."""
    ranges = []
    start = 0
    for variant in variants:
        end = start + variant.weight
        ranges.append((variant.key, start, end))
        start = end
    return ranges


def allocate(variants: Sequence[Variant], bucket: int) -> str:
    """
    Select the variant whose range contains bucket.

    Raises ValueError if bucket is out of range or the weights do not
    cover it. Committed flags always sum to 100, so the second case
    only happens with unvalidated input.
    """
    if not 0 <= bucket < BUCKET_COUNT:
        raise ValueError(f"bucket must be in [0, {BUCKET_COUNT}), got {bucket}")

    for key, start, end in variant_ranges(variants):
        if start <= bucket < end:
            return key

    raise ValueError(f"variant weights do not cover bucket {bucket}")


def distribute_weights(count: int) -> list[int]:
    """
    Split 100 evenly across count variants.

    The remainder goes to the first variant: 3 -> [34, 33, 33].
    """
    if count <= 0:
        return []
    base = BUCKET_COUNT // count
    remainder = BUCKET_COUNT - base * count
    return [base + remainder if i == 0 else base for i in range(count)]
