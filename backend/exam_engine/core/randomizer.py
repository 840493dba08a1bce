"""
Unbiased question selection and ordering.

Each call draws from a fresh OS-backed random source; no seed is kept on the
session. The ``question_order`` stored on the session row is the durable
record of the draw.
"""
import random
import secrets
from typing import List, Optional, Sequence, TypeVar

T = TypeVar("T")


def _rng() -> random.Random:
    return secrets.SystemRandom()


def shuffle(items: Sequence[T], rng: Optional[random.Random] = None) -> List[T]:
    """
    Return a uniformly random permutation of ``items``.

    Fisher-Yates over a copy; the input is left untouched.

    Args:
        items: Items to permute
        rng: Random source (defaults to a new ``secrets.SystemRandom``)

    Returns:
        New list containing the same items in random order
    """
    rng = rng or _rng()
    result = list(items)
    for i in range(len(result) - 1, 0, -1):
        j = rng.randrange(i + 1)
        result[i], result[j] = result[j], result[i]
    return result


def select_subset(
    items: Sequence[T], n: int, rng: Optional[random.Random] = None
) -> List[T]:
    """
    Draw ``n`` distinct items with every n-subset equally likely.

    When ``n`` covers the whole input, every item is returned in its
    original order. Otherwise a partial Fisher-Yates pass fixes the first
    ``n`` positions, so the result size is always exactly ``n``. The
    returned subset keeps the relative order of ``items``; callers shuffle
    separately when the exam asks for it.

    Args:
        items: Candidate items (assumed unique)
        n: Number of items to draw
        rng: Random source (defaults to a new ``secrets.SystemRandom``)

    Returns:
        List of exactly ``min(n, len(items))`` items

    Raises:
        ValueError: If n is negative
    """
    if n < 0:
        raise ValueError(f"subset size must be non-negative, got {n}")
    if n >= len(items):
        return list(items)

    rng = rng or _rng()
    pool = list(range(len(items)))
    for i in range(n):
        j = rng.randrange(i, len(pool))
        pool[i], pool[j] = pool[j], pool[i]
    chosen = sorted(pool[:n])
    return [items[k] for k in chosen]
