"""
Diversity Promotion
Re-orders the top of a ranking so the same top-level category does not appear back to back.
"""

import logging
from typing import List, Optional

from ..models import FusedCandidate

logger = logging.getLogger(__name__)


def promote_diversity(
    candidates: List[FusedCandidate], top_k: Optional[int] = None
) -> List[FusedCandidate]:
    """
    Stable re-insertion of the top-K to avoid consecutive duplicate categories.

    At each position the earliest remaining candidate whose category differs
    from the previous one is promoted; skipped candidates keep their relative
    order. When every remaining candidate shares the previous category the
    repeat is unavoidable and order is kept. No candidate is dropped, and
    candidates past top_k are untouched.

    Args:
        candidates: Candidates sorted by score
        top_k: Size of the re-ordered window (default: all)

    Returns:
        New list with the same candidates
    """
    window = len(candidates) if top_k is None else max(0, min(top_k, len(candidates)))
    remaining = list(candidates[:window])
    tail = list(candidates[window:])

    reordered: List[FusedCandidate] = []
    moves = 0

    while remaining:
        previous = reordered[-1].category if reordered else None
        pick = 0

        if previous is not None:
            for i, candidate in enumerate(remaining):
                if candidate.category != previous:
                    pick = i
                    break

        if pick:
            moves += 1
        reordered.append(remaining.pop(pick))

    if moves:
        logger.debug(f"Diversity promotion moved {moves} candidates within top {window}")

    return reordered + tail
