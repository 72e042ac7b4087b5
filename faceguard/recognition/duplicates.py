"""
Duplicate registration detection.

Flags probable re-registrations of the same person, either while a new
identity is being enrolled or retroactively over the whole snapshot.
A flag is only a suspicion: enrollment always proceeds and an admin
decides what to do with it.
"""

import math
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

import numpy as np

from ..errors import InvalidEmbedding
from ..logging_config import get_logger
from ..models import Embedding, Identity, touch
from .matching import DescriptorMatcher

logger = get_logger(__name__)

ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class DuplicateCheck:
    """Result of the enrollment-time check."""

    duplicate_of: Optional[str] = None
    distance: float = math.inf

    @property
    def flagged(self) -> bool:
        return self.duplicate_of is not None


@dataclass
class DuplicateScan:
    """
    Result of a retroactive scan.

    ``identities`` is the full list in its original order with flagged
    entries replaced, ready to be committed in one write.
    """

    identities: List[Identity] = field(default_factory=list)
    flagged: List[Identity] = field(default_factory=list)

    @property
    def found(self) -> int:
        return len(self.flagged)


def _same_name(a: str, b: str) -> bool:
    return a.strip().lower() == b.strip().lower()


def check_duplicate(
    embeddings: Iterable[Embedding],
    name: str,
    identities: Iterable[Identity],
    threshold: float = 0.4
) -> DuplicateCheck:
    """
    Check a candidate's captured poses against enrolled identities.

    Args:
        embeddings: Reference embeddings of the candidate
        name: Name the candidate is being registered under
        identities: Current snapshot
        threshold: Same-person distance (stricter than attendance matching)

    Returns:
        DuplicateCheck naming the closest other-named identity, if any
    """
    matcher = DescriptorMatcher(identities, threshold=threshold)
    if not len(matcher):
        return DuplicateCheck()

    best = None
    for embedding in embeddings:
        result = matcher.best_match(embedding)
        if result.is_unknown or _same_name(result.label, name):
            continue
        if best is None or result.distance < best.distance:
            best = result

    if best is None:
        return DuplicateCheck()

    logger.warning(
        f'⚠️ Possible duplicate: "{name}" looks like "{best.label}" '
        f'(distance {best.distance:.3f})'
    )
    return DuplicateCheck(duplicate_of=best.label, distance=best.distance)


def identity_distance(a: Identity, b: Identity) -> float:
    """
    Smallest distance between any pose of ``a`` and any pose of ``b``.

    Raises:
        InvalidEmbedding: If the identities have different dimensionality
    """
    if a.dim != b.dim:
        raise InvalidEmbedding(f'{a.id} ({a.dim}-d) and {b.id} ({b.dim}-d) are not comparable')
    diffs = np.stack(a.descriptors)[:, None, :] - np.stack(b.descriptors)[None, :, :]
    return float(np.min(np.linalg.norm(diffs, axis=2)))


def scan_for_duplicates(
    identities: Iterable[Identity],
    threshold: float = 0.45,
    client_id: str = '',
    yield_every: int = 200,
    on_progress: Optional[ProgressCallback] = None,
    now: Optional[int] = None
) -> DuplicateScan:
    """
    Retroactively flag duplicates across the whole snapshot.

    Identities are ordered by creation time (earliest is presumed to be the
    original). Each identity that is neither flagged nor already kept by an
    admin is compared with every earlier one in order and flagged on the
    first same-person match; the closest of several candidates is not
    searched for.

    Args:
        identities: Snapshot to scan (tombstones are carried through)
        threshold: Same-person distance
        client_id: Writer id stamped on flagged identities
        yield_every: Comparisons between cooperative yields
        on_progress: Called with (scanned, total) at every yield
        now: Timestamp for lastUpdated (defaults to the clock)

    Returns:
        DuplicateScan with the updated list and the newly flagged identities
    """
    original = list(identities)
    ordered = sorted(
        (i for i in original if i.active),
        key=lambda i: i.created_at,
    )
    total = len(ordered)

    updated = {}
    flagged: List[Identity] = []
    comparisons = 0

    for idx in range(total):
        current = ordered[idx]
        if current.duplicate_of or current.reviewed:
            continue

        for prev in ordered[:idx]:
            comparisons += 1
            if yield_every and comparisons % yield_every == 0:
                time.sleep(0)
                if on_progress:
                    on_progress(idx + 1, total)

            try:
                dist = identity_distance(current, prev)
            except InvalidEmbedding as e:
                logger.debug(f'Skipping comparison: {e}')
                continue

            if dist < threshold:
                marked = touch(current, client_id, now, duplicate_of=prev.name)
                ordered[idx] = marked
                updated[marked.id] = marked
                flagged.append(marked)
                logger.info(f'Flagged {current.name} ({current.id}) as duplicate of {prev.name}')
                break

    if on_progress:
        on_progress(total, total)

    return DuplicateScan(
        identities=[updated.get(i.id, i) for i in original],
        flagged=flagged,
    )
