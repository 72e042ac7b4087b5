"""
Embedding matching module.

Matches face embeddings against enrolled identities using Euclidean
distance. An identity matches if any of its reference poses is close.
"""

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional

import numpy as np

from ..errors import InvalidEmbedding
from ..models import Embedding, Identity, as_embedding

UNKNOWN_LABEL = 'unknown'

DEFAULT_CONFIDENCE_SCALE = 0.7


def distance_to_confidence(distance: float, scale: float = DEFAULT_CONFIDENCE_SCALE) -> float:
    """
    Map a distance to a confidence in [0, 100].

    Strictly decreasing in distance up to ``scale`` (0%), independent of
    any match threshold.
    """
    if not math.isfinite(distance) or scale <= 0:
        return 0.0
    return max(0.0, (1.0 - distance / scale) * 100.0)


def match_to_percentage(distance: float, scale: float = DEFAULT_CONFIDENCE_SCALE) -> str:
    """Confidence as display text, e.g. "64.3%"."""
    return f'{distance_to_confidence(distance, scale):.1f}%'


def check_match_threshold(
    distance: float,
    min_score: float = 20.0,
    scale: float = DEFAULT_CONFIDENCE_SCALE
) -> bool:
    """
    Attendance gate on top of the matcher.

    Args:
        distance: Distance of a known match
        min_score: Minimum confidence in percent
        scale: Confidence scale

    Returns:
        True if the confidence reaches ``min_score``
    """
    if distance > scale:
        return False
    return distance_to_confidence(distance, scale) >= min_score


@dataclass(frozen=True)
class MatchResult:
    """
    Outcome of a lookup.

    ``identity`` is None for the unknown sentinel; ``distance`` is always
    the raw best distance found (inf when nothing is enrolled).
    """

    label: str
    distance: float
    identity: Optional[Identity] = None
    confidence: float = 0.0

    @property
    def is_unknown(self) -> bool:
        return self.identity is None


class DescriptorMatcher:
    """
    Nearest-identity lookup over a fixed snapshot of identities.

    Built once per snapshot (O(identities x poses)); holds nothing else
    between calls. Tombstoned identities are ignored.
    """

    def __init__(
        self,
        identities: Iterable[Identity],
        threshold: float = 0.7,
        confidence_scale: float = DEFAULT_CONFIDENCE_SCALE,
        dim: int = 0
    ):
        """
        Build the matcher.

        Args:
            identities: Identities to match against
            threshold: Distances strictly below this are matches
            confidence_scale: Distance mapped to 0% confidence
            dim: Required embedding length (0 = take it from the snapshot)

        Raises:
            InvalidEmbedding: If identities disagree on dimensionality
        """
        self.threshold = threshold
        self.confidence_scale = confidence_scale
        self.identities: List[Identity] = [i for i in identities if i.active]

        self.dim = dim or (self.identities[0].dim if self.identities else 0)
        for identity in self.identities:
            if identity.dim != self.dim:
                raise InvalidEmbedding(
                    f'identity {identity.id} has {identity.dim}-d embeddings, '
                    f'matcher expects {self.dim}'
                )

        self._poses: List[np.ndarray] = [np.stack(i.descriptors) for i in self.identities]

    def __len__(self) -> int:
        return len(self.identities)

    def distances(self, probe: Embedding) -> List[float]:
        """
        Best distance from the probe to each identity (minimum over poses).

        Returned in the same order as ``self.identities``.
        """
        probe = as_embedding(probe, dim=self.dim)
        return [
            float(np.min(np.linalg.norm(poses - probe, axis=1)))
            for poses in self._poses
        ]

    def best_match(self, probe: Embedding) -> MatchResult:
        """
        Match a probe embedding.

        Args:
            probe: Face embedding to match

        Returns:
            MatchResult for the closest identity, or the unknown sentinel
            if the closest distance is not below the threshold
        """
        if not self.identities:
            as_embedding(probe, dim=self.dim)
            return MatchResult(label=UNKNOWN_LABEL, distance=math.inf)

        distances = self.distances(probe)

        best_idx = int(np.argmin(distances))
        best_distance = distances[best_idx]

        if best_distance < self.threshold:
            identity = self.identities[best_idx]
            return MatchResult(
                label=identity.name,
                distance=best_distance,
                identity=identity,
                confidence=distance_to_confidence(best_distance, self.confidence_scale),
            )

        # Unknown faces display as 0% whatever their distance
        return MatchResult(label=UNKNOWN_LABEL, distance=best_distance)

    def with_threshold(self, threshold: float) -> 'DescriptorMatcher':
        """Matcher over the same snapshot with a different threshold."""
        return DescriptorMatcher(
            self.identities,
            threshold=threshold,
            confidence_scale=self.confidence_scale,
            dim=self.dim,
        )
