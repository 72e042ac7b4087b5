"""
Enrollment module.

Collects one reference embedding per required head pose and turns a
completed capture into a new identity.
"""

import re
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..errors import InvalidEmbedding
from ..logging_config import get_logger
from ..models import UNKNOWN_ENTITY, Embedding, Identity, as_embedding
from ..utils.timing import bump_timestamp, utc_now
from .detections import (
    POSE_DOWN,
    POSE_FRONT,
    POSE_LEFT,
    POSE_RIGHT,
    POSE_UP,
    Detection,
    classify_pose,
    estimate_head_pose,
)
from .duplicates import DuplicateCheck, check_duplicate

logger = get_logger(__name__)

DEFAULT_POSES: Tuple[str, ...] = (POSE_FRONT, POSE_LEFT, POSE_RIGHT, POSE_UP, POSE_DOWN)


def generate_unique_id(name: str, identities: Iterable[Identity]) -> str:
    """
    Build an id from a display name and a disambiguating serial.

    "Asha Rao" with one existing "asha rao" becomes "Asha_Rao_002".
    Tombstoned identities keep their ids, so they count as taken.
    """
    identities = list(identities)
    clean_name = re.sub(r'\s+', '_', name.strip())
    key = name.strip().lower()

    same_name = sum(1 for i in identities if i.name.strip().lower() == key)
    taken = {i.id for i in identities}

    serial = same_name + 1
    while f'{clean_name}_{serial:03d}' in taken:
        serial += 1
    return f'{clean_name}_{serial:03d}'


class EnrollmentSession:
    """
    Multi-angle capture for one candidate.

    Poses are captured in the order of ``required_poses``; a detection is
    accepted only when its estimated pose is the next one required.
    """

    def __init__(
        self,
        name: str,
        entity: str = UNKNOWN_ENTITY,
        required_poses: Sequence[str] = DEFAULT_POSES,
        min_score: float = 0.6,
        dim: int = 0
    ):
        if not name or not name.strip():
            raise ValueError('a name is required for enrollment')
        if not required_poses:
            raise ValueError('at least one pose is required')

        self.name = name.strip()
        self.entity = entity or UNKNOWN_ENTITY
        self.required_poses = tuple(required_poses)
        self.min_score = min_score
        self.dim = dim
        self.captured: Dict[str, Embedding] = {}

    @property
    def next_pose(self) -> Optional[str]:
        for pose in self.required_poses:
            if pose not in self.captured:
                return pose
        return None

    @property
    def complete(self) -> bool:
        return self.next_pose is None

    @property
    def progress(self) -> Tuple[int, int]:
        return len(self.captured), len(self.required_poses)

    def offer(self, detection: Optional[Detection]) -> Optional[str]:
        """
        Offer a detection for the next required pose.

        Returns:
            The pose captured, or None if the detection was not usable
        """
        pose = self.next_pose
        if pose is None or detection is None:
            return None
        if detection.score <= self.min_score or detection.landmarks is None:
            return None

        try:
            observed = classify_pose(estimate_head_pose(detection.landmarks))
        except ValueError as e:
            logger.debug(f'Pose estimation failed: {e}')
            return None

        if observed != pose:
            return None

        return self.add_embedding(detection.embedding)

    def add_embedding(self, embedding: Embedding) -> Optional[str]:
        """
        Record an embedding for the next required pose without pose checks.

        Used for uploaded photos, where no live pose guidance exists.
        """
        pose = self.next_pose
        if pose is None:
            return None

        dim = self.dim or (next(iter(self.captured.values())).size if self.captured else 0)
        self.captured[pose] = as_embedding(embedding, dim=dim)

        done, total = self.progress
        logger.info(f'📸 Captured {pose} pose for {self.name} ({done}/{total})')
        return pose

    def embeddings(self) -> List[Embedding]:
        """
        Captured embeddings in pose order.

        Raises:
            ValueError: If capture is not complete
        """
        if not self.complete:
            raise ValueError(f'enrollment incomplete, next pose is {self.next_pose}')
        return [self.captured[p] for p in self.required_poses]


def register_identity(
    name: str,
    entity: str,
    embeddings: Sequence[Embedding],
    identities: Iterable[Identity],
    client_id: str = '',
    duplicate_threshold: float = 0.4,
    has_image: bool = False,
    now: Optional[datetime] = None,
    stamp: Optional[int] = None
) -> Tuple[Identity, DuplicateCheck]:
    """
    Build a new identity from a completed capture.

    The duplicate check only annotates the identity; it never prevents
    the registration.

    Args:
        name: Display name
        entity: Group label
        embeddings: Reference embeddings (one per pose)
        identities: Current snapshot
        client_id: Writer id
        duplicate_threshold: Same-person distance
        has_image: Whether a profile asset accompanies the identity
        now: Creation time
        stamp: lastUpdated candidate in epoch ms

    Returns:
        Tuple of (new identity, duplicate check result)

    Raises:
        ValueError: If the name is empty or no embeddings are given
        InvalidEmbedding: If embeddings do not match the snapshot's length
    """
    if not name or not name.strip():
        raise ValueError('a name is required for registration')
    if not embeddings:
        raise InvalidEmbedding('at least one reference embedding is required')

    identities = list(identities)
    active = [i for i in identities if i.active]
    dim = active[0].dim if active else 0
    vectors = [as_embedding(e, dim=dim) for e in embeddings]

    check = check_duplicate(vectors, name, active, threshold=duplicate_threshold)

    identity = Identity(
        id=generate_unique_id(name, identities),
        name=name.strip(),
        entity=entity or UNKNOWN_ENTITY,
        descriptors=vectors,
        created_at=now or utc_now(),
        last_updated=bump_timestamp(0, stamp),
        duplicate_of=check.duplicate_of,
        has_image=has_image,
        updated_by=client_id,
    )

    logger.info(f'✅ Registered {identity.name} as {identity.id} ({len(vectors)} poses)')
    return identity, check
