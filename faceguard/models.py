"""
Domain model.

Identities, attendance records and the snapshot exchanged during
synchronization, plus the explicit admin context passed into privileged
operations. Every embedding entering the system goes through
``as_embedding``.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np

from .errors import InvalidEmbedding
from .logging_config import get_logger
from .utils.timing import bump_timestamp, day_key, parse_iso, to_iso, utc_now

logger = get_logger(__name__)

Embedding = np.ndarray

UNKNOWN_ENTITY = 'Unknown'

STATUS_ACTIVE = 'Active'
STATUS_CHECKED_OUT = 'Checked Out'

ROLE_SUPER_ADMIN = 'super_admin'
ROLE_BRANCH_ADMIN = 'branch_admin'


def as_embedding(values: Any, dim: int = 0) -> Embedding:
    """
    Validate and convert a value into an embedding.

    Accepts numpy arrays, sequences of numbers, and the index-keyed objects
    a JavaScript Float32Array serializes into ({"0": .., "1": ..}).

    Args:
        values: Raw vector
        dim: Required length (0 = any non-zero length)

    Returns:
        1-D float32 array

    Raises:
        InvalidEmbedding: If the value is not a finite, fixed-length vector
    """
    if isinstance(values, Mapping):
        try:
            values = [values[k] for k in sorted(values, key=int)]
        except (TypeError, ValueError) as e:
            raise InvalidEmbedding(f'embedding object has non-index keys: {e}') from e

    try:
        vector = np.asarray(values, dtype=np.float32)
    except (TypeError, ValueError) as e:
        raise InvalidEmbedding(f'embedding is not numeric: {e}') from e

    if vector.ndim != 1 or vector.size == 0:
        raise InvalidEmbedding(f'embedding must be a non-empty vector, got shape {vector.shape}')
    if dim and vector.size != dim:
        raise InvalidEmbedding(f'embedding has {vector.size} dimensions, expected {dim}')
    if not np.all(np.isfinite(vector)):
        raise InvalidEmbedding('embedding contains NaN or infinite values')

    return vector


@dataclass
class Identity:
    """
    An enrolled person.

    ``duplicate_of`` is a weak reference (a display name), never an
    ownership link. ``deleted`` marks a tombstone left by admin deletion so
    that the deletion wins the last-write-wins merge on every peer.
    """

    id: str
    name: str
    entity: str
    descriptors: List[Embedding]
    created_at: datetime = field(default_factory=utc_now)
    last_updated: int = 0
    duplicate_of: Optional[str] = None
    has_image: bool = False
    reviewed: bool = False
    deleted: bool = False
    updated_by: str = ''

    def __post_init__(self):
        if not self.descriptors:
            raise InvalidEmbedding(f'identity {self.id} has no reference embeddings')
        first = as_embedding(self.descriptors[0])
        self.descriptors = [first] + [
            as_embedding(d, dim=first.size) for d in self.descriptors[1:]
        ]

    @property
    def dim(self) -> int:
        return int(self.descriptors[0].size)

    @property
    def active(self) -> bool:
        return not self.deleted

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'entity': self.entity,
            'descriptors': [d.tolist() for d in self.descriptors],
            'duplicateOf': self.duplicate_of,
            'timestamp': to_iso(self.created_at),
            'lastUpdated': self.last_updated,
            'hasImage': self.has_image,
            'reviewed': self.reviewed,
            'deleted': self.deleted,
            'updatedBy': self.updated_by,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], dim: int = 0) -> 'Identity':
        """
        Build an identity from its wire form.

        Raises:
            ValueError: If a required field is missing or malformed
                (InvalidEmbedding for bad vectors)
        """
        if not isinstance(data, Mapping):
            raise ValueError(f'identity must be an object, got {type(data).__name__}')
        if not data.get('id') or not data.get('name'):
            raise ValueError('identity requires "id" and "name"')

        raw = data.get('descriptors')
        if raw is None and data.get('descriptor') is not None:
            raw = [data['descriptor']]
        if not raw:
            raise InvalidEmbedding(f"identity {data['id']} has no descriptors")

        descriptors = [as_embedding(d, dim=dim) for d in raw]

        created_at = parse_iso(data.get('timestamp')) if data.get('timestamp') else None

        return cls(
            id=str(data['id']),
            name=str(data['name']),
            entity=str(data.get('entity') or data.get('branch') or UNKNOWN_ENTITY),
            descriptors=descriptors,
            created_at=created_at or datetime.fromtimestamp(0, tz=timezone.utc),
            last_updated=int(data.get('lastUpdated') or 0),
            duplicate_of=data.get('duplicateOf') or None,
            has_image=bool(data.get('hasImage', False)),
            reviewed=bool(data.get('reviewed', False)),
            deleted=bool(data.get('deleted', False)),
            updated_by=str(data.get('updatedBy') or ''),
        )


@dataclass
class AttendanceRecord:
    """
    Presence of one name on one calendar day.

    The record is keyed by name inside a per-day log; the day itself is the
    key of the log that holds it.
    """

    name: str
    first_seen: datetime
    last_seen: datetime
    manual_in: Optional[datetime] = None
    manual_out: Optional[datetime] = None
    entity: str = UNKNOWN_ENTITY
    last_updated: int = 0
    updated_by: str = ''

    @property
    def status(self) -> str:
        return STATUS_CHECKED_OUT if self.manual_out is not None else STATUS_ACTIVE

    @property
    def start(self) -> datetime:
        return self.manual_in or self.first_seen

    @property
    def end(self) -> datetime:
        return self.manual_out or self.last_seen

    @property
    def duration_seconds(self) -> float:
        return max(0.0, (self.end - self.start).total_seconds())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'firstSeen': to_iso(self.first_seen),
            'lastSeen': to_iso(self.last_seen),
            'manualIn': to_iso(self.manual_in),
            'manualOut': to_iso(self.manual_out),
            'entity': self.entity,
            'lastUpdated': self.last_updated,
            'updatedBy': self.updated_by,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], name: Optional[str] = None) -> 'AttendanceRecord':
        if not isinstance(data, Mapping):
            raise ValueError(f'attendance record must be an object, got {type(data).__name__}')

        record_name = data.get('name') or name
        if not record_name:
            raise ValueError('attendance record requires "name"')

        first_seen = parse_iso(data.get('firstSeen'))
        last_seen = parse_iso(data.get('lastSeen')) or first_seen
        if first_seen is None:
            raise ValueError(f'attendance record {record_name} has no firstSeen')
        if last_seen < first_seen:
            raise ValueError(f'attendance record {record_name} has lastSeen before firstSeen')

        return cls(
            name=str(record_name),
            first_seen=first_seen,
            last_seen=last_seen,
            manual_in=parse_iso(data.get('manualIn')),
            manual_out=parse_iso(data.get('manualOut')),
            entity=str(data.get('entity') or data.get('branch') or UNKNOWN_ENTITY),
            last_updated=int(data.get('lastUpdated') or 0),
            updated_by=str(data.get('updatedBy') or ''),
        )


@dataclass
class Snapshot:
    """All identities plus one day's attendance log."""

    identities: List[Identity] = field(default_factory=list)
    logs: Dict[str, AttendanceRecord] = field(default_factory=dict)
    date: str = field(default_factory=day_key)

    def active_identities(self) -> List[Identity]:
        return [i for i in self.identities if i.active]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'users': [i.to_dict() for i in self.identities],
            'logs': {name: r.to_dict() for name, r in self.logs.items()},
            'date': self.date,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], dim: int = 0) -> 'Snapshot':
        """
        Decode a snapshot received from a peer.

        Records that fail validation are skipped with a warning so one bad
        record never blocks the rest of a sync.
        """
        if not isinstance(data, Mapping):
            raise ValueError(f'snapshot must be an object, got {type(data).__name__}')

        identities, rejected = decode_identities(data.get('users') or [], dim=dim)
        logs, rejected_logs = decode_logs(data.get('logs') or {})

        if rejected or rejected_logs:
            logger.warning(
                f'⚠️ Skipped {rejected} identities and {rejected_logs} '
                f'attendance records that failed validation'
            )

        return cls(
            identities=identities,
            logs=logs,
            date=str(data.get('date') or day_key()),
        )


def decode_identities(items: Iterable[Any], dim: int = 0) -> Tuple[List[Identity], int]:
    """
    Decode identity dicts, skipping invalid ones.

    Returns:
        Tuple of (identities, number of rejected items)
    """
    identities: List[Identity] = []
    rejected = 0
    for item in items:
        try:
            identities.append(Identity.from_dict(item, dim=dim))
        except (TypeError, ValueError) as e:
            rejected += 1
            logger.debug(f'Rejected identity record: {e}')
    return identities, rejected


def decode_logs(items: Mapping[str, Any]) -> Tuple[Dict[str, AttendanceRecord], int]:
    """
    Decode a per-day log ({name: record}), skipping invalid records.

    Returns:
        Tuple of (records by name, number of rejected items)
    """
    logs: Dict[str, AttendanceRecord] = {}
    rejected = 0
    if not isinstance(items, Mapping):
        return logs, 1
    for name, item in items.items():
        try:
            record = AttendanceRecord.from_dict(item, name=name)
        except (TypeError, ValueError) as e:
            rejected += 1
            logger.debug(f'Rejected attendance record {name!r}: {e}')
            continue
        logs[record.name] = record
    return logs, rejected


@dataclass(frozen=True)
class AdminContext:
    """
    The admin on whose behalf a privileged operation runs.

    A super admin (entity "All") may act on every entity; a branch admin
    only on its own.
    """

    username: str
    role: str = ROLE_BRANCH_ADMIN
    entity: str = 'All'

    @property
    def is_super(self) -> bool:
        return self.role == ROLE_SUPER_ADMIN

    def can_manage(self, entity: str) -> bool:
        return self.is_super or entity == self.entity

    def scope(self, requested: Optional[str] = None) -> Optional[str]:
        """
        Entity filter to apply to a listing.

        Returns None (everything) for a super admin asking for "All".
        """
        if not self.is_super:
            return self.entity
        if requested in (None, '', 'All'):
            return None
        return requested


def touch(identity: Identity, client_id: str, now: Optional[int] = None, **changes) -> Identity:
    """
    Copy of an identity with ``changes`` applied and lastUpdated bumped.
    """
    return replace(
        identity,
        last_updated=bump_timestamp(identity.last_updated, now),
        updated_by=client_id,
        **changes,
    )


def distance(a: Embedding, b: Embedding) -> float:
    """Euclidean distance between two embeddings."""
    if a.shape != b.shape:
        raise InvalidEmbedding(f'cannot compare embeddings of shape {a.shape} and {b.shape}')
    return float(np.linalg.norm(a - b))
