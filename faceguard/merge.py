"""
Last-write-wins merge.

The same per-record rule runs on clients (pull) and on the store (push):
a remote record replaces the local one when the local side lacks the key
or the remote lastUpdated is greater (missing counts as 0). Equal
timestamps fall back to the writer's client id, greater wins; a full tie
keeps the local record. The outcome therefore depends only on the two
records, which makes merging idempotent and order-insensitive per key.
"""

from typing import Dict, Iterable, List, Mapping, Tuple, TypeVar, Union

from .logging_config import get_logger
from .models import AttendanceRecord, Identity

logger = get_logger(__name__)

Record = TypeVar('Record', Identity, AttendanceRecord)


def remote_wins(local: Union[Identity, AttendanceRecord], remote: Union[Identity, AttendanceRecord]) -> bool:
    """Whether ``remote`` should replace ``local`` for the same key."""
    local_ts = local.last_updated or 0
    remote_ts = remote.last_updated or 0
    if remote_ts != local_ts:
        return remote_ts > local_ts
    return (remote.updated_by or '') > (local.updated_by or '')


def _merge_keyed(
    local: Mapping[str, Record],
    remote: Iterable[Tuple[str, Record]]
) -> Tuple[Dict[str, Record], int]:
    merged: Dict[str, Record] = dict(local)
    adopted = 0
    for key, record in remote:
        current = merged.get(key)
        if current is None or remote_wins(current, record):
            merged[key] = record
            adopted += 1
    return merged, adopted


def merge_identities(
    local: Iterable[Identity],
    remote: Iterable[Identity]
) -> Tuple[List[Identity], int]:
    """
    Merge two identity lists by id.

    Local order is kept; identities only known remotely are appended.

    Returns:
        Tuple of (merged list, number of remote records adopted)
    """
    merged, adopted = _merge_keyed(
        {i.id: i for i in local},
        ((i.id, i) for i in remote),
    )
    return list(merged.values()), adopted


def merge_logs(
    local: Mapping[str, AttendanceRecord],
    remote: Mapping[str, AttendanceRecord]
) -> Tuple[Dict[str, AttendanceRecord], int]:
    """
    Merge two logs of the same day by name.

    Returns:
        Tuple of (merged log, number of remote records adopted)
    """
    return _merge_keyed(local, remote.items())


def snapshot_dim(dim: int, *groups: Iterable[Identity]) -> int:
    """
    Embedding length a snapshot is held to.

    The configured ``dim`` when set, otherwise the length of the first
    identity found in ``groups`` (0 while nothing is enrolled).
    """
    if dim:
        return dim
    for group in groups:
        for identity in group:
            return identity.dim
    return 0


def drop_mismatched(identities: Iterable[Identity], dim: int) -> Tuple[List[Identity], int]:
    """
    Keep only identities whose embeddings have length ``dim``.

    Returns:
        Tuple of (kept identities, number dropped)
    """
    identities = list(identities)
    if not dim:
        return identities, 0
    kept = [i for i in identities if i.dim == dim]
    dropped = len(identities) - len(kept)
    if dropped:
        skipped = ', '.join(f'{i.id} ({i.dim}-d)' for i in identities if i.dim != dim)
        logger.warning(f'⚠️ Ignored {dropped} identities not matching {dim}-d embeddings: {skipped}')
    return kept, dropped
