"""
Attendance state machine.

Turns match events into one record per name per calendar day:

    absent -> present-active -> present-closed

The first match event of the day creates the record, whatever the intent.
Every later event moves lastSeen forward; check-in stamps manualIn and
check-out stamps manualOut. Closing only changes the displayed status,
the record keeps accepting events.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from ..logging_config import get_logger
from ..models import (
    STATUS_CHECKED_OUT,
    UNKNOWN_ENTITY,
    AttendanceRecord,
    Identity,
)
from ..utils.timing import bump_timestamp, format_duration, utc_now

logger = get_logger(__name__)

INTENT_AUTO = 'auto'
INTENT_CHECK_IN = 'check-in'
INTENT_CHECK_OUT = 'check-out'

INTENTS = (INTENT_AUTO, INTENT_CHECK_IN, INTENT_CHECK_OUT)


def _entity_for(name: str, identities: Iterable[Identity]) -> str:
    for identity in identities:
        if identity.active and identity.name == name:
            return identity.entity or UNKNOWN_ENTITY
    return UNKNOWN_ENTITY


def mark_attendance(
    logs: Dict[str, AttendanceRecord],
    name: str,
    intent: str = INTENT_AUTO,
    now: Optional[datetime] = None,
    identities: Iterable[Identity] = (),
    client_id: str = '',
    stamp: Optional[int] = None
) -> AttendanceRecord:
    """
    Apply one match event to a day's log.

    Args:
        logs: The day's records by name (updated in place)
        name: Matched identity name
        intent: 'auto', 'check-in' or 'check-out'
        now: Event time (defaults to the clock)
        identities: Snapshot used to copy the group label on creation
        client_id: Writer id stamped on the record
        stamp: lastUpdated candidate in epoch ms (defaults to the clock)

    Returns:
        The updated record

    Raises:
        ValueError: If the intent is not recognised
    """
    if intent not in INTENTS:
        raise ValueError(f'unknown attendance intent {intent!r}, expected one of {INTENTS}')

    if now is None:
        now = utc_now()

    record = logs.get(name)

    if record is None:
        record = AttendanceRecord(
            name=name,
            first_seen=now,
            last_seen=now,
            entity=_entity_for(name, identities),
        )
        logger.info(f'✅ {name} present (first seen {now.isoformat()})')
    else:
        # A skewed clock on another device must not move lastSeen backwards
        record = replace(record, last_seen=max(record.last_seen, now))
        if not record.entity or record.entity == UNKNOWN_ENTITY:
            record = replace(record, entity=_entity_for(name, identities))

    if intent == INTENT_CHECK_IN:
        record = replace(record, manual_in=now)
        logger.info(f'✅ {name} checked in')
    elif intent == INTENT_CHECK_OUT:
        record = replace(record, manual_out=now)
        logger.info(f'✅ {name} checked out')

    record = replace(
        record,
        last_updated=bump_timestamp(record.last_updated, stamp),
        updated_by=client_id,
    )
    logs[name] = record
    return record


@dataclass(frozen=True)
class ReportRow:
    """One line of the daily report."""

    name: str
    entity: str
    login_time: datetime
    logout_time: datetime
    duration_seconds: float
    duration: str
    status: str

    def to_dict(self) -> Dict[str, str]:
        return {
            'name': self.name,
            'entity': self.entity,
            'loginTime': self.login_time.isoformat(),
            'logoutTime': self.logout_time.isoformat(),
            'duration': self.duration,
            'status': self.status,
        }


def report_row(record: AttendanceRecord) -> ReportRow:
    """
    Derived view of a record.

    duration = (manualOut or lastSeen) - (manualIn or firstSeen), never
    negative.
    """
    seconds = record.duration_seconds
    return ReportRow(
        name=record.name,
        entity=record.entity or UNKNOWN_ENTITY,
        login_time=record.start,
        logout_time=record.end,
        duration_seconds=seconds,
        duration=format_duration(seconds),
        status=record.status,
    )


def daily_report(
    logs: Dict[str, AttendanceRecord],
    entity: Optional[str] = None
) -> List[ReportRow]:
    """
    Report rows for a day's log, earliest login first.

    Args:
        logs: The day's records by name
        entity: Only include this group label (None = all)
    """
    rows = [
        report_row(record)
        for record in logs.values()
        if entity is None or record.entity == entity
    ]
    rows.sort(key=lambda r: (r.login_time, r.name))
    return rows


def summarize(
    identities: Iterable[Identity],
    rows: Iterable[ReportRow],
    entity: Optional[str] = None
) -> Dict[str, int]:
    """
    Dashboard counters.

    Returns:
        Dict with registered, present, checked_out and active counts
    """
    registered = sum(
        1 for i in identities
        if i.active and (entity is None or i.entity == entity)
    )
    scoped = [r for r in rows if entity is None or r.entity == entity]
    checked_out = sum(1 for r in scoped if r.status == STATUS_CHECKED_OUT)

    return {
        'registered': registered,
        'present': len(scoped),
        'checked_out': checked_out,
        'active': len(scoped) - checked_out,
    }
