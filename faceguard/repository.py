"""
Store-side snapshot repository.

Keeps every identity and one attendance log per day in a single JSON
file, plus uploaded assets on disk:

    {"users": [...], "logs": {"2026-10-18": {name: record}}, "lastSync": ms}

Incoming snapshots go through the same per-record merge as on clients.
One lock serializes every read-modify-write of the file.
"""

import json
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from werkzeug.utils import secure_filename

from .logging_config import get_logger
from .merge import drop_mismatched, merge_identities, merge_logs, snapshot_dim
from .models import Snapshot, decode_identities, decode_logs
from .storage import ASSET_CAPTURE, ASSET_KINDS, ASSET_PROFILE
from .utils.timing import day_key, now_ms, parse_iso

logger = get_logger(__name__)


def _empty() -> Dict[str, Any]:
    return {'users': [], 'logs': {}, 'lastSync': None}


class StoreRepository:
    """JSON-file snapshot store with asset directory."""

    def __init__(self, data_file: str, uploads_dir: str, dim: int = 0):
        self.data_file = Path(data_file)
        self.uploads_dir = Path(uploads_dir)
        self.dim = dim
        self._lock = threading.RLock()

        self.uploads_dir.mkdir(parents=True, exist_ok=True)
        if self.data_file.parent:
            self.data_file.parent.mkdir(parents=True, exist_ok=True)
        if not self.data_file.exists():
            self._write(_empty())

    def _read(self) -> Dict[str, Any]:
        try:
            data = json.loads(self.data_file.read_text(encoding='utf-8'))
        except FileNotFoundError:
            return _empty()
        except ValueError as e:
            aside = self.data_file.with_name(f'{self.data_file.name}.corrupt-{int(time.time())}')
            os.replace(self.data_file, aside)
            logger.error(f'❌ Store file unreadable ({e}), moved to {aside} and starting empty')
            return _empty()

        if not isinstance(data, dict):
            return _empty()

        data.setdefault('users', [])
        data['logs'] = self._by_day(data.get('logs') or {})
        return data

    @staticmethod
    def _by_day(logs: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
        """
        Normalise logs into {date: {name: record}}.

        Older store files kept one flat {name: record} map; such records are
        filed under the day of their firstSeen.
        """
        by_day: Dict[str, Dict[str, Any]] = {}
        for key, value in logs.items():
            if isinstance(value, dict) and 'firstSeen' in value:
                try:
                    date = day_key(parse_iso(value['firstSeen']))
                except ValueError:
                    continue
                by_day.setdefault(date, {})[key] = value
            elif isinstance(value, dict):
                by_day.setdefault(key, {}).update(value)
        return by_day

    def _write(self, data: Dict[str, Any]) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=self.data_file.parent or '.', prefix='.db-')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.data_file)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def snapshot(self, date: Optional[str] = None) -> Snapshot:
        """Current identities and the log for ``date`` (default today)."""
        date = date or day_key()
        with self._lock:
            data = self._read()
        identities, _ = decode_identities(data['users'], dim=self.dim)
        logs, _ = decode_logs(data['logs'].get(date, {}))
        return Snapshot(identities=identities, logs=logs, date=date)

    def last_sync(self) -> Optional[int]:
        with self._lock:
            return self._read().get('lastSync')

    def merge(self, incoming: Snapshot) -> int:
        """
        Merge a client snapshot into the store.

        Returns:
            Store timestamp of the merge (epoch ms)
        """
        with self._lock:
            data = self._read()

            current, _ = decode_identities(data['users'], dim=self.dim)
            dim = snapshot_dim(self.dim, current, incoming.identities)
            accepted, _ = drop_mismatched(incoming.identities, dim)
            identities, adopted_identities = merge_identities(current, accepted)

            day_logs, _ = decode_logs(data['logs'].get(incoming.date, {}))
            logs, adopted_records = merge_logs(day_logs, incoming.logs)

            now = now_ms()
            data['users'] = [i.to_dict() for i in identities]
            data['logs'][incoming.date] = {name: r.to_dict() for name, r in logs.items()}
            data['lastSync'] = now
            self._write(data)

        logger.info(
            f'Merged snapshot for {incoming.date}: {adopted_identities} identities, '
            f'{adopted_records} records adopted'
        )
        return now

    def save_asset(
        self,
        identity_id: str,
        data: bytes,
        kind: str = ASSET_PROFILE,
        date: Optional[str] = None
    ) -> str:
        """
        Store an asset; the same identity, kind and day always map to the
        same path, so re-uploads overwrite.

        Returns:
            URL path of the asset under /uploads

        Raises:
            ValueError: For an unusable id or unknown kind
        """
        if kind not in ASSET_KINDS:
            raise ValueError(f'unknown asset kind {kind!r}')
        filename = secure_filename(f'{identity_id}.jpg')
        if not filename or filename == 'jpg':
            raise ValueError(f'invalid identity id {identity_id!r}')

        if kind == ASSET_CAPTURE:
            relative = Path('captures') / (date or day_key()) / filename
        else:
            relative = Path(filename)

        target = self.uploads_dir / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

        logger.info(f'✅ Saved {kind} asset for {identity_id}')
        return f'/uploads/{relative.as_posix()}'

    def purge_entity_logs(self, entities: Iterable[str]) -> int:
        """
        Remove attendance records of the given entities from every day.

        Returns:
            Number of records removed
        """
        entities = set(entities)
        removed = 0
        with self._lock:
            data = self._read()
            for date, day in data['logs'].items():
                for name in [n for n, r in day.items() if (r.get('entity') or r.get('branch')) in entities]:
                    del day[name]
                    removed += 1
                    logger.info(f'Deleting log {date}/{name}')
            self._write(data)
        return removed

    def wipe(self) -> None:
        """Bulk wipe of identities and logs; assets on disk stay."""
        with self._lock:
            self._write(_empty())
        logger.warning('⚠️ Store wiped')
