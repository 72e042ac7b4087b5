"""
Local state module.

Client-side cache of the snapshot on top of an injected key-value store:
- Identity list
- Attendance log per ISO date
- Asset cache keyed by kind and identity id
"""

import base64
import binascii
import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol, Tuple
from urllib.parse import quote, unquote

from .errors import CorruptLocalState
from .logging_config import get_logger
from .models import AttendanceRecord, Identity, Snapshot, decode_identities, decode_logs
from .utils.timing import day_key

logger = get_logger(__name__)

USERS_KEY = 'attendance_app_users'
LOG_PREFIX = 'attendance_log_'
ASSET_PREFIX = 'asset:'

ASSET_PROFILE = 'profile'
ASSET_CAPTURE = 'capture'
ASSET_KINDS = (ASSET_PROFILE, ASSET_CAPTURE)


class KVStore(Protocol):
    """String key-value store the local state is persisted in."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self, prefix: str = '') -> List[str]: ...


class MemoryKVStore:
    """In-process key-value store."""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self, prefix: str = '') -> List[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))


class FileKVStore:
    """
    One file per key under a directory.

    Writes go to a temporary file first and are moved into place, so a
    crash never leaves a half-written value behind.
    """

    def __init__(self, root: str):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.root / quote(key, safe='')

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding='utf-8')

    def set(self, key: str, value: str) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=self.root, prefix='.tmp-')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(value)
            os.replace(tmp_path, self._path(key))
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass

    def keys(self, prefix: str = '') -> List[str]:
        found = []
        for path in self.root.iterdir():
            if path.name.startswith('.tmp-') or not path.is_file():
                continue
            key = unquote(path.name)
            if key.startswith(prefix):
                found.append(key)
        return sorted(found)


def _log_key(date: str) -> str:
    return f'{LOG_PREFIX}{date}'


def _asset_key(identity_id: str, kind: str) -> str:
    if kind not in ASSET_KINDS:
        raise ValueError(f'unknown asset kind {kind!r}')
    return f'{ASSET_PREFIX}{kind}:{identity_id}'


class LocalState:
    """
    The client's cached snapshot.

    Read-modify-write helpers hold a lock so a sync racing a local write
    inside one process cannot drop either update. A value that cannot be
    decoded reads as empty instead of halting the client.
    """

    def __init__(self, kv: KVStore, dim: int = 0):
        self.kv = kv
        self.dim = dim
        self.revision = 0
        self._lock = threading.RLock()

    def _load_json(self, key: str):
        raw = self.kv.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            raise CorruptLocalState(key, str(e)) from e

    # Identities

    def identities(self) -> List[Identity]:
        """All cached identities, tombstones included."""
        try:
            data = self._load_json(USERS_KEY)
            if data is None:
                return []
            if not isinstance(data, list):
                raise CorruptLocalState(USERS_KEY, f'expected a list, got {type(data).__name__}')
        except CorruptLocalState as e:
            logger.warning(f'⚠️ Corrupt local identities, starting empty: {e}')
            return []

        identities, rejected = decode_identities(data, dim=self.dim)
        if rejected:
            logger.warning(f'⚠️ Dropped {rejected} unreadable local identities')
        return identities

    def active_identities(self) -> List[Identity]:
        return [i for i in self.identities() if i.active]

    def save_identities(self, identities: List[Identity]) -> None:
        with self._lock:
            self.kv.set(USERS_KEY, json.dumps([i.to_dict() for i in identities]))
            self.revision += 1

    def update_identities(
        self,
        fn: Callable[[List[Identity]], List[Identity]]
    ) -> List[Identity]:
        """Atomically replace the identity list with ``fn(current)``."""
        with self._lock:
            updated = fn(self.identities())
            self.save_identities(updated)
            return updated

    # Attendance logs

    def day_logs(self, date: Optional[str] = None) -> Dict[str, AttendanceRecord]:
        key = _log_key(date or day_key())
        try:
            data = self._load_json(key)
            if data is None:
                return {}
            if not isinstance(data, dict):
                raise CorruptLocalState(key, f'expected an object, got {type(data).__name__}')
        except CorruptLocalState as e:
            logger.warning(f'⚠️ Corrupt local attendance log, starting empty: {e}')
            return {}

        logs, rejected = decode_logs(data)
        if rejected:
            logger.warning(f'⚠️ Dropped {rejected} unreadable records from {key}')
        return logs

    def save_day_logs(self, logs: Dict[str, AttendanceRecord], date: Optional[str] = None) -> None:
        with self._lock:
            self.kv.set(
                _log_key(date or day_key()),
                json.dumps({name: r.to_dict() for name, r in logs.items()}),
            )

    def update_day_logs(
        self,
        fn: Callable[[Dict[str, AttendanceRecord]], Dict[str, AttendanceRecord]],
        date: Optional[str] = None
    ) -> Dict[str, AttendanceRecord]:
        """Atomically replace a day's log with ``fn(current)``."""
        with self._lock:
            updated = fn(self.day_logs(date))
            self.save_day_logs(updated, date)
            return updated

    def log_dates(self) -> List[str]:
        return [k[len(LOG_PREFIX):] for k in self.kv.keys(LOG_PREFIX)]

    def snapshot(self, date: Optional[str] = None) -> Snapshot:
        date = date or day_key()
        with self._lock:
            return Snapshot(identities=self.identities(), logs=self.day_logs(date), date=date)

    # Assets

    def put_asset(self, identity_id: str, data: bytes, kind: str = ASSET_PROFILE) -> None:
        with self._lock:
            self.kv.set(_asset_key(identity_id, kind), base64.b64encode(data).decode('ascii'))

    def get_asset(self, identity_id: str, kind: str = ASSET_PROFILE) -> Optional[bytes]:
        key = _asset_key(identity_id, kind)
        raw = self.kv.get(key)
        if raw is None:
            return None
        try:
            return base64.b64decode(raw, validate=True)
        except (binascii.Error, ValueError) as e:
            logger.warning(f'⚠️ Corrupt cached asset {key}, dropping it: {e}')
            self.kv.delete(key)
            return None

    def delete_asset(self, identity_id: str, kind: str = ASSET_PROFILE) -> None:
        with self._lock:
            self.kv.delete(_asset_key(identity_id, kind))

    def discard_asset(self, identity_id: str, data: bytes, kind: str = ASSET_PROFILE) -> bool:
        """
        Delete a cached asset only if it still holds ``data``.

        Returns:
            False if the asset was replaced meanwhile and is kept
        """
        with self._lock:
            if self.get_asset(identity_id, kind) != data:
                return False
            self.kv.delete(_asset_key(identity_id, kind))
            return True

    def asset_keys(self, kind: Optional[str] = None) -> List[Tuple[str, str]]:
        """Cached assets as (kind, identity id) pairs."""
        prefix = ASSET_PREFIX + (f'{kind}:' if kind else '')
        pairs = []
        for key in self.kv.keys(prefix):
            asset_kind, _, identity_id = key[len(ASSET_PREFIX):].partition(':')
            pairs.append((asset_kind, identity_id))
        return pairs

    # Bulk wipe

    def clear(self) -> int:
        """
        Remove every identity, attendance log and cached asset.

        Returns:
            Number of keys removed
        """
        with self._lock:
            keys = [USERS_KEY] + self.kv.keys(LOG_PREFIX) + self.kv.keys(ASSET_PREFIX)
            for key in keys:
                self.kv.delete(key)
            self.revision += 1
        logger.info(f'Local state cleared ({len(keys)} keys)')
        return len(keys)
