from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from faceguard.config import load_config
from faceguard.errors import AssetPersistFailure, SyncTransportFailure
from faceguard.models import Identity, Snapshot
from faceguard.repository import StoreRepository
from faceguard.storage import LocalState, MemoryKVStore

T0 = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)
DAY = '2026-10-18'
DIM = 8

ENV_VARS = (
    'STORE_URL', 'CLIENT_ID', 'STATE_DIR', 'CAMERA_SOURCE', 'MATCH_THRESHOLD',
    'CONFIDENCE_SCALE', 'MIN_MATCH_SCORE', 'DUPLICATE_THRESHOLD',
    'BATCH_DUPLICATE_THRESHOLD', 'MIN_DETECTION_SCORE', 'CAPTURE_MIN_SCORE',
    'EMBEDDING_DIM', 'DETECTION_INTERVAL', 'SYNC_INTERVAL', 'REQUEST_TIMEOUT',
    'STORE_PORT', 'STORE_DATA_FILE', 'STORE_UPLOADS_DIR', 'DEBUG',
)


def axis(idx, scale=1.0, dim=DIM):
    """Unit vector along ``idx`` times ``scale``."""
    vector = np.zeros(dim, dtype=np.float32)
    vector[idx] = scale
    return vector


def make_identity(identity_id, name=None, entity='HQ', descriptors=None, created_at=T0, **kwargs):
    if descriptors is None:
        descriptors = [axis(0)]
    return Identity(
        id=identity_id,
        name=name or identity_id,
        entity=entity,
        descriptors=[np.asarray(d, dtype=np.float32) for d in descriptors],
        created_at=created_at,
        **kwargs,
    )


def at(minutes):
    return T0 + timedelta(minutes=minutes)


class InProcessStore:
    """
    Store client double backed by a real StoreRepository.

    Everything crosses the wire format in both directions; ``online``
    switches the transport off.
    """

    def __init__(self, repository: StoreRepository):
        self.repository = repository
        self.online = True
        self.asset_posts = []

    def _check(self):
        if not self.online:
            raise SyncTransportFailure('connection error on fake store')

    def get_snapshot(self, date):
        self._check()
        return Snapshot.from_dict(self.repository.snapshot(date).to_dict())

    def post_snapshot(self, snapshot):
        self._check()
        return self.repository.merge(Snapshot.from_dict(snapshot.to_dict()))

    def post_asset(self, identity_id, data, kind='profile'):
        if not self.online:
            raise AssetPersistFailure(identity_id, kind, 'store offline')
        self.asset_posts.append((identity_id, kind))
        return self.repository.save_asset(identity_id, data, kind)


@pytest.fixture
def config(tmp_path, monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv('CLIENT_ID', 'client-a')
    monkeypatch.setenv('STATE_DIR', str(tmp_path / 'state'))
    monkeypatch.setenv('STORE_DATA_FILE', str(tmp_path / 'store' / 'db.json'))
    monkeypatch.setenv('STORE_UPLOADS_DIR', str(tmp_path / 'store' / 'uploads'))
    return load_config()


@pytest.fixture
def state():
    return LocalState(MemoryKVStore())


@pytest.fixture
def repository(tmp_path):
    return StoreRepository(str(tmp_path / 'store' / 'db.json'), str(tmp_path / 'store' / 'uploads'))


@pytest.fixture
def remote(repository):
    return InProcessStore(repository)
