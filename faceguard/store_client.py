"""
Persistent store client.

Fetches and pushes snapshots and uploads assets over HTTP. Every transport
problem surfaces as SyncTransportFailure (snapshots) or AssetPersistFailure
(assets) so callers can defer instead of crash.
"""

import base64
from typing import Any, Dict, Optional

import requests

from .config import Config
from .errors import AssetPersistFailure, SyncTransportFailure
from .logging_config import get_logger
from .models import Snapshot
from .storage import ASSET_PROFILE

logger = get_logger(__name__)


class StoreClient:
    """Thin request/response wrapper around the store's HTTP API."""

    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        self.base_url = config.store_url.rstrip('/')
        self.client_id = config.client_id
        self.timeout = config.request_timeout_seconds
        self.dim = config.embedding_dim
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f'{self.base_url}{path}'
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            raise SyncTransportFailure(f'timeout on {method} {url}') from e
        except requests.exceptions.ConnectionError as e:
            raise SyncTransportFailure(f'connection error on {method} {url}') from e
        except requests.exceptions.RequestException as e:
            raise SyncTransportFailure(f'{method} {url} failed: {e}') from e

        if not response.ok:
            raise SyncTransportFailure(
                f'{method} {url} returned {response.status_code}: {response.text[:200]}'
            )

        try:
            body = response.json()
        except ValueError as e:
            raise SyncTransportFailure(f'{method} {url} returned invalid JSON') from e

        if not isinstance(body, dict):
            raise SyncTransportFailure(f'{method} {url} returned {type(body).__name__}, expected object')
        return body

    def get_snapshot(self, date: str) -> Snapshot:
        """
        Fetch the store's identities and the attendance log for ``date``.

        Raises:
            SyncTransportFailure: If the store cannot be reached or answers badly
        """
        body = self._request('GET', '/api/sync', params={'date': date})
        try:
            snapshot = Snapshot.from_dict(body, dim=self.dim)
        except ValueError as e:
            raise SyncTransportFailure(f'store returned an unreadable snapshot: {e}') from e

        logger.debug(
            f'Fetched {len(snapshot.identities)} identities and '
            f'{len(snapshot.logs)} records for {date}'
        )
        return snapshot

    def post_snapshot(self, snapshot: Snapshot) -> int:
        """
        Push identities and one day's log for the store to merge.

        Returns:
            The store's merge timestamp (epoch ms)

        Raises:
            SyncTransportFailure: If the store cannot be reached or rejects it
        """
        payload = snapshot.to_dict()
        payload['clientId'] = self.client_id

        logger.debug(
            f'📤 Pushing {len(snapshot.identities)} identities and '
            f'{len(snapshot.logs)} records for {snapshot.date}'
        )
        body = self._request('POST', '/api/sync', json=payload)
        try:
            return int(body.get('timestamp') or 0)
        except (TypeError, ValueError) as e:
            raise SyncTransportFailure(f'store acknowledged with a bad timestamp: {e}') from e

    def post_asset(self, identity_id: str, data: bytes, kind: str = ASSET_PROFILE) -> str:
        """
        Upload an asset.

        Returns:
            URL path the store serves the asset under

        Raises:
            AssetPersistFailure: If the upload does not reach the store
        """
        payload = {
            'userId': identity_id,
            'imageData': base64.b64encode(data).decode('ascii'),
            'kind': kind,
        }
        try:
            body = self._request('POST', '/api/upload-image', json=payload)
        except SyncTransportFailure as e:
            raise AssetPersistFailure(identity_id, kind, str(e)) from e
        return str(body.get('url', ''))
