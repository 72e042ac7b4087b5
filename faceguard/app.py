"""
Flask application for the persistent store.

Provides:
- GET /api/sync: identities plus one day's attendance log
- POST /api/sync: merge a client snapshot, record by record
- DELETE /api/sync: bulk wipe
- POST /api/upload-image: store a profile or capture asset
- GET /uploads/<path>: serve stored assets
- GET /health: Service health check
"""

import base64
import binascii
import re
from typing import Optional

from flask import Flask, abort, jsonify, request, send_from_directory
from flask_cors import CORS

from .config import Config
from .logging_config import get_logger
from .models import Snapshot
from .repository import StoreRepository
from .storage import ASSET_KINDS, ASSET_PROFILE
from .utils.timing import day_key

logger = get_logger(__name__)

DATA_URL_PREFIX = re.compile(r'^data:image/\w+;base64,')
DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')

MAX_CONTENT_LENGTH = 50 * 1024 * 1024


def _requested_date(value: Optional[str]) -> str:
    if not value:
        return day_key()
    if not DATE_PATTERN.match(value):
        abort(400, description=f'invalid date {value!r}, expected YYYY-MM-DD')
    return value


def create_app(config: Config, repository: Optional[StoreRepository] = None) -> Flask:
    """
    Create and configure the store application.

    Args:
        config: Service configuration
        repository: Snapshot repository (defaults to the configured files)

    Returns:
        Configured Flask app
    """
    app = Flask(__name__)
    app.config['MAX_CONTENT_LENGTH'] = MAX_CONTENT_LENGTH
    CORS(app)

    if repository is None:
        repository = StoreRepository(
            config.store_data_file,
            config.store_uploads_dir,
            dim=config.embedding_dim,
        )
    app.extensions['faceguard_repository'] = repository

    @app.route('/api/sync', methods=['GET'])
    def get_snapshot():
        """Current snapshot for ?date= (default today)."""
        date = _requested_date(request.args.get('date'))
        snapshot = repository.snapshot(date)

        body = snapshot.to_dict()
        body['lastSync'] = repository.last_sync()
        return jsonify(body)

    @app.route('/api/sync', methods=['POST'])
    def post_snapshot():
        """Merge a client snapshot."""
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict) or not isinstance(payload.get('users', []), list):
            abort(400, description='expected {"users": [...], "logs": {...}}')

        payload['date'] = _requested_date(payload.get('date'))
        try:
            incoming = Snapshot.from_dict(payload, dim=repository.dim)
        except ValueError as e:
            abort(400, description=str(e))

        client_id = payload.get('clientId') or request.remote_addr
        logger.info(
            f'📥 Sync from {client_id}: {len(incoming.identities)} identities, '
            f'{len(incoming.logs)} records for {incoming.date}'
        )

        timestamp = repository.merge(incoming)
        return jsonify({'message': 'Sync successful', 'timestamp': timestamp})

    @app.route('/api/sync', methods=['DELETE'])
    def wipe():
        """Bulk wipe of identities and logs."""
        repository.wipe()
        return jsonify({'message': 'Store wiped'})

    @app.route('/api/upload-image', methods=['POST'])
    def upload_image():
        """Store an uploaded asset."""
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            payload = {}
        identity_id = payload.get('userId')
        image_data = payload.get('imageData')
        kind = payload.get('kind') or ASSET_PROFILE

        if not identity_id or not image_data:
            logger.warning('Upload failed: Missing data')
            return 'Missing data', 400
        if kind not in ASSET_KINDS:
            return f'Unknown asset kind {kind}', 400

        try:
            data = base64.b64decode(DATA_URL_PREFIX.sub('', image_data), validate=True)
        except (binascii.Error, ValueError):
            return 'Invalid image data', 400

        logger.info(f'Receiving {kind} image for user: {identity_id}')
        try:
            url = repository.save_asset(str(identity_id), data, kind)
        except ValueError as e:
            return str(e), 400
        except OSError as e:
            logger.error(f'❌ Write failed for {identity_id}: {e}')
            return 'Write failed', 500

        return jsonify({'message': 'Image uploaded', 'url': url})

    @app.route('/uploads/<path:filename>')
    def uploads(filename):
        """Serve a stored asset."""
        return send_from_directory(repository.uploads_dir.resolve(), filename)

    @app.route('/health')
    def health():
        """Health check endpoint."""
        return jsonify({
            'status': 'ok',
            'service': 'faceguard-store',
            'lastSync': repository.last_sync(),
        })

    return app
