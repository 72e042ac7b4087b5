"""
Configuration module for FaceGuard.

Loads configuration from environment variables with sensible defaults.
All settings are immutable after initialization.
"""

import os
import socket
from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class Config:
    """
    Immutable configuration for a FaceGuard client or store.

    Store Integration:
        store_url: Base URL of the persistent store (e.g., http://store:3001)
        client_id: Stable identifier of this device, used as merge tie-break
        request_timeout_seconds: Timeout for every store request

    Local State:
        state_dir: Directory holding the local key-value cache
        camera_source: Camera index or stream URL for the run loop

    Matching:
        match_threshold: Euclidean distance below which a probe matches
        confidence_scale: Distance mapped to 0% confidence (fixed, so that
            threshold changes never reorder rankings)
        min_match_score: Minimum confidence (percent) to record attendance
        embedding_dim: Expected embedding length (0 = infer from snapshot)

    Duplicates:
        duplicate_threshold: Same-person distance used at enrollment
        batch_duplicate_threshold: Same-person distance for retroactive scans

    Detection:
        min_detection_score: Detections at or below this score are ignored
        capture_min_score: Detection score required to keep a capture asset
        insightface_det_size: Detection size for InsightFace (width, height)

    Timers:
        detection_interval_seconds: Period of the detection/matching tick
        sync_interval_seconds: Period of the synchronization tick

    Store Server:
        store_port: Port for the Flask store
        store_data_file: JSON file holding the store snapshot
        store_uploads_dir: Directory receiving uploaded assets

    System:
        debug_mode: Enable debug logging
    """

    # Store
    store_url: str
    client_id: str
    request_timeout_seconds: float

    # Local state
    state_dir: str
    camera_source: str

    # Matching
    match_threshold: float
    confidence_scale: float
    min_match_score: float
    embedding_dim: int

    # Duplicates
    duplicate_threshold: float
    batch_duplicate_threshold: float

    # Detection
    min_detection_score: float
    capture_min_score: float
    insightface_det_size: Tuple[int, int]

    # Timers
    detection_interval_seconds: float
    sync_interval_seconds: float

    # Store server
    store_port: int
    store_data_file: str
    store_uploads_dir: str

    # System
    debug_mode: bool


def load_config() -> Config:
    """
    Load configuration from environment variables.

    Returns:
        Config: Immutable configuration object
    """
    return Config(
        # Store
        store_url=os.getenv('STORE_URL', 'http://localhost:3001').rstrip('/'),
        client_id=os.getenv('CLIENT_ID', socket.gethostname()),
        request_timeout_seconds=float(os.getenv('REQUEST_TIMEOUT', '10')),

        # Local state
        state_dir=os.getenv('STATE_DIR', '.faceguard'),
        camera_source=os.getenv('CAMERA_SOURCE', '0'),

        # Matching
        match_threshold=float(os.getenv('MATCH_THRESHOLD', '0.7')),
        confidence_scale=float(os.getenv('CONFIDENCE_SCALE', '0.7')),
        min_match_score=float(os.getenv('MIN_MATCH_SCORE', '20')),
        embedding_dim=int(os.getenv('EMBEDDING_DIM', '0')),

        # Duplicates
        duplicate_threshold=float(os.getenv('DUPLICATE_THRESHOLD', '0.4')),
        batch_duplicate_threshold=float(os.getenv('BATCH_DUPLICATE_THRESHOLD', '0.45')),

        # Detection
        min_detection_score=float(os.getenv('MIN_DETECTION_SCORE', '0.6')),
        capture_min_score=float(os.getenv('CAPTURE_MIN_SCORE', '0.5')),
        insightface_det_size=(640, 640),

        # Timers
        detection_interval_seconds=float(os.getenv('DETECTION_INTERVAL', '0.8')),
        sync_interval_seconds=float(os.getenv('SYNC_INTERVAL', '30')),

        # Store server
        store_port=int(os.getenv('STORE_PORT', '3001')),
        store_data_file=os.getenv('STORE_DATA_FILE', 'db.json'),
        store_uploads_dir=os.getenv('STORE_UPLOADS_DIR', 'uploads'),

        # System
        debug_mode=os.getenv('DEBUG', 'false').lower() == 'true',
    )
