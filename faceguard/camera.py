"""
Camera connection module.

Opens local webcams (index 0, 1, 2) or RTSP/HTTP streams for the client
run loop, and encodes frames kept as capture assets.
"""

import time
from typing import Union

import cv2
import numpy as np

from .logging_config import get_logger

logger = get_logger(__name__)


def _parse_source(camera_source: str) -> Union[int, str]:
    """Camera index for digit strings, the URL otherwise."""
    camera_source = camera_source.strip()
    if camera_source.isdigit():
        return int(camera_source)
    return camera_source


def _sanitize_url(url: str) -> str:
    """
    Remove password from URL for logging.

    Args:
        url: URL with potential password

    Returns:
        Sanitized URL
    """
    if '://' not in url:
        return url

    protocol, rest = url.split('://', 1)
    if '@' in rest:
        creds, host = rest.rsplit('@', 1)
        username = creds.split(':', 1)[0]
        return f'{protocol}://{username}@{host}'
    return url


def connect_camera(camera_source: str, max_retries: int = 5) -> cv2.VideoCapture:
    """
    Connect to camera with retry logic.

    Args:
        camera_source: Camera index or stream URL
        max_retries: Maximum connection attempts

    Returns:
        Opened VideoCapture object

    Raises:
        RuntimeError: If connection fails after max_retries
    """
    source = _parse_source(camera_source)
    label = f'index {source}' if isinstance(source, int) else _sanitize_url(source)

    for attempt in range(max_retries):
        logger.info(f'Connecting to camera {label} (attempt {attempt + 1}/{max_retries})...')

        video_capture = cv2.VideoCapture(source)
        if isinstance(source, str) and source.startswith('rtsp://'):
            video_capture.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        if video_capture.isOpened():
            ret, frame = video_capture.read()
            if ret and frame is not None:
                logger.info(f'✅ Camera connected ({frame.shape[1]}x{frame.shape[0]})')
                return video_capture
            logger.warning('Camera opened but failed to read frame')
        else:
            logger.warning('Failed to open camera')
        video_capture.release()

        # Exponential backoff
        if attempt < max_retries - 1:
            wait_time = 2 ** attempt
            logger.info(f'Retrying in {wait_time} seconds...')
            time.sleep(wait_time)

    raise RuntimeError(f'Cannot connect to camera after {max_retries} attempts')


def encode_jpeg(frame: np.ndarray, quality: int = 80) -> bytes:
    """
    Encode a BGR frame as JPEG.

    Raises:
        ValueError: If OpenCV cannot encode the frame
    """
    ok, buffer = cv2.imencode('.jpg', frame, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    if not ok:
        raise ValueError('could not encode frame as JPEG')
    return buffer.tobytes()
