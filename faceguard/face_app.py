"""
InsightFace initialization module.

Provides face detection and embedding extraction using InsightFace models
and converts its results into Detection values.
"""

from typing import List

import numpy as np
from insightface.app import FaceAnalysis

from .config import Config
from .logging_config import get_logger
from .recognition.detections import Detection

logger = get_logger(__name__)


def initialize_face_app(config: Config) -> FaceAnalysis:
    """
    Initialize InsightFace FaceAnalysis.

    Args:
        config: Service configuration

    Returns:
        Initialized FaceAnalysis instance
    """
    logger.info('Initializing InsightFace AI...')

    face_app = FaceAnalysis(providers=['CPUExecutionProvider'])
    face_app.prepare(ctx_id=0, det_size=config.insightface_det_size)

    logger.info(f'✅ InsightFace initialized (det_size={config.insightface_det_size})')

    return face_app


def detect_faces(face_app: FaceAnalysis, frame: np.ndarray) -> List[Detection]:
    """
    Detect faces in a BGR frame.

    Args:
        face_app: InsightFace instance
        frame: Image in BGR format

    Returns:
        One Detection per face that carries an embedding
    """
    detections = []
    for face in face_app.get(frame):
        embedding = getattr(face, 'normed_embedding', None)
        if embedding is None:
            continue
        detections.append(Detection(
            bbox=face.bbox,
            score=float(face.det_score),
            embedding=embedding,
            landmarks=getattr(face, 'kps', None),
        ))
    return detections
