"""
Recognition algorithms package.

Contains modules for:
- Detected faces and head pose estimation
- Embedding matching
- Duplicate registration detection
- Multi-pose enrollment
- Attendance state machine
"""

from .detections import Detection, HeadPose, best_face, classify_pose, estimate_head_pose
from .matching import (
    UNKNOWN_LABEL,
    DescriptorMatcher,
    MatchResult,
    check_match_threshold,
    distance_to_confidence,
    match_to_percentage,
)
from .duplicates import DuplicateCheck, DuplicateScan, check_duplicate, scan_for_duplicates
from .enrollment import EnrollmentSession, generate_unique_id, register_identity
from .presence import (
    INTENT_AUTO,
    INTENT_CHECK_IN,
    INTENT_CHECK_OUT,
    ReportRow,
    daily_report,
    mark_attendance,
    summarize,
)

__all__ = [
    'Detection',
    'HeadPose',
    'best_face',
    'classify_pose',
    'estimate_head_pose',
    'UNKNOWN_LABEL',
    'DescriptorMatcher',
    'MatchResult',
    'check_match_threshold',
    'distance_to_confidence',
    'match_to_percentage',
    'DuplicateCheck',
    'DuplicateScan',
    'check_duplicate',
    'scan_for_duplicates',
    'EnrollmentSession',
    'generate_unique_id',
    'register_identity',
    'INTENT_AUTO',
    'INTENT_CHECK_IN',
    'INTENT_CHECK_OUT',
    'ReportRow',
    'daily_report',
    'mark_attendance',
    'summarize',
]
