"""
Client orchestration.

Wires the recognition pipeline to local state and the store:
- Detection tick: frame -> detections -> best face -> matcher -> attendance
- Enrollment: multi-pose capture -> identity + profile asset
- Admin actions followed by a push
- Sync tick: pull, push and asset sweep, plus one final sync on stop

Every local write happens before any network call, so an offline store
never blocks recording attendance.
"""

import threading
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from . import admin
from .config import Config
from .errors import InvalidEmbedding
from .logging_config import get_logger
from .merge import merge_identities
from .models import AdminContext, AttendanceRecord, Identity
from .recognition.detections import Detection, best_face
from .recognition.duplicates import DuplicateCheck, DuplicateScan, scan_for_duplicates
from .recognition.enrollment import EnrollmentSession, register_identity
from .recognition.matching import DescriptorMatcher, MatchResult, check_match_threshold
from .recognition.presence import INTENT_AUTO, INTENTS, mark_attendance
from .scheduler import PeriodicTask
from .storage import ASSET_CAPTURE, ASSET_PROFILE, LocalState
from .store_client import StoreClient
from .sync import SyncReconciler, SyncReport
from .utils.timing import day_key

logger = get_logger(__name__)

FrameSource = Callable[[], Optional[np.ndarray]]
Detector = Callable[[np.ndarray], List[Detection]]
FrameEncoder = Callable[[np.ndarray], bytes]


class AttendanceClient:
    """
    One attendance device.

    Args:
        config: Service configuration
        state: Local snapshot cache
        store_client: Store API client (defaults to one built from config)
        detector: Turns a frame into detections (vision adapter)
        encoder: Encodes a frame as JPEG for capture assets
    """

    def __init__(
        self,
        config: Config,
        state: LocalState,
        store_client: Optional[StoreClient] = None,
        detector: Optional[Detector] = None,
        encoder: Optional[FrameEncoder] = None
    ):
        self.config = config
        self.state = state
        self.reconciler = SyncReconciler(state, store_client or StoreClient(config))
        self.detector = detector
        self.encoder = encoder
        self.intent = INTENT_AUTO

        self._matcher: Optional[DescriptorMatcher] = None
        self._matcher_revision = -1
        self._matcher_lock = threading.Lock()

        self._detection_task: Optional[PeriodicTask] = None
        self._sync_task: Optional[PeriodicTask] = None

    @property
    def client_id(self) -> str:
        return self.config.client_id

    # Matching

    def matcher(self) -> Optional[DescriptorMatcher]:
        """
        Matcher over the current snapshot, rebuilt whenever identities change.

        Returns:
            None if the cached identities cannot be compared with each other
        """
        with self._matcher_lock:
            revision = self.state.revision
            if self._matcher is None or revision != self._matcher_revision:
                try:
                    self._matcher = DescriptorMatcher(
                        self.state.active_identities(),
                        threshold=self.config.match_threshold,
                        confidence_scale=self.config.confidence_scale,
                        dim=self.config.embedding_dim,
                    )
                except InvalidEmbedding as e:
                    logger.error(f'❌ Cannot build matcher from local identities: {e}')
                    self._matcher = None
                self._matcher_revision = revision
                if self._matcher is not None:
                    logger.debug(f'Matcher rebuilt with {len(self._matcher)} identities')
            return self._matcher

    def recognize(self, detections: Sequence[Detection]) -> Optional[Tuple[Detection, MatchResult]]:
        """
        Match the most prominent face.

        Returns:
            (detection, match) or None if no usable face or no matcher
        """
        face = best_face(detections, min_score=self.config.min_detection_score)
        if face is None:
            return None

        matcher = self.matcher()
        if matcher is None:
            return None

        try:
            return face, matcher.best_match(face.embedding)
        except InvalidEmbedding as e:
            logger.warning(f'⚠️ Probe rejected: {e}')
            return None

    # Attendance

    def process_detections(
        self,
        detections: Sequence[Detection],
        frame: Optional[np.ndarray] = None,
        intent: Optional[str] = None
    ) -> Optional[AttendanceRecord]:
        """
        Record attendance for the best matching face, if any.

        Args:
            detections: Faces found in one frame
            frame: Source frame, kept as a capture asset when given
            intent: 'auto', 'check-in' or 'check-out' (defaults to self.intent)

        Returns:
            The updated record, or None when nobody was recognized
        """
        intent = intent or self.intent
        if intent not in INTENTS:
            raise ValueError(f'unknown attendance intent {intent!r}')

        recognized = self.recognize(detections)
        if recognized is None:
            return None
        face, match = recognized

        if match.is_unknown:
            logger.debug(f'Unknown face (best distance {match.distance:.3f})')
            return None
        if not check_match_threshold(match.distance, self.config.min_match_score, self.config.confidence_scale):
            logger.debug(f'{match.label} below minimum score ({match.confidence:.1f}%)')
            return None

        identity = match.identity
        date = day_key()
        marked = {}

        def apply(logs):
            marked['new'] = identity.name not in logs
            marked['record'] = mark_attendance(
                logs,
                identity.name,
                intent=intent,
                identities=[identity],
                client_id=self.client_id,
            )
            return logs

        self.state.update_day_logs(apply, date)
        record = marked['record']

        if frame is not None and (marked['new'] or intent != INTENT_AUTO):
            self._keep_capture(identity, face, frame)

        logger.info(f'{identity.name} recognized ({match.confidence:.1f}%), status {record.status}')
        self.push_in_background(date)
        return record

    def _keep_capture(self, identity: Identity, face: Detection, frame: np.ndarray) -> None:
        if self.encoder is None or face.score <= self.config.capture_min_score:
            return
        try:
            data = self.encoder(frame)
        except ValueError as e:
            logger.warning(f'⚠️ Capture for {identity.name} not kept: {e}')
            return
        self.state.put_asset(identity.id, data, ASSET_CAPTURE)

    def detection_tick(self, read_frame: FrameSource) -> Optional[AttendanceRecord]:
        """One detection cycle over the next available frame."""
        if self.detector is None:
            raise RuntimeError('no face detector configured')

        frame = read_frame()
        if frame is None:
            logger.debug('No frame available')
            return None
        return self.process_detections(self.detector(frame), frame=frame)

    # Enrollment

    def enroll(self, session: EnrollmentSession, image: Optional[bytes] = None) -> Tuple[Identity, DuplicateCheck]:
        """
        Store a completed enrollment and push it.

        Args:
            session: Enrollment session with every pose captured
            image: Profile image (JPEG bytes), cached and pushed as an asset

        Returns:
            Tuple of (new identity, duplicate check result)
        """
        embeddings = session.embeddings()
        result = {}

        def apply(identities):
            result['identity'], result['check'] = register_identity(
                session.name,
                session.entity,
                embeddings,
                identities,
                client_id=self.client_id,
                duplicate_threshold=self.config.duplicate_threshold,
                has_image=image is not None,
            )
            return identities + [result['identity']]

        self.state.update_identities(apply)
        identity = result['identity']
        if image is not None:
            self.state.put_asset(identity.id, image, ASSET_PROFILE)

        self.push_in_background(profile_ids=(identity.id,) if image is not None else ())
        return identity, result['check']

    def scan_duplicates(self, on_progress=None) -> DuplicateScan:
        """
        Retroactive duplicate scan over the local snapshot.

        The scan runs outside the state lock; its flags are committed in one
        write through the merge rule, so edits made meanwhile are not lost.
        """
        scan = scan_for_duplicates(
            self.state.identities(),
            threshold=self.config.batch_duplicate_threshold,
            client_id=self.client_id,
            on_progress=on_progress,
        )
        if scan.found:
            self.state.update_identities(lambda current: merge_identities(current, scan.flagged)[0])
            self.push_in_background()
        logger.info(f'Duplicate scan complete: {scan.found} flagged')
        return scan

    # Admin actions

    def delete_identity(self, ctx: AdminContext, identity_id: str) -> Identity:
        identity = admin.delete_identity(self.state, ctx, identity_id, self.client_id)
        self.push_in_background()
        return identity

    def resolve_duplicate(self, ctx: AdminContext, identity_id: str, action: str) -> Identity:
        identity = admin.resolve_duplicate(self.state, ctx, identity_id, action, self.client_id)
        self.push_in_background()
        return identity

    def transfer_entity(self, ctx: AdminContext, source: str, target: str) -> int:
        moved = admin.transfer_entity(self.state, ctx, source, target, self.client_id)
        if moved:
            self.push_in_background()
        return moved

    def delete_entity_identities(self, ctx: AdminContext, entity: str) -> int:
        deleted = admin.delete_entity_identities(self.state, ctx, entity, self.client_id)
        if deleted:
            self.push_in_background()
        return deleted

    # Sync

    def sync_now(self, date: Optional[str] = None) -> SyncReport:
        """Run one full sync cycle in the calling thread."""
        report = self.reconciler.sync_cycle(date)
        if not report.ok:
            logger.warning(f'⚠️ Sync incomplete: {report}')
        return report

    def _push_quietly(self, date: Optional[str], profile_ids: Tuple[str, ...]) -> None:
        try:
            if self.reconciler.push(date):
                self.reconciler.push_assets(profiles=profile_ids)
        except Exception as e:
            logger.error(f'❌ Background push failed: {e}', exc_info=True)

    def push_in_background(self, date: Optional[str] = None, profile_ids: Tuple[str, ...] = ()) -> threading.Thread:
        """
        Push local state without blocking the caller; failures are logged only.

        Pending captures go along with the snapshot. Profile assets are pushed
        only for ``profile_ids``; the sync tick sweeps the rest.
        """
        worker = threading.Thread(
            target=self._push_quietly,
            args=(date, tuple(profile_ids)),
            daemon=True,
            name='faceguard-push',
        )
        worker.start()
        return worker

    # Lifecycle

    def start(self, read_frame: FrameSource) -> None:
        """
        Start the detection and sync timers.

        Args:
            read_frame: Returns the latest frame, or None if unavailable
        """
        self._detection_task = PeriodicTask(
            'detection',
            self.config.detection_interval_seconds,
            lambda: self.detection_tick(read_frame),
            allow_overlap=False,
        )
        self._sync_task = PeriodicTask(
            'sync',
            self.config.sync_interval_seconds,
            self.sync_now,
            allow_overlap=True,
        )
        self.sync_now()
        self._detection_task.start()
        self._sync_task.start()

    def stop(self) -> SyncReport:
        """Stop both timers, then attempt one last sync."""
        for task in (self._detection_task, self._sync_task):
            if task is not None:
                task.cancel()
        logger.info('📤 Final sync before shutdown...')
        return self.sync_now()
