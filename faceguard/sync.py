"""
Synchronization module.

Reconciles the local snapshot with the persistent store:
- Pull: adopt remote records that are newer, record by record
- Push: send the full local snapshot for the store to merge the same way
- Asset sweep: re-push cached assets, best effort and idempotent

No failure here is fatal. A failed step leaves local state as it was and
is retried on the next cycle.
"""

from dataclasses import dataclass
from typing import Collection, Optional, Tuple

from .errors import AssetPersistFailure, SyncTransportFailure
from .logging_config import get_logger
from .merge import drop_mismatched, merge_identities, merge_logs, snapshot_dim
from .storage import ASSET_CAPTURE, ASSET_PROFILE, LocalState
from .store_client import StoreClient
from .utils.timing import day_key

logger = get_logger(__name__)


@dataclass
class SyncReport:
    """What one sync cycle achieved."""

    pulled: bool = False
    pushed: bool = False
    adopted_identities: int = 0
    adopted_records: int = 0
    assets_pushed: int = 0
    assets_failed: int = 0

    @property
    def ok(self) -> bool:
        return self.pulled and self.pushed and not self.assets_failed


class SyncReconciler:
    """
    Drives pull, push and asset recovery for one client.

    Cycles may overlap each other and local writes; the merge rule and the
    locked read-modify-write in LocalState keep them convergent.
    """

    def __init__(self, state: LocalState, client: StoreClient):
        self.state = state
        self.client = client

    def pull(self, date: Optional[str] = None) -> Optional[Tuple[int, int]]:
        """
        Fetch the remote snapshot and merge it into local state.

        Returns:
            (identities adopted, records adopted), or None if the fetch failed
        """
        date = date or day_key()
        try:
            remote = self.client.get_snapshot(date)
        except SyncTransportFailure as e:
            logger.warning(f'❌ Pull failed, keeping local data: {e}')
            return None

        counts = {'identities': 0, 'records': 0}

        def adopt_identities(local):
            dim = snapshot_dim(self.state.dim, local, remote.identities)
            incoming, _ = drop_mismatched(remote.identities, dim)
            merged, adopted = merge_identities(local, incoming)
            counts['identities'] = adopted
            return merged

        self.state.update_identities(adopt_identities)

        if remote.date != date:
            logger.warning(f'⚠️ Store answered for {remote.date} instead of {date}, logs not merged')
        else:
            def adopt_logs(local):
                merged, adopted = merge_logs(local, remote.logs)
                counts['records'] = adopted
                return merged

            self.state.update_day_logs(adopt_logs, date)

        logger.info(
            f'✅ Pulled from store: adopted {counts["identities"]} identities, '
            f'{counts["records"]} attendance records'
        )
        return counts['identities'], counts['records']

    def push(self, date: Optional[str] = None) -> bool:
        """
        Send the full local snapshot for ``date`` to the store.

        Returns:
            True if the store acknowledged the merge
        """
        snapshot = self.state.snapshot(date)
        try:
            timestamp = self.client.post_snapshot(snapshot)
        except SyncTransportFailure as e:
            logger.warning(f'❌ Push failed, will retry next cycle: {e}')
            return False

        logger.info(f'✅ Pushed snapshot for {snapshot.date} (store timestamp {timestamp})')
        return True

    def push_assets(self, profiles: Optional[Collection[str]] = None) -> Tuple[int, int]:
        """
        Recovery sweep over cached assets.

        Profile assets of every active identity marked as having one are
        re-pushed on every sweep; capture assets are dropped from the cache
        once the store has them.

        Args:
            profiles: Ids whose profile assets to push; None sweeps every
                identity, an empty collection pushes pending captures only

        Returns:
            (assets pushed, assets failed)
        """
        pushed = failed = 0

        for identity in self.state.active_identities():
            if not identity.has_image or (profiles is not None and identity.id not in profiles):
                continue
            data = self.state.get_asset(identity.id, ASSET_PROFILE)
            if data is None:
                logger.debug(f'No cached profile asset for {identity.id}')
                continue
            try:
                self.client.post_asset(identity.id, data, ASSET_PROFILE)
                pushed += 1
            except AssetPersistFailure as e:
                failed += 1
                logger.warning(f'❌ Asset push failed: {e}')

        for kind, identity_id in self.state.asset_keys(ASSET_CAPTURE):
            data = self.state.get_asset(identity_id, kind)
            if data is None:
                continue
            try:
                self.client.post_asset(identity_id, data, kind)
            except AssetPersistFailure as e:
                failed += 1
                logger.warning(f'❌ Asset push failed: {e}')
                continue
            pushed += 1
            if not self.state.discard_asset(identity_id, data, kind):
                logger.debug(f'Newer {kind} for {identity_id} cached meanwhile, kept for the next sweep')

        if pushed or failed:
            logger.info(f'Asset sweep: {pushed} pushed, {failed} failed')
        return pushed, failed

    def sync_cycle(self, date: Optional[str] = None) -> SyncReport:
        """
        One full cycle: pull, push, then asset sweep.

        Returns:
            SyncReport; never raises for transport problems
        """
        date = date or day_key()
        report = SyncReport()

        pulled = self.pull(date)
        if pulled is not None:
            report.pulled = True
            report.adopted_identities, report.adopted_records = pulled

        report.pushed = self.push(date)
        report.assets_pushed, report.assets_failed = self.push_assets()

        return report
