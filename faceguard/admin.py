"""
Admin actions.

Every privileged operation takes an explicit AdminContext. Branch admins
act on their own entity only; transfers and the bulk wipe need a super
admin. Callers push to the store after any of these succeed.
"""

from typing import List, Optional

from .errors import IdentityNotFound, PermissionDenied
from .logging_config import get_logger
from .models import AdminContext, Identity, touch
from .recognition.presence import ReportRow, daily_report
from .storage import ASSET_KINDS, LocalState

logger = get_logger(__name__)

ACTION_KEEP = 'keep'
ACTION_DELETE = 'delete'


def _require_super(ctx: AdminContext, action: str) -> None:
    if not ctx.is_super:
        raise PermissionDenied(f'{ctx.username} ({ctx.role}) may not {action}')


def _require_entity(ctx: AdminContext, entity: str, action: str) -> None:
    if not ctx.can_manage(entity):
        raise PermissionDenied(f'{ctx.username} may not {action} in entity "{entity}"')


def _find(identities: List[Identity], identity_id: str) -> int:
    for idx, identity in enumerate(identities):
        if identity.id == identity_id and identity.active:
            return idx
    raise IdentityNotFound(identity_id)


def list_identities(state: LocalState, ctx: AdminContext, entity: Optional[str] = None) -> List[Identity]:
    """Active identities visible to this admin, optionally filtered."""
    scope = ctx.scope(entity)
    return [i for i in state.active_identities() if scope is None or i.entity == scope]


def flagged_identities(state: LocalState, ctx: AdminContext) -> List[Identity]:
    """Identities awaiting duplicate review."""
    return [i for i in list_identities(state, ctx) if i.duplicate_of]


def scoped_report(
    state: LocalState,
    ctx: AdminContext,
    entity: Optional[str] = None,
    date: Optional[str] = None
) -> List[ReportRow]:
    """Daily report restricted to what this admin may see."""
    return daily_report(state.day_logs(date), entity=ctx.scope(entity))


def delete_identity(state: LocalState, ctx: AdminContext, identity_id: str, client_id: str) -> Identity:
    """
    Delete an identity.

    The identity stays behind as a tombstone so the deletion propagates
    through the last-write-wins merge; its cached assets are dropped.

    Raises:
        IdentityNotFound: If no active identity has this id
        PermissionDenied: If the identity is outside the admin's entity
    """
    removed = {}

    def apply(identities):
        idx = _find(identities, identity_id)
        target = identities[idx]
        _require_entity(ctx, target.entity, 'delete identities')
        identities[idx] = removed['identity'] = touch(target, client_id, deleted=True)
        return identities

    state.update_identities(apply)
    for kind in ASSET_KINDS:
        state.delete_asset(identity_id, kind)

    logger.info(f'{ctx.username} deleted {identity_id}')
    return removed['identity']


def resolve_duplicate(
    state: LocalState,
    ctx: AdminContext,
    identity_id: str,
    action: str,
    client_id: str
) -> Identity:
    """
    Adjudicate a duplicate flag.

    Args:
        action: 'keep' clears the flag for good, 'delete' removes the identity

    Raises:
        ValueError: For any other action
    """
    if action == ACTION_DELETE:
        return delete_identity(state, ctx, identity_id, client_id)
    if action != ACTION_KEEP:
        raise ValueError(f'unknown resolution {action!r}, expected "keep" or "delete"')

    kept = {}

    def apply(identities):
        idx = _find(identities, identity_id)
        target = identities[idx]
        _require_entity(ctx, target.entity, 'resolve duplicates')
        identities[idx] = kept['identity'] = touch(
            target, client_id, duplicate_of=None, reviewed=True
        )
        return identities

    state.update_identities(apply)
    logger.info(f'{ctx.username} marked {identity_id} as valid')
    return kept['identity']


def transfer_entity(
    state: LocalState,
    ctx: AdminContext,
    source: str,
    target: str,
    client_id: str
) -> int:
    """
    Move every identity of ``source`` into ``target``.

    Returns:
        Number of identities moved
    """
    _require_super(ctx, 'transfer identities')
    if not target or target == source:
        raise ValueError('transfer target must be a different entity')

    moved = 0

    def apply(identities):
        nonlocal moved
        result = []
        for identity in identities:
            if identity.active and identity.entity == source:
                identity = touch(identity, client_id, entity=target)
                moved += 1
            result.append(identity)
        return result

    state.update_identities(apply)
    logger.info(f'{ctx.username} moved {moved} identities from "{source}" to "{target}"')
    return moved


def delete_entity_identities(state: LocalState, ctx: AdminContext, entity: str, client_id: str) -> int:
    """
    Delete every identity of an entity.

    Returns:
        Number of identities deleted
    """
    _require_entity(ctx, entity, 'delete identities')

    deleted = []

    def apply(identities):
        result = []
        for identity in identities:
            if identity.active and identity.entity == entity:
                identity = touch(identity, client_id, deleted=True)
                deleted.append(identity.id)
            result.append(identity)
        return result

    state.update_identities(apply)
    for identity_id in deleted:
        for kind in ASSET_KINDS:
            state.delete_asset(identity_id, kind)

    logger.info(f'{ctx.username} deleted {len(deleted)} identities of "{entity}"')
    return len(deleted)


def wipe_local(state: LocalState, ctx: AdminContext) -> int:
    """
    Bulk wipe of the local cache.

    Returns:
        Number of keys removed
    """
    _require_super(ctx, 'wipe local data')
    removed = state.clear()
    logger.warning(f'⚠️ {ctx.username} wiped local data ({removed} keys)')
    return removed
