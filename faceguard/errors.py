"""
Error taxonomy.

An unknown match and a flagged duplicate are normal outcomes and are
reported as results (see MatchResult and DuplicateCheck), not exceptions.
"""


class FaceguardError(Exception):
    """Base class for all FaceGuard errors."""


class SyncTransportFailure(FaceguardError):
    """The store could not be reached or answered with an error."""


class AssetPersistFailure(FaceguardError):
    """An asset upload did not reach the store."""

    def __init__(self, identity_id: str, kind: str, reason: str):
        super().__init__(f'asset {kind}/{identity_id}: {reason}')
        self.identity_id = identity_id
        self.kind = kind


class CorruptLocalState(FaceguardError):
    """A locally cached value could not be decoded."""

    def __init__(self, key: str, reason: str):
        super().__init__(f'{key}: {reason}')
        self.key = key


class InvalidEmbedding(FaceguardError, ValueError):
    """An embedding is not a finite, fixed-length numeric vector."""


class PermissionDenied(FaceguardError):
    """The admin context does not allow the requested action."""


class IdentityNotFound(FaceguardError, KeyError):
    """No active identity carries the requested id."""
