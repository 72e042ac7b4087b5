"""
FaceGuard - Face Attendance with Offline Sync

Matches face embeddings against enrolled identities, keeps a per-day
attendance log on each device and reconciles devices with a shared store
by last-write-wins, record by record.
"""

__version__ = "1.0.0"
