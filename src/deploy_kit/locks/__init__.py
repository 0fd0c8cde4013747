"""Per-stage deployment locks."""

from .backend import LockBackend, SstLockBackend, classify_unlock_output
from .manager import LockManager
from .models import DEFAULT_LOCK_REASON, DeploymentLock, RemoteLockState

__all__ = [
    "DEFAULT_LOCK_REASON",
    "DeploymentLock",
    "LockBackend",
    "LockManager",
    "RemoteLockState",
    "SstLockBackend",
    "classify_unlock_output",
]
