"""Deployment lock management.

Two independent layers keep deployments of a stage from overlapping:

1. A local lock file (``.deployment-lock-<stage>``) in the project root, which
   stops two runs sharing a filesystem.
2. The state backend's own lock (Pulumi, through SST), which protects the
   infrastructure state from runs on other machines. deploy-kit never owns
   that lock; it only probes it and asks for it to be cleared.

Local locks expire a fixed time after creation. There is no heartbeat, so a
deployment running longer than the TTL can be overtaken by a new attempt.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ..config import DEFAULT_LOCK_TTL_MINUTES, ProjectConfig
from ..errors import LockHeldError
from ..local import LocalSession
from ..paths import get_lock_file_path
from .backend import LockBackend, SstLockBackend
from .models import DEFAULT_LOCK_REASON, DeploymentLock, RemoteLockState

logger = logging.getLogger(__name__)


class LockManager:
    """Reads and writes the per-stage lock file and fronts the remote lock."""

    def __init__(
        self,
        project_root: Path,
        backend: LockBackend,
        ttl_minutes: int = DEFAULT_LOCK_TTL_MINUTES,
    ) -> None:
        if ttl_minutes <= 0:
            raise ValueError("ttl_minutes must be positive")
        self.project_root = Path(project_root)
        self.backend = backend
        self.ttl_minutes = ttl_minutes

    @classmethod
    def from_config(
        cls,
        config: ProjectConfig,
        project_root: Path,
        session: Optional[LocalSession] = None,
    ) -> "LockManager":
        """Lock manager backed by the SST state lock, as configured."""
        session = session or LocalSession(working_dir=str(project_root))
        backend = SstLockBackend(
            session,
            stage_resolver=config.sst_stage_for,
            aws_profile=config.aws_profile,
            timeout=config.lock.remote_probe_timeout,
        )
        return cls(project_root, backend, ttl_minutes=config.lock.ttl_minutes)

    def lock_file_path(self, stage: str) -> Path:
        return get_lock_file_path(self.project_root, stage)

    # ------------------------------------------------------------------
    # Local lock file
    # ------------------------------------------------------------------

    def get_file_lock(self, stage: str) -> Optional[DeploymentLock]:
        """Return the lock record for ``stage``, or None.

        A corrupt file reads as no lock: the next acquire overwrites it, which
        is the recovery.
        """
        lock_path = self.lock_file_path(stage)
        if not lock_path.exists():
            return None
        try:
            return DeploymentLock.from_json(lock_path.read_text(encoding="utf-8"))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.debug("Ignoring unreadable lock file %s: %s", lock_path, exc)
            return None

    def acquire_lock(self, stage: str, reason: str = DEFAULT_LOCK_REASON) -> DeploymentLock:
        """Write a fresh lock for ``stage``.

        An expired record is replaced without complaint.

        Raises:
            LockHeldError: an unexpired lock exists for the stage.
        """
        now = datetime.now(timezone.utc)
        existing = self.get_file_lock(stage)
        if existing is not None:
            if not existing.is_expired(now):
                raise LockHeldError(stage, existing.minutes_remaining(now))
            logger.info(
                "🧹 Reclaiming stale %s lock (expired %d min ago)",
                stage,
                existing.minutes_since_expiry(now),
            )

        lock = DeploymentLock.create(stage, self.ttl_minutes, reason=reason, now=now)
        self._write_lock(lock)
        logger.debug("Acquired %s lock until %s", stage, lock.expires_at.isoformat())
        return lock

    def release_lock(self, lock: DeploymentLock) -> None:
        """Remove the lock file for ``lock.stage``. Safe to call repeatedly."""
        try:
            self.lock_file_path(lock.stage).unlink()
        except FileNotFoundError:
            return
        logger.debug("Released %s lock", lock.stage)

    def _write_lock(self, lock: DeploymentLock) -> None:
        lock_path = self.lock_file_path(lock.stage)
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        # Write then rename so a reader never sees a half-written record
        tmp_path = lock_path.with_name(f"{lock_path.name}.{os.getpid()}.tmp")
        tmp_path.write_text(lock.to_json(), encoding="utf-8")
        os.replace(tmp_path, lock_path)

    # ------------------------------------------------------------------
    # Remote (state backend) lock
    # ------------------------------------------------------------------

    def remote_lock_state(self, stage: str) -> RemoteLockState:
        try:
            return self.backend.probe(stage)
        except Exception as exc:
            logger.debug("State lock probe for %s failed: %s", stage, exc)
            return RemoteLockState.UNKNOWN

    def is_pulumi_locked(self, stage: str) -> bool:
        """True only when the backend positively reports a lock.

        UNKNOWN (timeouts, unrecognized output, probe errors) counts as
        unlocked so flaky connectivity never blocks a deployment.
        """
        return self.remote_lock_state(stage) is RemoteLockState.LOCKED

    def clear_pulumi_lock(self, stage: str, *, raise_on_error: bool = False) -> None:
        """Ask the backend to clear its lock.

        Failures are logged, not raised, unless ``raise_on_error`` is set.
        """
        try:
            self.backend.clear(stage)
        except Exception as exc:
            if raise_on_error:
                raise
            logger.info("ℹ️  No state lock cleared for %s: %s", stage, exc)
            return
        logger.info("✅ Cleared state lock for %s", stage)

    def check_and_clean_pulumi_lock(self, stage: str) -> None:
        if self.is_pulumi_locked(stage):
            logger.warning("⚠️  State lock detected for %s, auto-clearing...", stage)
            self.clear_pulumi_lock(stage)
