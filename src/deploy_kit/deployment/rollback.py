"""Out-of-band recovery from failed or interrupted deployments."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Union

from ..errors import RecoveryFailure
from ..locks import DeploymentLock, LockManager

logger = logging.getLogger(__name__)

STATUS_READY = "ready"
STATUS_ACTIVE = "active"
STATUS_STALE = "stale"

# keyword group -> guidance lines; keywords match whole words, every matching group is reported
GUIDANCE_CATEGORIES = (
    (
        ("certificate", "ssl"),
        [
            "SSL certificate not validated in ACM",
            "Run: aws acm describe-certificate --certificate-arn <arn>",
        ],
    ),
    (
        ("cloudfront", "distribution", "cdn"),
        [
            "CloudFront distribution misconfigured or still propagating",
            "Check the distribution status and origin in the AWS Console, "
            "then retry once it reports Deployed",
        ],
    ),
    (
        ("lock", "locked", "locks"),
        [
            "Deployment lock stuck",
            "Run: deploy-kit recover {stage}",
        ],
    ),
)


@dataclass
class LockStatus:
    """Snapshot of both lock layers for one stage."""
    stage: str
    remote_locked: bool
    file_lock: Optional[DeploymentLock]
    state: str                             # ready | active | stale
    minutes_remaining: int = 0
    minutes_expired: int = 0

    @property
    def ready(self) -> bool:
        return self.state == STATUS_READY and not self.remote_locked


class RollbackManager:
    """Clears locks left by failed deployments and explains how to recover.

    Needs only a ``LockManager``; no orchestrator has to be running.
    """

    def __init__(self, lock_manager: LockManager) -> None:
        self.lock_manager = lock_manager

    def recover(self, stage: str) -> None:
        """Clear the local lock file and the remote state lock for ``stage``.

        The remote lock is cleared even without a local lock, since a crash
        can leave either layer held on its own.

        Raises:
            RecoveryFailure: either layer could not be cleared.
        """
        logger.info("🔄 Recovering from failed %s deployment...", stage)

        try:
            lock = self.lock_manager.get_file_lock(stage)
            if lock is not None:
                self.lock_manager.release_lock(lock)
                logger.info("✅ Cleared deployment lock for %s", stage)
        except Exception as exc:
            logger.error("❌ Recovery failed: %s", exc)
            raise RecoveryFailure(stage, "releasing the deployment lock", str(exc)) from exc

        try:
            self.lock_manager.clear_pulumi_lock(stage, raise_on_error=True)
        except Exception as exc:
            logger.error("❌ Recovery failed: %s", exc)
            raise RecoveryFailure(stage, "clearing the state lock", str(exc)) from exc

        logger.info("✅ Recovery complete - ready to redeploy")
        logger.info("💡 You can now retry: deploy-kit deploy %s", stage)

    def get_status(self, stage: str, now: Optional[datetime] = None) -> LockStatus:
        """Read both lock layers without changing either."""
        now = now or datetime.now(timezone.utc)
        remote_locked = self.lock_manager.is_pulumi_locked(stage)
        file_lock = self.lock_manager.get_file_lock(stage)

        if file_lock is None:
            return LockStatus(stage=stage, remote_locked=remote_locked, file_lock=None, state=STATUS_READY)
        if file_lock.is_expired(now):
            return LockStatus(
                stage=stage,
                remote_locked=remote_locked,
                file_lock=file_lock,
                state=STATUS_STALE,
                minutes_expired=file_lock.minutes_since_expiry(now),
            )
        return LockStatus(
            stage=stage,
            remote_locked=remote_locked,
            file_lock=file_lock,
            state=STATUS_ACTIVE,
            minutes_remaining=file_lock.minutes_remaining(now),
        )

    def provide_rollback_guidance(self, stage: str, error: Union[BaseException, str]) -> List[str]:
        return provide_rollback_guidance(stage, error)


def provide_rollback_guidance(stage: str, error: Union[BaseException, str]) -> List[str]:
    """Recovery steps for a failed deployment of ``stage``.

    The generic steps always come first, followed by the guidance of every
    category whose keywords appear in the error message.
    """
    message = str(error).lower()
    guidance = [
        f"Run: deploy-kit recover {stage}",
        "Fix the issue locally",
        f"Retry: deploy-kit deploy {stage}",
        "If needed, revert code changes: git revert HEAD",
    ]
    for keywords, lines in GUIDANCE_CATEGORIES:
        if any(re.search(rf"\b{re.escape(keyword)}\b", message) for keyword in keywords):
            guidance.extend(line.format(stage=stage) for line in lines)
    return guidance
