"""Access to the infrastructure-state backend's own lock."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional

from ..errors import RemoteLockError
from ..local import LocalSession
from .models import RemoteLockState

logger = logging.getLogger(__name__)

# Phrases the unlock command prints when there was nothing to unlock
NO_LOCK_SENTINELS = ("no lock", "not locked", "no active lock", "nothing to unlock")
LOCK_KEYWORDS = ("locked", "lock")


def classify_unlock_output(text: Optional[str]) -> RemoteLockState:
    """Map the text printed by an unlock-style command to a lock state.

    The "no lock" sentinel wins over lock keywords because it contains them.
    Empty or unrecognized output is UNKNOWN; callers decide how to treat it.
    """
    if not text or not text.strip():
        return RemoteLockState.UNKNOWN
    lowered = text.lower()
    if any(sentinel in lowered for sentinel in NO_LOCK_SENTINELS):
        return RemoteLockState.UNLOCKED
    if any(keyword in lowered for keyword in LOCK_KEYWORDS):
        return RemoteLockState.LOCKED
    return RemoteLockState.UNKNOWN


class LockBackend(ABC):
    """A state backend whose native lock can be probed and cleared."""

    @abstractmethod
    def probe(self, stage: str) -> RemoteLockState:
        """Report the backend lock state for ``stage``. Should not raise."""

    @abstractmethod
    def clear(self, stage: str) -> None:
        """Clear the backend lock for ``stage``.

        Raises:
            RemoteLockError: the unlock command failed for a reason other
                than there being no lock.
        """


class SstLockBackend(LockBackend):
    """Probes and clears the Pulumi state lock through ``npx sst unlock``."""

    def __init__(
        self,
        session: LocalSession,
        *,
        stage_resolver: Optional[Callable[[str], str]] = None,
        aws_profile: Optional[str] = None,
        timeout: float = 60,
        sst_binary: str = "npx sst",
    ) -> None:
        self.session = session
        self.stage_resolver = stage_resolver or (lambda stage: stage)
        self.aws_profile = aws_profile
        self.timeout = timeout
        self.sst_binary = sst_binary

    def _unlock(self, stage: str):
        sst_stage = self.stage_resolver(stage)
        env: Dict[str, str] = {}
        if self.aws_profile:
            env["AWS_PROFILE"] = self.aws_profile
        return self.session.run(
            f"{self.sst_binary} unlock --stage {sst_stage}",
            timeout=self.timeout,
            env=env,
        )

    def probe(self, stage: str) -> RemoteLockState:
        result = self._unlock(stage)
        if result.timed_out:
            logger.debug("sst unlock timed out for %s", stage)
            return RemoteLockState.UNKNOWN
        return classify_unlock_output(result.output)

    def clear(self, stage: str) -> None:
        result = self._unlock(stage)
        if result.ok:
            return
        if classify_unlock_output(result.output) is RemoteLockState.UNLOCKED:
            # Already clear; some backends report this as an error
            return
        first_line = (result.output or "unknown error").splitlines()[0]
        raise RemoteLockError(
            f"Could not clear state lock for {stage}: {first_line}",
            details={"exit_status": result.exit_status, "command": result.command},
        )
