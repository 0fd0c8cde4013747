"""Data models for deployment locks."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional

DEFAULT_LOCK_REASON = "Deployment in progress"


class RemoteLockState(Enum):
    """Lock state reported by the infrastructure-state backend."""
    LOCKED = "locked"
    UNLOCKED = "unlocked"
    UNKNOWN = "unknown"        # timeout or unrecognized output


@dataclass(frozen=True)
class DeploymentLock:
    """Local lock record for one stage.

    Records are immutable: a new one is written on every acquire and the file
    is deleted on release.
    """
    stage: str
    created_at: datetime
    expires_at: datetime
    reason: Optional[str] = DEFAULT_LOCK_REASON

    def __post_init__(self) -> None:
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be later than created_at")

    @classmethod
    def create(
        cls,
        stage: str,
        ttl_minutes: int,
        reason: Optional[str] = DEFAULT_LOCK_REASON,
        now: Optional[datetime] = None,
    ) -> "DeploymentLock":
        created_at = now or datetime.now(timezone.utc)
        return cls(
            stage=stage,
            created_at=created_at,
            expires_at=created_at + timedelta(minutes=ttl_minutes),
            reason=reason,
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.now(timezone.utc)) > self.expires_at

    def minutes_remaining(self, now: Optional[datetime] = None) -> int:
        delta = self.expires_at - (now or datetime.now(timezone.utc))
        return max(0, round(delta.total_seconds() / 60))

    def minutes_since_expiry(self, now: Optional[datetime] = None) -> int:
        delta = (now or datetime.now(timezone.utc)) - self.expires_at
        return max(0, round(delta.total_seconds() / 60))

    def to_dict(self) -> Dict[str, Any]:
        # Field names match the lock files written by earlier deploy-kit releases
        return {
            "stage": self.stage,
            "createdAt": self.created_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentLock":
        return cls(
            stage=str(data["stage"]),
            created_at=_parse_timestamp(data["createdAt"]),
            expires_at=_parse_timestamp(data["expiresAt"]),
            reason=data.get("reason"),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, text: str) -> "DeploymentLock":
        return cls.from_dict(json.loads(text))


def _parse_timestamp(value: str) -> datetime:
    # fromisoformat() rejects a trailing "Z" before Python 3.11
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
