"""Data models for a deployment run."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from ..checks.base import CheckResult


class PipelinePhase(Enum):
    """Phases of the deployment state machine, in execution order."""
    INIT = "init"
    LOCK_CHECK = "lock_check"
    PRECHECK = "precheck"
    BUILD_DEPLOY = "build_deploy"
    POSTCHECK = "postcheck"
    CACHE_INVALIDATE = "cache_invalidate"
    RELEASED = "released"
    FAILED = "failed"


@dataclass
class StageTiming:
    """Wall-clock duration of one completed pipeline phase."""
    name: str
    duration: float  # seconds


@dataclass
class DeploymentDetails:
    """Which parts of the pipeline completed."""
    git_status_ok: bool = False
    builds_ok: bool = False
    tests_ok: bool = False
    deployment_ok: bool = False
    health_checks_ok: bool = False
    cache_invalidated_ok: Optional[bool] = None   # None: not attempted
    lock_released_ok: Optional[bool] = None
    backup_path: Optional[str] = None


@dataclass
class DeploymentResult:
    """Outcome of ``DeploymentOrchestrator.deploy``.

    Built at pipeline start and filled in phase by phase; a failed run keeps
    the details and timings of the phases that completed.
    """
    stage: str
    start_time: datetime
    success: bool = False
    end_time: Optional[datetime] = None
    duration_seconds: float = 0.0
    message: str = ""
    error: Optional[str] = None
    phase: PipelinePhase = PipelinePhase.INIT
    failed_phase: Optional[PipelinePhase] = None
    details: DeploymentDetails = field(default_factory=DeploymentDetails)
    timings: List[StageTiming] = field(default_factory=list)
    check_results: List[CheckResult] = field(default_factory=list)

    def finish(self, end_time: datetime) -> None:
        self.end_time = end_time
        self.duration_seconds = (end_time - self.start_time).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["start_time"] = self.start_time.isoformat()
        data["end_time"] = self.end_time.isoformat() if self.end_time else None
        data["phase"] = self.phase.value
        data["failed_phase"] = self.failed_phase.value if self.failed_phase else None
        return data
