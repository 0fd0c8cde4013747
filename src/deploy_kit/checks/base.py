"""Named, ordered validation steps run around the deploy action."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set

from ..config import ProjectConfig, StageConfig
from ..local import LocalSession

logger = logging.getLogger(__name__)


@dataclass
class CheckOutcome:
    """What a single check reports back."""
    passed: bool
    message: str = ""
    skipped: bool = False

    @classmethod
    def ok(cls, message: str = "") -> "CheckOutcome":
        return cls(passed=True, message=message)

    @classmethod
    def fail(cls, message: str) -> "CheckOutcome":
        return cls(passed=False, message=message)

    @classmethod
    def skip(cls, reason: str) -> "CheckOutcome":
        """A check that does not apply counts as passed."""
        return cls(passed=True, message=reason, skipped=True)


@dataclass
class CheckResult:
    """Timed record of one check run, kept for the deployment summary."""
    name: str
    passed: bool
    duration: float                # seconds
    error: Optional[str] = None
    message: str = ""
    skipped: bool = False
    critical: bool = True


@dataclass
class CheckContext:
    """State threaded through every check of one deployment.

    ``verified`` records facts a check has already established (for example
    valid AWS credentials) so later checks in the same run can skip
    re-verifying them.
    """
    stage: str
    project_root: Path
    config: ProjectConfig
    session: LocalSession
    verified: Set[str] = field(default_factory=set)
    results: List[CheckResult] = field(default_factory=list)

    @property
    def stage_config(self) -> StageConfig:
        return self.config.get_stage_config(self.stage)

    @property
    def domain(self) -> Optional[str]:
        return self.config.domain_for(self.stage)

    def mark_verified(self, key: str) -> None:
        self.verified.add(key)

    def is_verified(self, key: str) -> bool:
        return key in self.verified

    def aws_env(self) -> Dict[str, str]:
        env: Dict[str, str] = {}
        if self.config.aws_profile:
            env["AWS_PROFILE"] = self.config.aws_profile
        if self.stage_config.aws_region:
            env["AWS_REGION"] = self.stage_config.aws_region
        return env


class Check(ABC):
    """One named validation step."""

    name: str = "Check"
    # Postflight only: a failing non-critical check is logged and ignored
    critical: bool = True

    @abstractmethod
    def run(self, context: CheckContext) -> CheckOutcome:
        """Validate one aspect of the deployment."""


class CheckRunner(ABC):
    """Runs checks in order and stops at the first failure."""

    phase_name = "Checks"

    def __init__(self, checks: Sequence[Check]) -> None:
        self.checks: List[Check] = list(checks)

    def register(self, check: Check) -> None:
        self.checks.append(check)

    @abstractmethod
    def failure_for(self, check: Check, reason: str) -> Exception:
        """Exception raised when ``check`` fails with ``reason``."""

    def run(self, context: CheckContext) -> List[CheckResult]:
        """Run every check, raising the runner's failure type on the first failure."""
        logger.info("🔐 %s (%s)", self.phase_name, context.stage)
        results: List[CheckResult] = []
        for check in self.checks:
            result = self.run_check(check, context)
            results.append(result)
            context.results.append(result)
            log_check_result(result)
            if not result.passed:
                raise self.failure_for(check, result.error or "failed")
        return results

    def run_check(self, check: Check, context: CheckContext) -> CheckResult:
        """Run one check; an exception escaping it counts as a failure."""
        started = time.monotonic()
        try:
            outcome = check.run(context)
        except Exception as exc:
            logger.debug("Check %s raised", check.name, exc_info=True)
            outcome = CheckOutcome.fail(f"{exc.__class__.__name__}: {exc}")
        duration = time.monotonic() - started
        return CheckResult(
            name=check.name,
            passed=outcome.passed,
            duration=duration,
            error=None if outcome.passed else (outcome.message or "failed"),
            message=outcome.message,
            skipped=outcome.skipped,
            critical=check.critical,
        )


def log_check_result(result: CheckResult) -> None:
    if result.skipped:
        logger.info("   ⏭️  %s skipped: %s", result.name, result.message)
    elif result.passed:
        suffix = f" - {result.message}" if result.message else ""
        logger.info("   ✅ %s (%.1fs)%s", result.name, result.duration, suffix)
    elif result.critical:
        logger.error("   ❌ %s: %s", result.name, result.error)
    else:
        logger.warning("   ⚠️  %s: %s", result.name, result.error)
