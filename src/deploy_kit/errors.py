"""Exception types raised by deploy-kit."""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence


class DeployKitError(RuntimeError):
    """Base class for all deploy-kit failures."""

    code = "DEPLOY_KIT_ERROR"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConfigurationError(DeployKitError):
    """Raised when the project configuration is missing or invalid."""

    code = "CONFIGURATION_ERROR"

    def __init__(
        self,
        message: str,
        config_path: Optional[str] = None,
        validation_errors: Optional[Sequence[str]] = None,
    ) -> None:
        self.config_path = config_path
        self.validation_errors = list(validation_errors or [])
        super().__init__(message)


class LockHeldError(DeployKitError):
    """Raised when an unexpired deployment lock already exists for a stage."""

    code = "LOCK_HELD"

    def __init__(self, stage: str, minutes_remaining: int) -> None:
        self.stage = stage
        self.minutes_remaining = minutes_remaining
        message = (
            f"Deployment for {stage} is already in progress "
            f"({minutes_remaining} min remaining)\n"
            f"Wait for the lock to expire, or to force recovery run: deploy-kit recover {stage}"
        )
        super().__init__(message)


class PreflightFailure(DeployKitError):
    """A preflight check failed; nothing has been deployed yet."""

    code = "PREFLIGHT_FAILED"

    def __init__(self, check_name: str, reason: str) -> None:
        self.check_name = check_name
        self.reason = reason
        super().__init__(f"Preflight check '{check_name}' failed: {reason}")


class DeploymentCommandFailure(DeployKitError):
    """Raised when the build or deploy command exits non-zero."""

    code = "DEPLOY_COMMAND_FAILED"

    def __init__(self, command: str, exit_code: int, stderr: str) -> None:
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(f"Command `{command}` failed with code {exit_code}: {stderr}")


class PostflightCriticalFailure(DeployKitError):
    """Domain configuration validation failed after the deploy succeeded."""

    code = "POSTFLIGHT_CRITICAL"

    def __init__(self, check_name: str, reason: str) -> None:
        self.check_name = check_name
        self.reason = reason
        super().__init__(
            f"Domain configuration incomplete ({check_name}): {reason} - "
            "the deployment may not be reachable"
        )


class PostflightAdvisoryFailure(DeployKitError):
    """A non-critical postflight check failed. Logged, never raised by the pipeline."""

    code = "POSTFLIGHT_ADVISORY"

    def __init__(self, check_name: str, reason: str) -> None:
        self.check_name = check_name
        self.reason = reason
        super().__init__(f"Postflight check '{check_name}' reported: {reason}")


class RemoteLockError(DeployKitError):
    """The state backend's unlock operation failed."""

    code = "REMOTE_LOCK_ERROR"


class RecoveryFailure(DeployKitError):
    """Clearing one of the lock layers during recovery failed."""

    code = "RECOVERY_FAILED"

    def __init__(self, stage: str, step: str, reason: str) -> None:
        self.stage = stage
        self.step = step
        super().__init__(
            f"Recovery of {stage} failed while {step}: {reason}\n"
            "Manual intervention may be required"
        )


def format_error(error: BaseException) -> str:
    """Render an exception for logs and summaries."""
    if isinstance(error, DeployKitError):
        return f"[{error.code}] {error}"
    return str(error) or error.__class__.__name__
