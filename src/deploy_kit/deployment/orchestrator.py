"""The deployment pipeline for a single stage."""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from ..checks.base import CheckContext
from ..checks.postflight import PostflightCheckRunner, default_postflight_checks
from ..checks.preflight import PreflightCheckRunner, default_preflight_checks
from ..config import ProjectConfig
from ..errors import DeployKitError, LockHeldError, format_error
from ..local import LocalSession
from ..locks import LockManager
from ..paths import is_sst_project
from .hooks import LifecycleHooks
from .invokers import (
    BuildInvoker,
    CacheInvalidator,
    CloudFrontCacheInvalidator,
    DeployInvoker,
    NoopBuildInvoker,
    ShellBuildInvoker,
    default_deploy_invoker,
)
from .models import DeploymentResult, PipelinePhase, StageTiming

logger = logging.getLogger(__name__)


class DeploymentOrchestrator:
    """Runs ``LOCK_CHECK -> PRECHECK -> BUILD_DEPLOY -> POSTCHECK -> CACHE_INVALIDATE``.

    A run that fails after the lock is acquired keeps the lock, so a
    half-applied deployment cannot be retried automatically; the operator
    clears it with ``deploy-kit recover <stage>`` or waits for the TTL.

    Every collaborator can be injected. Omitted ones are built from
    ``config``:

    - lock_manager: file lock in ``project_root`` plus the SST state lock
    - build_invoker: no-op for SST projects (``sst deploy`` builds), else the
      configured build command
    - deploy_invoker: ``custom_deploy_script`` if set, else ``sst deploy``
    - cache_invalidator: CloudFront invalidation of ``/*``
    """

    def __init__(
        self,
        config: ProjectConfig,
        project_root: Path,
        *,
        session: Optional[LocalSession] = None,
        lock_manager: Optional[LockManager] = None,
        preflight: Optional[PreflightCheckRunner] = None,
        postflight: Optional[PostflightCheckRunner] = None,
        build_invoker: Optional[BuildInvoker] = None,
        deploy_invoker: Optional[DeployInvoker] = None,
        cache_invalidator: Optional[CacheInvalidator] = None,
        hooks: Optional[LifecycleHooks] = None,
    ) -> None:
        self.config = config
        self.project_root = Path(project_root)
        self.session = session or LocalSession(working_dir=str(self.project_root))

        self.lock_manager = lock_manager or LockManager.from_config(config, self.project_root, self.session)

        self.preflight = preflight or PreflightCheckRunner(default_preflight_checks())
        self.postflight = postflight or PostflightCheckRunner(default_postflight_checks())

        if build_invoker is None:
            if is_sst_project(self.project_root):
                build_invoker = NoopBuildInvoker()
            else:
                build_invoker = ShellBuildInvoker(self.session, config)
        self.build_invoker = build_invoker
        self.deploy_invoker = deploy_invoker or default_deploy_invoker(self.session, config)
        self.cache_invalidator = cache_invalidator or CloudFrontCacheInvalidator(self.session, config)
        self.hooks = hooks or LifecycleHooks(self.session, config.hooks)

    def deploy(self, stage: str) -> DeploymentResult:
        """Deploy ``stage`` once and report what happened.

        Never raises for pipeline failures; inspect ``result.success`` and
        ``result.error``.
        """
        result = DeploymentResult(stage=stage, start_time=datetime.now(timezone.utc))
        context = CheckContext(
            stage=stage,
            project_root=self.project_root,
            config=self.config,
            session=self.session,
            results=result.check_results,
        )
        logger.info("🚀 Deploying %s to %s", self.config.display_name or self.config.project_name, stage)

        try:
            with self._phase(result, PipelinePhase.LOCK_CHECK, "Lock check"):
                self.lock_manager.check_and_clean_pulumi_lock(stage)
                lock = self.lock_manager.acquire_lock(stage)
        except (LockHeldError, OSError) as exc:
            # No lock was created by this run, so there is nothing to undo
            logger.error("🔒 %s", exc)
            result.failed_phase = PipelinePhase.LOCK_CHECK
            result.error = str(exc)
            if isinstance(exc, LockHeldError):
                result.message = f"Deployment to {stage} blocked by an existing lock"
            else:
                result.message = f"Could not write the deployment lock for {stage}"
            result.finish(datetime.now(timezone.utc))
            return result

        try:
            with self._phase(result, PipelinePhase.PRECHECK, "Pre-deployment checks"):
                self.hooks.pre_deploy(stage, result.start_time)
                self.preflight.run(context)
                result.details.git_status_ok = True
                result.details.tests_ok = True

            with self._phase(result, PipelinePhase.BUILD_DEPLOY, "Build & deploy"):
                self.build_invoker.build(stage)
                result.details.builds_ok = True
                self.deploy_invoker.deploy(stage)
                result.details.deployment_ok = True

            with self._phase(result, PipelinePhase.POSTCHECK, "Post-deployment validation"):
                self.postflight.run(context)
                result.details.health_checks_ok = True
        except Exception as exc:
            return self._fail(result, exc)

        with self._phase(result, PipelinePhase.CACHE_INVALIDATE, "Cache invalidation"):
            self._invalidate_cache(stage, result)

        try:
            self.lock_manager.release_lock(lock)
        except OSError as exc:
            # The stage stays locked until recovery or expiry
            logger.error("🔒 Could not release the deployment lock for %s: %s", stage, exc)
            result.details.lock_released_ok = False
            result.error = f"Lock release failed: {exc}. Run: deploy-kit recover {stage}"
        else:
            result.details.lock_released_ok = True
            result.phase = PipelinePhase.RELEASED
        self.hooks.post_deploy(stage, result.start_time)

        result.success = True
        result.message = f"Deployment to {stage} successful"
        result.finish(datetime.now(timezone.utc))
        logger.info("✅ %s (%.1fs)", result.message, result.duration_seconds)
        return result

    @contextmanager
    def _phase(self, result: DeploymentResult, phase: PipelinePhase, label: str) -> Iterator[None]:
        """Enter ``phase`` and record its duration, even when it fails."""
        result.phase = phase
        started = time.monotonic()
        try:
            yield
        finally:
            result.timings.append(StageTiming(name=label, duration=time.monotonic() - started))

    def _invalidate_cache(self, stage: str, result: DeploymentResult) -> None:
        if self.config.get_stage_config(stage).skip_cache_invalidation:
            logger.info("⏭️  Cache invalidation skipped for %s", stage)
            return
        try:
            result.details.cache_invalidated_ok = self.cache_invalidator.invalidate(stage)
        except Exception as exc:
            # A stale cache is not a failed deployment
            logger.warning("⚠️  Cache invalidation failed: %s", format_error(exc))
            result.details.cache_invalidated_ok = False

    def _fail(self, result: DeploymentResult, exc: Exception) -> DeploymentResult:
        result.failed_phase = result.phase
        result.phase = PipelinePhase.FAILED
        result.error = str(exc)
        result.message = f"Deployment to {result.stage} failed during {result.failed_phase.value}"
        if isinstance(exc, DeployKitError):
            logger.error("❌ %s", format_error(exc))
        else:
            logger.error("❌ Unexpected error: %s", exc, exc_info=True)
        logger.warning("🔒 Lock for %s kept until recovery or expiry", result.stage)

        self.hooks.on_error(result.stage, result.start_time)
        result.finish(datetime.now(timezone.utc))
        return result
