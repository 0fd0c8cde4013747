import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock

from deploy_kit.checks import (
    CheckOutcome,
    GitStatusCheck,
    PostflightCheckRunner,
    PreflightCheckRunner,
)
from deploy_kit.checks.base import Check
from deploy_kit.config import HooksConfig, ProjectConfig, StageConfig
from deploy_kit.deployment import (
    DeploymentOrchestrator,
    LifecycleHooks,
    NoopBuildInvoker,
    PipelinePhase,
    ShellBuildInvoker,
)
from deploy_kit.errors import DeploymentCommandFailure
from deploy_kit.locks import LockManager, RemoteLockState

from stubs import StubBackend, StubSession, ok


class FixedCheck(Check):
    def __init__(self, name: str, outcome: CheckOutcome, critical: bool = True) -> None:
        self.name = name
        self.outcome = outcome
        self.critical = critical

    def run(self, context):
        return self.outcome


class OrchestratorTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.config = ProjectConfig(
            project_name="shop",
            stage_config={"staging": StageConfig()},
            hooks=HooksConfig(post_deploy="./notify.sh", on_error="./alert.sh"),
        )
        self.backend = StubBackend()
        self.lock_manager = LockManager(self.root, self.backend)
        self.session = StubSession()
        self.build_invoker = Mock()
        self.deploy_invoker = Mock()
        self.cache_invalidator = Mock()
        self.cache_invalidator.invalidate.return_value = True

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _orchestrator(self, preflight=None, postflight=None) -> DeploymentOrchestrator:
        return DeploymentOrchestrator(
            self.config,
            self.root,
            session=self.session,
            lock_manager=self.lock_manager,
            preflight=preflight or PreflightCheckRunner([FixedCheck("ok", CheckOutcome.ok())]),
            postflight=postflight or PostflightCheckRunner([FixedCheck("domain", CheckOutcome.ok())]),
            build_invoker=self.build_invoker,
            deploy_invoker=self.deploy_invoker,
            cache_invalidator=self.cache_invalidator,
            hooks=LifecycleHooks(self.session, self.config.hooks),
        )

    def test_successful_deploy_sets_details_and_releases_lock(self) -> None:
        result = self._orchestrator().deploy("staging")

        self.assertTrue(result.success, result.error)
        details = result.details
        self.assertTrue(details.git_status_ok)
        self.assertTrue(details.tests_ok)
        self.assertTrue(details.builds_ok)
        self.assertTrue(details.deployment_ok)
        self.assertTrue(details.health_checks_ok)
        self.assertTrue(details.cache_invalidated_ok)
        self.assertTrue(details.lock_released_ok)
        self.assertIsNone(self.lock_manager.get_file_lock("staging"))
        self.assertEqual(result.phase, PipelinePhase.RELEASED)
        self.assertEqual(
            [t.name for t in result.timings],
            [
                "Lock check",
                "Pre-deployment checks",
                "Build & deploy",
                "Post-deployment validation",
                "Cache invalidation",
            ],
        )
        self.build_invoker.build.assert_called_once_with("staging")
        self.deploy_invoker.deploy.assert_called_once_with("staging")
        self.assertTrue(self.session.ran("./notify.sh"))
        self.assertFalse(self.session.ran("./alert.sh"))
        self.assertGreaterEqual(result.duration_seconds, 0)

    def test_deploy_failure_keeps_lock(self) -> None:
        self.deploy_invoker.deploy.side_effect = DeploymentCommandFailure(
            "npx sst deploy --stage staging", 1, "Stack rollback"
        )

        result = self._orchestrator().deploy("staging")

        self.assertFalse(result.success)
        self.assertFalse(result.details.deployment_ok)
        self.assertTrue(result.details.builds_ok)
        self.assertIn("Stack rollback", result.error)
        self.assertEqual(result.phase, PipelinePhase.FAILED)
        self.assertEqual(result.failed_phase, PipelinePhase.BUILD_DEPLOY)
        lock = self.lock_manager.get_file_lock("staging")
        self.assertIsNotNone(lock)
        self.assertFalse(lock.is_expired())
        self.assertTrue(self.session.ran("./alert.sh"))
        self.assertEqual(len(result.timings), 3)

    def test_precheck_failure_never_deploys(self) -> None:
        self.session.responses["git status"] = ok(" M src/index.ts")
        preflight = PreflightCheckRunner([GitStatusCheck()])

        result = self._orchestrator(preflight=preflight).deploy("staging")

        self.assertFalse(result.success)
        self.assertEqual(result.failed_phase, PipelinePhase.PRECHECK)
        self.assertFalse(result.details.git_status_ok)
        self.assertFalse(result.details.tests_ok)
        self.build_invoker.build.assert_not_called()
        self.deploy_invoker.deploy.assert_not_called()
        self.assertIsNotNone(self.lock_manager.get_file_lock("staging"))
        self.assertEqual(len(result.check_results), 1)

    def test_critical_postflight_failure_fails_deploy(self) -> None:
        postflight = PostflightCheckRunner([
            FixedCheck("Domain Configuration", CheckOutcome.fail("no alias"), critical=True),
        ])

        result = self._orchestrator(postflight=postflight).deploy("staging")

        self.assertFalse(result.success)
        self.assertTrue(result.details.deployment_ok)
        self.assertFalse(result.details.health_checks_ok)
        self.assertEqual(result.failed_phase, PipelinePhase.POSTCHECK)
        self.cache_invalidator.invalidate.assert_not_called()
        self.assertIsNotNone(self.lock_manager.get_file_lock("staging"))

    def test_advisory_postflight_failure_is_ignored(self) -> None:
        postflight = PostflightCheckRunner([
            FixedCheck("Application Health", CheckOutcome.fail("502"), critical=False),
        ])

        result = self._orchestrator(postflight=postflight).deploy("staging")

        self.assertTrue(result.success)
        self.assertTrue(result.details.health_checks_ok)
        self.assertFalse(result.check_results[-1].passed)

    def test_cache_invalidation_failure_does_not_fail_deploy(self) -> None:
        self.cache_invalidator.invalidate.side_effect = RuntimeError("throttled")

        result = self._orchestrator().deploy("staging")

        self.assertTrue(result.success)
        self.assertFalse(result.details.cache_invalidated_ok)
        self.assertIsNone(self.lock_manager.get_file_lock("staging"))

    def test_cache_invalidation_skipped_per_stage(self) -> None:
        self.config.stage_config["staging"].skip_cache_invalidation = True

        result = self._orchestrator().deploy("staging")

        self.assertTrue(result.success)
        self.assertIsNone(result.details.cache_invalidated_ok)
        self.cache_invalidator.invalidate.assert_not_called()

    def test_held_lock_is_reported_not_raised(self) -> None:
        self.lock_manager.acquire_lock("staging")

        result = self._orchestrator().deploy("staging")

        self.assertFalse(result.success)
        self.assertEqual(result.failed_phase, PipelinePhase.LOCK_CHECK)
        self.assertIn("already in progress", result.error)
        self.build_invoker.build.assert_not_called()
        self.assertFalse(self.session.ran("./alert.sh"))

    def test_remote_lock_cleared_before_acquire(self) -> None:
        self.backend.state = RemoteLockState.LOCKED

        result = self._orchestrator().deploy("staging")

        self.assertTrue(result.success)
        self.assertEqual(self.backend.cleared, ["staging"])

    def test_lock_release_error_is_reported_not_raised(self) -> None:
        self.lock_manager.release_lock = Mock(side_effect=PermissionError("read-only file system"))

        result = self._orchestrator().deploy("staging")

        self.assertTrue(result.success)
        self.assertFalse(result.details.lock_released_ok)
        self.assertIn("read-only file system", result.error)
        self.assertIn("deploy-kit recover staging", result.error)
        self.assertEqual(result.phase, PipelinePhase.CACHE_INVALIDATE)
        self.assertIsNotNone(self.lock_manager.get_file_lock("staging"))
        self.assertTrue(self.session.ran("./notify.sh"))

    def test_unexpected_exception_is_captured(self) -> None:
        self.build_invoker.build.side_effect = ValueError("bad build config")

        result = self._orchestrator().deploy("staging")

        self.assertFalse(result.success)
        self.assertEqual(result.error, "bad build config")

    def test_default_build_invoker_depends_on_sst_config(self) -> None:
        plain = DeploymentOrchestrator(self.config, self.root, session=self.session, lock_manager=self.lock_manager)
        self.assertIsInstance(plain.build_invoker, ShellBuildInvoker)

        (self.root / "sst.config.ts").write_text("export default {}", encoding="utf-8")
        sst = DeploymentOrchestrator(self.config, self.root, session=self.session, lock_manager=self.lock_manager)
        self.assertIsInstance(sst.build_invoker, NoopBuildInvoker)

    def test_result_serializes(self) -> None:
        data = self._orchestrator().deploy("staging").to_dict()
        self.assertEqual(data["phase"], "released")
        self.assertTrue(data["details"]["deployment_ok"])


if __name__ == "__main__":
    unittest.main()
