import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import Mock

from deploy_kit.deployment import RollbackManager, provide_rollback_guidance
from deploy_kit.deployment.printer import render_status
from deploy_kit.errors import RecoveryFailure, RemoteLockError
from deploy_kit.locks import DeploymentLock, LockManager, RemoteLockState
from deploy_kit.paths import get_lock_file_path

from stubs import StubBackend


class RecoverTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.backend = StubBackend()
        self.lock_manager = LockManager(self.root, self.backend)
        self.rollback = RollbackManager(self.lock_manager)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_recover_with_no_locks_succeeds(self) -> None:
        self.rollback.recover("staging")
        self.assertEqual(self.backend.cleared, ["staging"])

    def test_recover_releases_file_lock_and_clears_remote(self) -> None:
        self.lock_manager.acquire_lock("staging")

        self.rollback.recover("staging")

        self.assertIsNone(self.lock_manager.get_file_lock("staging"))
        self.assertEqual(self.backend.cleared, ["staging"])
        self.lock_manager.acquire_lock("staging")

    def test_remote_clear_failure_propagates(self) -> None:
        self.backend.clear_error = RemoteLockError("AccessDenied")
        self.lock_manager.acquire_lock("staging")

        with self.assertRaises(RecoveryFailure) as ctx:
            self.rollback.recover("staging")

        self.assertIsInstance(ctx.exception.__cause__, RemoteLockError)
        self.assertIn("AccessDenied", str(ctx.exception))
        # the file lock was still released before the remote step failed
        self.assertIsNone(self.lock_manager.get_file_lock("staging"))

    def test_file_release_failure_propagates(self) -> None:
        lock_manager = Mock()
        lock_manager.get_file_lock.return_value = DeploymentLock.create("staging", 120)
        lock_manager.release_lock.side_effect = PermissionError("read-only filesystem")

        with self.assertRaises(RecoveryFailure):
            RollbackManager(lock_manager).recover("staging")
        lock_manager.clear_pulumi_lock.assert_not_called()


class StatusTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.backend = StubBackend()
        self.lock_manager = LockManager(self.root, self.backend)
        self.rollback = RollbackManager(self.lock_manager)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_ready_when_no_locks(self) -> None:
        status = self.rollback.get_status("staging")
        self.assertEqual(status.state, "ready")
        self.assertTrue(status.ready)
        self.assertIn("Ready to deploy to staging", render_status(status))

    def test_active_lock(self) -> None:
        now = datetime.now(timezone.utc)
        lock = DeploymentLock(stage="staging", created_at=now, expires_at=now + timedelta(minutes=30))
        get_lock_file_path(self.root, "staging").write_text(lock.to_json(), encoding="utf-8")

        status = self.rollback.get_status("staging", now=now)

        self.assertEqual(status.state, "active")
        self.assertEqual(status.minutes_remaining, 30)
        self.assertIn("30 min remaining", render_status(status))

    def test_stale_lock(self) -> None:
        now = datetime.now(timezone.utc)
        lock = DeploymentLock(
            stage="staging",
            created_at=now - timedelta(hours=3),
            expires_at=now - timedelta(hours=1),
        )
        get_lock_file_path(self.root, "staging").write_text(lock.to_json(), encoding="utf-8")

        status = self.rollback.get_status("staging", now=now)

        self.assertEqual(status.state, "stale")
        self.assertEqual(status.minutes_expired, 60)

    def test_remote_lock_reported(self) -> None:
        self.backend.state = RemoteLockState.LOCKED
        status = self.rollback.get_status("staging")
        self.assertTrue(status.remote_locked)
        self.assertFalse(status.ready)
        self.assertEqual(self.backend.cleared, [])


class GuidanceTests(unittest.TestCase):
    def test_cloudfront_failure_gets_cdn_guidance(self) -> None:
        guidance = provide_rollback_guidance("staging", Exception("CloudFront distribution update failed"))
        text = "\n".join(guidance)
        self.assertIn("CloudFront distribution misconfigured", text)
        self.assertIn("staging", text)

    def test_multiple_categories_match(self) -> None:
        guidance = RollbackManager(Mock()).provide_rollback_guidance(
            "production", "lock failed during certificate validation"
        )
        text = "\n".join(guidance)
        self.assertIn("SSL certificate not validated in ACM", text)
        self.assertIn("Deployment lock stuck", text)
        self.assertIn("deploy-kit recover production", text)

    def test_keywords_match_whole_words_only(self) -> None:
        guidance = provide_rollback_guidance("staging", "Build blocked: clock skew detected")
        self.assertNotIn("Deployment lock stuck", guidance)

        guidance = provide_rollback_guidance("staging", "Stage is locked by another run")
        self.assertIn("Deployment lock stuck", guidance)

    def test_generic_steps_always_present(self) -> None:
        guidance = provide_rollback_guidance("staging", "something odd")
        self.assertEqual(guidance[0], "Run: deploy-kit recover staging")
        self.assertIn("Retry: deploy-kit deploy staging", guidance)
        self.assertNotIn("Deployment lock stuck", guidance)


if __name__ == "__main__":
    unittest.main()
